"""
Celery Application Configuration
"""
from celery import Celery
from badal_trust.config import settings

# Create Celery app
celery_app = Celery(
    "badal_trust_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "badal_trust.worker.tasks"
    ]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,
    task_soft_time_limit=240,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=3600,  # Results expire after 1 hour
)

# Task routing
celery_app.conf.task_routes = {
    "badal_trust.worker.tasks.reconcile_orphaned_reservations": {"queue": "reconciliation"},
    "badal_trust.worker.tasks.*": {"queue": "default"},
}

# Periodic sweep for slots whose booking never reported a terminal state
celery_app.conf.beat_schedule = {
    "reconcile-orphaned-reservations": {
        "task": "badal_trust.worker.tasks.reconcile_orphaned_reservations",
        "schedule": settings.RECONCILE_INTERVAL_MINUTES * 60.0,
    },
}
