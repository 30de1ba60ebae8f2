"""
Celery Tasks for background maintenance
"""
import logging
from datetime import timedelta
from typing import Optional

from celery import shared_task

from badal_trust.config import settings
from badal_trust.db import database

logger = logging.getLogger(__name__)


def get_db_session():
    """Get database session for tasks"""
    return database.SessionLocal()


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def reconcile_orphaned_reservations(self, older_than_hours: Optional[int] = None):
    """
    Release Badal slots held longer than the orphan timeout.

    The booking service normally releases a slot on completion or
    cancellation; this sweep covers bookings that never reported back.
    """
    from badal_trust.services.capacity_service import capacity_service

    hours = older_than_hours or settings.RESERVATION_ORPHAN_TIMEOUT_HOURS
    db = get_db_session()
    try:
        released = capacity_service.release_orphaned_reservations(db, timedelta(hours=hours))
        logger.info(f"Reservation reconciliation completed: {len(released)} released")
        return {"older_than_hours": hours, "released": released}
    except Exception as e:
        logger.error(f"Reservation reconciliation failed: {e}")
        raise self.retry(exc=e)
    finally:
        db.close()
