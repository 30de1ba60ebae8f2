"""
System Router - Health checks and monitoring
"""
from datetime import datetime

import redis
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from badal_trust.config import get_policy, settings
from badal_trust.dependencies import get_db

router = APIRouter()


@router.get("/health")
def health_check(db: Session = Depends(get_db)):
    """
    Health check endpoint returning status of the database, the broker and
    the active policy version.
    """
    database_status = "unhealthy"
    try:
        db.execute(text("SELECT 1"))
        database_status = "healthy"
    except Exception:
        db.rollback()

    redis_status = "unhealthy"
    worker_queue_depth = 0
    try:
        r = redis.from_url(settings.REDIS_URL, socket_connect_timeout=1)
        r.ping()
        redis_status = "healthy"
        worker_queue_depth = r.llen("celery") or 0
    except Exception:
        pass

    return {
        "status": "healthy" if database_status == "healthy" else "degraded",
        "database": database_status,
        "redis": redis_status,
        "worker_queue_depth": worker_queue_depth,
        "policy_version": get_policy().policy_version,
        "timestamp": datetime.utcnow().isoformat() + "Z"
    }
