"""
Database connection and session management
"""
import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from tenacity import (
    before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential
)
from badal_trust.config import settings

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    """
    Create an engine for the given URL.

    SQLite connections open every transaction with BEGIN IMMEDIATE so the
    writer lock is taken before the first read, which keeps the conditional
    capacity updates serialized instead of failing on lock upgrade.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        @event.listens_for(engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20
    )


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db_session():
    """Get a new database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Alias for compatibility
get_db = get_db_session


@contextmanager
def transaction(db: Session):
    """Commit on success, roll back and re-raise on any error"""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


# Bounded backoff for the idempotent storage paths (capacity, certificates)
storage_retry = retry(
    stop=stop_after_attempt(settings.STORAGE_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=0.05, max=settings.STORAGE_RETRY_MAX_WAIT_SEC),
    retry=retry_if_exception_type((OperationalError, IntegrityError, StaleDataError)),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
