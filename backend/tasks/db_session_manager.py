"""
Database sessions for Celery tasks

The refresh sweep and the ledger reconciliation run outside a request, so
they open their own session here. Tests pass their own session factory.
"""
import logging
from contextlib import contextmanager
from typing import Generator
from sqlalchemy.orm import Session

from backend.db.database import SessionLocal

logger = logging.getLogger(__name__)


@contextmanager
def get_celery_db_session(session_factory=None) -> Generator[Session, None, None]:
    """
    Context manager for database sessions in Celery tasks.

    Usage:
        @celery_app.task
        def my_task():
            with get_celery_db_session() as db:
                ...

    Services commit their own units of work; anything left pending is
    committed on exit and rolled back on error.
    """
    db = (session_factory or SessionLocal)()

    try:
        logger.debug("Created database session for Celery task")
        yield db
        db.commit()

    except Exception as e:
        logger.error(f"Database error in Celery task, rolling back: {e}")
        db.rollback()
        raise

    finally:
        db.close()
        logger.debug("Closed database session for Celery task")
