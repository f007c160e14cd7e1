"""
Commit helpers that turn storage-level races into ConflictError.
"""
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
import structlog

from ..errors import ConflictError

logger = structlog.get_logger(__name__)


def flush_or_conflict(db: Session, detail: str) -> None:
    """Flush pending changes; a unique-index hit or a stale version rolls back and raises ConflictError."""
    try:
        db.flush()
    except (IntegrityError, StaleDataError) as e:
        db.rollback()
        logger.info("write_conflict", detail=detail, error=e.__class__.__name__)
        raise ConflictError(detail)


def commit_or_conflict(db: Session, detail: str) -> None:
    try:
        db.commit()
    except (IntegrityError, StaleDataError) as e:
        db.rollback()
        logger.info("write_conflict", detail=detail, error=e.__class__.__name__)
        raise ConflictError(detail)
