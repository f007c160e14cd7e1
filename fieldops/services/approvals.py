"""
Approval workflow for completed time sessions.
Approved sessions count toward payroll; rejected ones never do.
"""
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session
import structlog

from ..errors import InvalidStateError, ValidationError
from ..models.models import SessionStatus, TimeSession
from .audit import Actor, create_audit_log
from .time_sessions import get_session
from .transactions import commit_or_conflict

logger = structlog.get_logger(__name__)

CONCURRENT_REVIEW = "Time session was reviewed concurrently"


def approve_session(db: Session, session_id, *, actor: Optional[Actor] = None) -> TimeSession:
    """
    Approve a completed session.

    Approving an already-approved session is a no-op so client retries are safe.
    """
    session = get_session(db, session_id)
    if session.status == SessionStatus.APPROVED.value:
        return session
    if session.status != SessionStatus.COMPLETED.value:
        raise InvalidStateError(
            f"Only completed sessions can be approved (status is {session.status})",
            entity_id=str(session.id),
        )

    now = datetime.now(timezone.utc)
    session.status = SessionStatus.APPROVED.value
    session.approved_at = now
    session.approved_by = actor.id if actor else None
    session.updated_at = now

    create_audit_log(
        db,
        entity_type="time_session",
        entity_id=str(session.id),
        action="APPROVE",
        actor=actor,
        changes_json={"before": {"status": "completed"}, "after": {"status": "approved"}},
        context={"worker_id": str(session.worker_id)},
    )
    commit_or_conflict(db, CONCURRENT_REVIEW)
    db.refresh(session)
    logger.info("session_approved", session_id=str(session.id))
    return session


def reject_session(db: Session, session_id, reason: str, *, actor: Optional[Actor] = None) -> TimeSession:
    """Reject a completed session; the reason is required and stored on the session."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A rejection reason is required", entity_id=str(session_id))

    session = get_session(db, session_id)
    if session.status != SessionStatus.COMPLETED.value:
        raise InvalidStateError(
            f"Only completed sessions can be rejected (status is {session.status})",
            entity_id=str(session.id),
        )

    now = datetime.now(timezone.utc)
    session.status = SessionStatus.REJECTED.value
    session.rejection_reason = reason
    session.rejected_at = now
    session.rejected_by = actor.id if actor else None
    session.updated_at = now

    create_audit_log(
        db,
        entity_type="time_session",
        entity_id=str(session.id),
        action="REJECT",
        actor=actor,
        changes_json={"before": {"status": "completed"}, "after": {"status": "rejected"}},
        context={"worker_id": str(session.worker_id), "reason": reason},
    )
    commit_or_conflict(db, CONCURRENT_REVIEW)
    db.refresh(session)
    logger.info("session_rejected", session_id=str(session.id), reason=reason)
    return session


def list_pending(db: Session, limit: Optional[int] = None, offset: int = 0) -> List[TimeSession]:
    """Completed sessions awaiting a decision, most recently closed first."""
    query = db.query(TimeSession).filter(
        TimeSession.status == SessionStatus.COMPLETED.value
    ).order_by(TimeSession.clock_out_time.desc(), TimeSession.id)
    if offset:
        query = query.offset(offset)
    if limit:
        query = query.limit(limit)
    return query.all()
