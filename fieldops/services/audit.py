"""
Audit logging service.
Append-only audit log with integrity hashing.

Entries are added to the caller's transaction and never committed here, so an
audit row exists exactly when the mutation it describes is committed.
"""
import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Dict, Any
import uuid

from sqlalchemy.orm import Session

from ..models.models import AuditLog
from ..config import settings


@dataclass(frozen=True)
class Actor:
    """The user on whose behalf an operation runs."""
    id: Optional[uuid.UUID] = None
    role: str = "system"
    source: str = "api"


SYSTEM_ACTOR = Actor(role="system", source="system")


def _json_safe(value: Any) -> Any:
    return json.loads(json.dumps(value, default=str)) if value is not None else None


def compute_integrity_hash(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor_id,
    actor_role: Optional[str],
    source: Optional[str],
    timestamp_utc: datetime,
    changes: Optional[Dict],
    context: Optional[Dict],
    integrity_secret: Optional[str] = None,
) -> str:
    if integrity_secret is None:
        integrity_secret = settings.audit_integrity_secret
    if timestamp_utc.tzinfo is None:
        # SQLite hands back naive datetimes
        timestamp_utc = timestamp_utc.replace(tzinfo=timezone.utc)

    canonical_data = {
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "action": action,
        "actor_id": str(actor_id) if actor_id else None,
        "actor_role": actor_role,
        "source": source,
        "timestamp_utc": timestamp_utc.astimezone(timezone.utc).isoformat(),
        "changes": changes,
        "context": context,
    }
    # Remove None values and sort keys for consistency
    canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
    canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)
    return hashlib.sha256(f"{canonical_json}:{integrity_secret}".encode()).hexdigest()


def verify_audit_log(log: AuditLog, integrity_secret: Optional[str] = None) -> bool:
    """True when the stored row still matches its integrity hash."""
    expected = compute_integrity_hash(
        entity_type=log.entity_type,
        entity_id=log.entity_id,
        action=log.action,
        actor_id=log.actor_id,
        actor_role=log.actor_role,
        source=log.source,
        timestamp_utc=log.timestamp_utc,
        changes=log.changes_json,
        context=log.context,
        integrity_secret=integrity_secret,
    )
    return hmac.compare_digest(expected, log.integrity_hash or "")


def create_audit_log(
    db: Session,
    entity_type: str,
    entity_id: str,
    action: str,
    actor: Optional[Actor] = None,
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
    integrity_secret: Optional[str] = None
) -> AuditLog:
    """
    Add an append-only audit log entry to the current transaction.

    Args:
        db: Database session
        entity_type: schedule_item|time_session
        entity_id: Entity ID
        action: CREATE|UPDATE|CHECK_IN|CHECK_OUT|PAUSE|RESUME|APPROVE|REJECT|CORRECT|PROGRESS|CANCEL|DELETE
        actor: Acting user (defaults to the system actor)
        changes_json: Before/after diff
        context: Additional context (worker_id, GPS data, reasons)
        integrity_secret: Secret mixed into the integrity hash (defaults to AUDIT_INTEGRITY_SECRET)
    """
    actor = actor or SYSTEM_ACTOR
    timestamp_utc = datetime.now(timezone.utc)
    changes_json = _json_safe(changes_json)
    context = _json_safe(context)

    integrity_hash = compute_integrity_hash(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor.id,
        actor_role=actor.role,
        source=actor.source,
        timestamp_utc=timestamp_utc,
        changes=changes_json,
        context=context,
        integrity_secret=integrity_secret,
    )

    audit_log = AuditLog(
        entity_type=entity_type,
        entity_id=uuid.UUID(str(entity_id)),
        action=action,
        actor_id=actor.id,
        actor_role=actor.role,
        source=actor.source,
        changes_json=changes_json,
        timestamp_utc=timestamp_utc,
        context=context,
        integrity_hash=integrity_hash,
    )

    db.add(audit_log)
    return audit_log


def get_audit_logs(
    db: Session,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    limit: int = 100,
    offset: int = 0
) -> list:
    """Audit logs, newest first, optionally filtered by entity."""
    query = db.query(AuditLog)

    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)

    if entity_id:
        query = query.filter(AuditLog.entity_id == uuid.UUID(str(entity_id)))

    query = query.order_by(AuditLog.timestamp_utc.desc())
    query = query.limit(limit).offset(offset)

    return query.all()


def compute_diff(before: Dict, after: Dict) -> Dict:
    """
    Compute a diff between two dictionaries.

    Returns:
        Dict with before/after values for changed fields
    """
    diff = {}
    all_keys = set(before.keys()) | set(after.keys())

    for key in all_keys:
        before_val = before.get(key)
        after_val = after.get(key)

        if before_val != after_val:
            diff[key] = {
                "before": before_val,
                "after": after_val,
            }

    return diff
