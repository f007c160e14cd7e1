from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..services.audit import get_audit_logs as get_logs
from ..services.directory import as_uuid
from .serializers import audit_log_to_dict

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("")
def get_audit_logs(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    """Get audit logs with optional filtering, newest first."""
    logs = get_logs(db, entity_type, as_uuid(entity_id, "entity_id"), limit, offset)
    return [audit_log_to_dict(log) for log in logs]
