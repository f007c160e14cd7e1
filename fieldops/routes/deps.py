from typing import Optional

from fastapi import Header

from ..services.audit import Actor
from ..services.directory import as_uuid

ACTOR_ROLES = {"admin", "supervisor", "worker", "system"}


def get_actor(
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
) -> Actor:
    """
    Acting user for audit purposes, read from the X-Actor-Id / X-Actor-Role headers.
    Authentication happens upstream of this service.
    """
    role = (x_actor_role or "").strip().lower() or ("worker" if x_actor_id else "system")
    if role not in ACTOR_ROLES:
        role = "worker"
    return Actor(id=as_uuid(x_actor_id, "X-Actor-Id") if x_actor_id else None, role=role, source="api")
