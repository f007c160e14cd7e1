"""
Typed failures raised by the schedule, time-tracking and payroll services.

Every error carries a stable ``code`` and the HTTP status the API layer
renders it with, so callers can tell "already checked in" apart from a
generic failure.
"""
from typing import Optional


class FieldOpsError(Exception):
    code = "error"
    status_code = 400

    def __init__(self, detail: str, *, entity_id: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.entity_id = entity_id

    def to_dict(self) -> dict:
        payload = {"error": self.code, "detail": self.detail}
        if self.entity_id:
            payload["id"] = self.entity_id
        return payload


class ValidationError(FieldOpsError):
    """Malformed input: bad time window, blank reason, out-of-range coordinates."""
    code = "validation_error"
    status_code = 422


class NotFoundError(FieldOpsError):
    code = "not_found"
    status_code = 404


class InvalidStateError(FieldOpsError):
    """Operation is not legal in the entity's current status."""
    code = "invalid_state"
    status_code = 409


class ConflictError(FieldOpsError):
    """Double check-in or a concurrent modification of the same record."""
    code = "conflict"
    status_code = 409


class LocationUnavailableError(FieldOpsError):
    """Geolocation acquisition failed, was denied, or timed out."""
    code = "location_unavailable"
    status_code = 503

    def __init__(self, detail: str, *, reason: str = "unavailable", entity_id: Optional[str] = None):
        super().__init__(detail, entity_id=entity_id)
        self.reason = reason

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["reason"] = self.reason
        return payload
