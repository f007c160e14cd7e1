from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


class GeoSample(BaseModel):
    """One location reading attached to a check-in or check-out event."""

    latitude: float
    longitude: float
    accuracy: float = 0.0  # meters
    address: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    activity: Optional[str] = None
    # Geofence annotation, filled in when the sample is recorded
    geofence_validated: Optional[bool] = None
    geofence_distance_m: Optional[float] = None
    geofence_message: Optional[str] = None
    accuracy_risk: Optional[bool] = None

    model_config = {"frozen": True}

    @field_validator("address", "activity", mode="before")
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class LocationPayload(BaseModel):
    """Client-side geolocation outcome: either a reading or the error the device reported."""

    location: Optional[GeoSample] = None
    location_error: Optional[Literal["timeout", "permission_denied", "unavailable"]] = None
    location_error_message: Optional[str] = None
