from typing import List, Optional

from pydantic import BaseModel, Field

from .geo import GeoSample, LocationPayload


class ClockInRequest(LocationPayload):
    """Unplanned clock-in, not tied to a schedule item."""
    worker_id: str
    work_order_id: Optional[str] = None
    building_id: Optional[str] = None
    notes: Optional[str] = None
    photos: List[str] = Field(default_factory=list)


class ClockOutRequest(LocationPayload):
    notes: Optional[str] = None
    photos: List[str] = Field(default_factory=list)


class PauseRequest(BaseModel):
    reason: Optional[str] = None
    location: Optional[GeoSample] = None


class RejectRequest(BaseModel):
    reason: str = ""


class CorrectHoursRequest(BaseModel):
    corrected_hours: Optional[float] = None
    override_rate: Optional[float] = None
    reason: str = ""


class ProgressUpdateRequest(BaseModel):
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    notes: Optional[str] = None
    photos: List[str] = Field(default_factory=list)


class LocationPingRequest(LocationPayload):
    """A reading from the device while on the clock; activity rides on the sample."""
    schedule_item_id: Optional[str] = None
    work_order_id: Optional[str] = None
