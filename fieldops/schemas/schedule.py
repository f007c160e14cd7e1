import datetime as dt
from typing import List, Optional

from pydantic import BaseModel, Field

from .geo import LocationPayload


class ScheduleLocation(BaseModel):
    lat: Optional[float] = None
    lng: Optional[float] = None
    address: Optional[str] = None


class ScheduleItemCreate(BaseModel):
    # References stay optional here so a missing one is reported as a domain
    # validation error alongside unknown ids.
    work_order_id: Optional[str] = None
    worker_id: Optional[str] = None
    date: Optional[dt.date] = None
    start_time: Optional[dt.time] = None
    end_time: Optional[dt.time] = None
    notes: Optional[str] = None
    location: Optional[ScheduleLocation] = None
    geofence_radius_m: Optional[int] = Field(default=None, ge=1)


class CheckInRequest(LocationPayload):
    notes: Optional[str] = None
    photos: List[str] = Field(default_factory=list)


class CheckOutRequest(LocationPayload):
    notes: Optional[str] = None
    photos: List[str] = Field(default_factory=list)
