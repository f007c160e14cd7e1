"""
Worker location trail.

Devices post readings while a worker is on the clock. Each reading is linked to
the worker's open session, if any, and checked against that session's site.
"""
from datetime import date, datetime
from typing import List, Optional, Tuple, Union

from sqlalchemy.orm import Session
import structlog

from ..errors import ValidationError
from ..models.models import LocationPing, ScheduleItem, SessionStatus, TimeSession
from ..schemas.geo import GeoSample
from .directory import as_uuid, get_worker, work_context
from .geofence import validate_location
from .location import validate_sample
from .time_rules import ensure_utc
from .time_sessions import date_filter_bounds, find_open_session

logger = structlog.get_logger(__name__)

MAX_HISTORY = 5000


def _session_site(db: Session, session: TimeSession) -> Tuple[Optional[float], Optional[float], Optional[int]]:
    if session.schedule_item_id:
        item = db.get(ScheduleItem, session.schedule_item_id)
        if item and item.location_lat is not None:
            return item.location_lat, item.location_lng, item.geofence_radius_m
    ctx = work_context(db, session.work_order_id, session.building_id)
    return ctx.site_lat, ctx.site_lng, None


def record_location(
    db: Session,
    worker_id,
    geo_sample: GeoSample,
    *,
    schedule_item_id=None,
    work_order_id=None,
) -> LocationPing:
    """
    Store one reading. Without an explicit activity the reading is labelled
    from the open session: working while active, break while paused.
    """
    worker = get_worker(db, worker_id)
    sample = validate_sample(geo_sample)
    session = find_open_session(db, worker.id)

    activity = sample.activity
    check = {"valid": None, "distance_m": None}
    if session:
        if activity is None:
            activity = "break" if session.status == SessionStatus.PAUSED.value else "working"
        lat, lng, radius = _session_site(db, session)
        check = validate_location(
            sample.latitude,
            sample.longitude,
            lat,
            lng,
            accuracy_m=sample.accuracy,
            radius_m=radius,
        )
        schedule_item_id = schedule_item_id or session.schedule_item_id
        work_order_id = work_order_id or session.work_order_id

    ping = LocationPing(
        worker_id=worker.id,
        session_id=session.id if session else None,
        schedule_item_id=as_uuid(schedule_item_id, "schedule_item_id"),
        work_order_id=as_uuid(work_order_id, "work_order_id"),
        recorded_at=ensure_utc(sample.timestamp),
        latitude=sample.latitude,
        longitude=sample.longitude,
        accuracy=sample.accuracy,
        activity=activity,
        address=sample.address,
        geofence_validated=check["valid"],
        geofence_distance_m=check["distance_m"],
    )
    db.add(ping)
    db.commit()
    db.refresh(ping)
    logger.debug(
        "location_recorded",
        worker_id=str(worker.id),
        session_id=str(ping.session_id) if ping.session_id else None,
        activity=activity,
    )
    return ping


def location_history(
    db: Session,
    worker_id,
    start: Optional[Union[date, datetime]] = None,
    end: Optional[Union[date, datetime]] = None,
    limit: int = 1000,
) -> List[LocationPing]:
    """Readings for a worker in device-time order; dates cover whole local days."""
    worker = get_worker(db, worker_id)
    if not 1 <= limit <= MAX_HISTORY:
        raise ValidationError(f"limit must be between 1 and {MAX_HISTORY}")

    lower, upper, upper_inclusive = date_filter_bounds(start, end)
    if lower is not None and upper is not None and (upper < lower or (upper == lower and not upper_inclusive)):
        raise ValidationError("End of range must not be before its start")

    query = db.query(LocationPing).filter(LocationPing.worker_id == worker.id)
    if lower is not None:
        query = query.filter(LocationPing.recorded_at >= lower)
    if upper is not None:
        if upper_inclusive:
            query = query.filter(LocationPing.recorded_at <= upper)
        else:
            query = query.filter(LocationPing.recorded_at < upper)
    return query.order_by(LocationPing.recorded_at, LocationPing.id).limit(limit).all()
