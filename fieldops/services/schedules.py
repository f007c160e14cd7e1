"""
Schedule item state machine.

    scheduled -> in_progress -> completed
    scheduled | in_progress -> cancelled

Check-in and check-out go through the time session ledger, and the resulting
session id is stored on the schedule item so the two records never have to be
matched up by worker and time window.
"""
from datetime import date, datetime, time, timezone
from typing import Dict, List, Optional

from sqlalchemy.orm import Session
import structlog

from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..models.models import (
    OPEN_SESSION_STATUSES,
    ScheduleItem,
    ScheduleStatus,
    TimeSession,
)
from ..schemas.geo import GeoSample
from . import time_sessions
from .audit import Actor, compute_diff, create_audit_log
from .directory import as_uuid, get_worker, get_work_order, work_context
from .transactions import commit_or_conflict

logger = structlog.get_logger(__name__)

SCHEDULE_TRANSITIONS = {
    ScheduleStatus.SCHEDULED: {ScheduleStatus.IN_PROGRESS, ScheduleStatus.CANCELLED},
    ScheduleStatus.IN_PROGRESS: {ScheduleStatus.COMPLETED, ScheduleStatus.CANCELLED},
    ScheduleStatus.COMPLETED: set(),
    ScheduleStatus.CANCELLED: set(),
}

EDITABLE_FIELDS = {
    "work_order_id",
    "worker_id",
    "date",
    "start_time",
    "end_time",
    "notes",
    "location_address",
    "location_lat",
    "location_lng",
    "geofence_radius_m",
}

CONCURRENT_UPDATE = "Schedule item was modified concurrently"


def can_transition(current: str, target: ScheduleStatus) -> bool:
    return target in SCHEDULE_TRANSITIONS[ScheduleStatus(current)]


def _transition(item: ScheduleItem, target: ScheduleStatus, action: str) -> str:
    before = item.status
    if not can_transition(before, target):
        raise InvalidStateError(
            f"Cannot {action} a schedule item that is {before}",
            entity_id=str(item.id),
        )
    item.status = target.value
    return before


def _parse_time(value, field: str) -> time:
    if isinstance(value, time):
        return value
    try:
        return time.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be a time in HH:MM format")


def _parse_date(value, field: str = "date") -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).split("T")[0])
    except ValueError:
        raise ValidationError(f"{field} must be a date in YYYY-MM-DD format")


def _validate_window(start_time: time, end_time: time) -> None:
    if end_time <= start_time:
        raise ValidationError("End time must be after start time")


def _coordinate(value, field: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")


def _validate_coordinates(lat, lng):
    """Coerce a target location to floats; both or neither must be given."""
    lat = _coordinate(lat, "location_lat")
    lng = _coordinate(lng, "location_lng")
    if (lat is None) != (lng is None):
        raise ValidationError("Location needs both latitude and longitude")
    if lat is not None and not -90 <= lat <= 90:
        raise ValidationError(f"Latitude {lat} is out of range [-90, 90]")
    if lng is not None and not -180 <= lng <= 180:
        raise ValidationError(f"Longitude {lng} is out of range [-180, 180]")
    return lat, lng


def _validate_radius(value) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError("geofence_radius_m must be a whole number of meters, at least 1")
    return value


def _snapshot(item: ScheduleItem) -> Dict:
    return {
        "work_order_id": str(item.work_order_id),
        "worker_id": str(item.worker_id),
        "date": item.date.isoformat() if item.date else None,
        "start_time": item.start_time.isoformat() if item.start_time else None,
        "end_time": item.end_time.isoformat() if item.end_time else None,
        "status": item.status,
        "notes": item.notes,
        "location_address": item.location_address,
        "location_lat": float(item.location_lat) if item.location_lat is not None else None,
        "location_lng": float(item.location_lng) if item.location_lng is not None else None,
        "geofence_radius_m": item.geofence_radius_m,
    }


def _require_reference(db: Session, kind: str, value):
    if not value:
        raise ValidationError(f"{kind}_id is required")
    try:
        if kind == "worker":
            return get_worker(db, value)
        return get_work_order(db, value)
    except NotFoundError as e:
        raise ValidationError(e.detail, entity_id=e.entity_id)


def get_schedule_item(db: Session, item_id) -> ScheduleItem:
    item_id = as_uuid(item_id, "schedule_item_id")
    item = db.query(ScheduleItem).filter(ScheduleItem.id == item_id).first()
    if not item:
        raise NotFoundError("Schedule item not found", entity_id=str(item_id))
    return item


def create_schedule_item(
    db: Session,
    *,
    work_order_id,
    worker_id,
    date,
    start_time,
    end_time,
    notes: Optional[str] = None,
    location: Optional[Dict] = None,
    geofence_radius_m: Optional[int] = None,
    actor: Optional[Actor] = None,
) -> ScheduleItem:
    worker = _require_reference(db, "worker", worker_id)
    work_order = _require_reference(db, "work_order", work_order_id)
    if date is None:
        raise ValidationError("date is required")
    if start_time is None or end_time is None:
        raise ValidationError("start_time and end_time are required")
    item_date = _parse_date(date)
    start = _parse_time(start_time, "start_time")
    end = _parse_time(end_time, "end_time")
    _validate_window(start, end)

    location = dict(location or {})
    lat, lng = location.get("lat"), location.get("lng")
    address = location.get("address")
    if lat is None and lng is None:
        # Default the target to the work order's building
        ctx = work_context(db, work_order.id)
        lat, lng = ctx.site_lat, ctx.site_lng
    lat, lng = _validate_coordinates(lat, lng)

    item = ScheduleItem(
        work_order_id=work_order.id,
        worker_id=worker.id,
        date=item_date,
        start_time=start,
        end_time=end,
        status=ScheduleStatus.SCHEDULED.value,
        notes=notes,
        location_address=address,
        location_lat=lat,
        location_lng=lng,
        geofence_radius_m=_validate_radius(geofence_radius_m),
        created_by=actor.id if actor else None,
        created_at=datetime.now(timezone.utc),
    )
    db.add(item)
    db.flush()

    create_audit_log(
        db,
        entity_type="schedule_item",
        entity_id=str(item.id),
        action="CREATE",
        actor=actor,
        changes_json={"after": _snapshot(item)},
        context={"worker_id": str(worker.id), "work_order_id": str(work_order.id)},
    )
    db.commit()
    db.refresh(item)
    logger.info("schedule_item_created", schedule_item_id=str(item.id), worker_id=str(worker.id))
    return item


def edit_schedule_item(
    db: Session,
    item_id,
    patch: Dict,
    *,
    actor: Optional[Actor] = None,
) -> ScheduleItem:
    """
    Apply a partial update. Status is never patched directly; it only moves
    through check-in, check-out and cancel.
    """
    item = get_schedule_item(db, item_id)
    if item.status == ScheduleStatus.CANCELLED.value:
        raise InvalidStateError("Cancelled schedule items cannot be edited", entity_id=str(item.id))

    unknown = set(patch) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

    before = _snapshot(item)

    if "worker_id" in patch and as_uuid(patch["worker_id"], "worker_id") != item.worker_id:
        if item.status != ScheduleStatus.SCHEDULED.value:
            raise InvalidStateError(
                "The worker can only be changed before check-in",
                entity_id=str(item.id),
            )
        item.worker_id = _require_reference(db, "worker", patch["worker_id"]).id
    if "work_order_id" in patch:
        item.work_order_id = _require_reference(db, "work_order", patch["work_order_id"]).id
    if "date" in patch:
        if patch["date"] is None:
            raise ValidationError("date is required")
        item.date = _parse_date(patch["date"])

    start = item.start_time
    end = item.end_time
    if "start_time" in patch:
        start = _parse_time(patch["start_time"], "start_time")
    if "end_time" in patch:
        end = _parse_time(patch["end_time"], "end_time")
    if "start_time" in patch or "end_time" in patch:
        _validate_window(start, end)
        item.start_time = start
        item.end_time = end

    if "notes" in patch:
        item.notes = patch["notes"]
    if "location_address" in patch:
        item.location_address = patch["location_address"]
    if "location_lat" in patch or "location_lng" in patch:
        lat = patch.get("location_lat", item.location_lat)
        lng = patch.get("location_lng", item.location_lng)
        lat, lng = _validate_coordinates(lat, lng)
        item.location_lat = lat
        item.location_lng = lng
    if "geofence_radius_m" in patch:
        item.geofence_radius_m = _validate_radius(patch["geofence_radius_m"])

    item.updated_at = datetime.now(timezone.utc)
    changes = compute_diff(before, _snapshot(item))
    create_audit_log(
        db,
        entity_type="schedule_item",
        entity_id=str(item.id),
        action="UPDATE",
        actor=actor,
        changes_json=changes,
    )
    commit_or_conflict(db, CONCURRENT_UPDATE)
    db.refresh(item)
    logger.info("schedule_item_updated", schedule_item_id=str(item.id), fields=sorted(changes))
    return item


def check_in(
    db: Session,
    item_id,
    geo_sample: GeoSample,
    *,
    notes: Optional[str] = None,
    photos: Optional[List[str]] = None,
    actor: Optional[Actor] = None,
    at: Optional[datetime] = None,
) -> ScheduleItem:
    """
    Start work on a scheduled item: opens an active time session for the
    worker and moves the item to in_progress in one transaction.
    """
    item = get_schedule_item(db, item_id)
    before = _transition(item, ScheduleStatus.IN_PROGRESS, "check in to")

    try:
        session = time_sessions.clock_in(
            db,
            item.worker_id,
            geo_sample,
            schedule_item_id=item.id,
            work_order_id=item.work_order_id,
            notes=notes,
            photos=photos,
            site_lat=float(item.location_lat) if item.location_lat is not None else None,
            site_lng=float(item.location_lng) if item.location_lng is not None else None,
            site_radius_m=item.geofence_radius_m,
            actor=actor,
            at=at,
            commit=False,
        )
    except Exception:
        db.rollback()
        raise

    item.time_session_id = session.id
    item.checked_in_at = session.clock_in_time
    item.updated_at = session.clock_in_time

    create_audit_log(
        db,
        entity_type="schedule_item",
        entity_id=str(item.id),
        action="CHECK_IN",
        actor=actor,
        changes_json={"before": {"status": before}, "after": {"status": item.status}},
        context={"worker_id": str(item.worker_id), "time_session_id": str(session.id)},
    )
    commit_or_conflict(db, CONCURRENT_UPDATE)
    db.refresh(item)
    logger.info(
        "schedule_checked_in",
        schedule_item_id=str(item.id),
        time_session_id=str(session.id),
        worker_id=str(item.worker_id),
    )
    return item


def check_out(
    db: Session,
    item_id,
    geo_sample: GeoSample,
    *,
    notes: Optional[str] = None,
    photos: Optional[List[str]] = None,
    actor: Optional[Actor] = None,
    at: Optional[datetime] = None,
) -> ScheduleItem:
    """Finish work: closes the linked session and completes the item."""
    item = get_schedule_item(db, item_id)
    if item.status != ScheduleStatus.IN_PROGRESS.value:
        raise InvalidStateError(
            f"Cannot check out of a schedule item that is {item.status}",
            entity_id=str(item.id),
        )
    session: Optional[TimeSession] = item.time_session
    if session is None or session.status not in OPEN_SESSION_STATUSES:
        raise InvalidStateError(
            "Schedule item has no open time session to check out of",
            entity_id=str(item.id),
        )

    try:
        session = time_sessions.clock_out(
            db,
            session.id,
            geo_sample,
            notes=notes,
            photos=photos,
            site_lat=float(item.location_lat) if item.location_lat is not None else None,
            site_lng=float(item.location_lng) if item.location_lng is not None else None,
            site_radius_m=item.geofence_radius_m,
            actor=actor,
            at=at,
            commit=False,
        )
    except Exception:
        db.rollback()
        raise

    before = _transition(item, ScheduleStatus.COMPLETED, "check out of")
    item.checked_out_at = session.clock_out_time
    item.check_out_notes = notes
    item.updated_at = session.clock_out_time

    create_audit_log(
        db,
        entity_type="schedule_item",
        entity_id=str(item.id),
        action="CHECK_OUT",
        actor=actor,
        changes_json={"before": {"status": before}, "after": {"status": item.status}},
        context={"worker_id": str(item.worker_id), "time_session_id": str(session.id)},
    )
    commit_or_conflict(db, CONCURRENT_UPDATE)
    db.refresh(item)
    logger.info(
        "schedule_checked_out",
        schedule_item_id=str(item.id),
        time_session_id=str(session.id),
    )
    return item


def cancel_schedule_item(db: Session, item_id, *, actor: Optional[Actor] = None) -> ScheduleItem:
    """
    Cancel a scheduled or in-progress item.

    An open linked session is not closed; it stays active and is flagged with
    needs_reconciliation so an admin can clock it out or delete it.
    """
    item = get_schedule_item(db, item_id)
    before = _transition(item, ScheduleStatus.CANCELLED, "cancel")
    now = datetime.now(timezone.utc)
    item.cancelled_at = now
    item.cancelled_by = actor.id if actor else None
    item.updated_at = now

    flagged_session = None
    session = item.time_session
    if session is not None and session.status in OPEN_SESSION_STATUSES:
        session.needs_reconciliation = True
        session.updated_at = now
        flagged_session = session.id

    create_audit_log(
        db,
        entity_type="schedule_item",
        entity_id=str(item.id),
        action="CANCEL",
        actor=actor,
        changes_json={"before": {"status": before}, "after": {"status": item.status}},
        context={
            "worker_id": str(item.worker_id),
            "open_time_session_id": str(flagged_session) if flagged_session else None,
        },
    )
    commit_or_conflict(db, CONCURRENT_UPDATE)
    db.refresh(item)
    logger.info(
        "schedule_item_cancelled",
        schedule_item_id=str(item.id),
        open_time_session_id=str(flagged_session) if flagged_session else None,
    )
    return item


def delete_schedule_item(db: Session, item_id, *, actor: Optional[Actor] = None) -> None:
    """Hard delete in any state. The linked time session is kept."""
    item = get_schedule_item(db, item_id)
    snapshot = _snapshot(item)
    session = item.time_session
    if session is not None:
        session.schedule_item_id = None

    create_audit_log(
        db,
        entity_type="schedule_item",
        entity_id=str(item.id),
        action="DELETE",
        actor=actor,
        changes_json={"before": snapshot},
        context={"time_session_id": str(session.id) if session else None},
    )
    db.delete(item)
    commit_or_conflict(db, CONCURRENT_UPDATE)
    logger.info("schedule_item_deleted", schedule_item_id=str(item_id))


def list_schedule(
    db: Session,
    start_date=None,
    end_date=None,
    worker_id=None,
    status: Optional[str] = None,
    work_order_id=None,
) -> List[ScheduleItem]:
    """Schedule items in the inclusive date range, ordered by date then start time."""
    query = db.query(ScheduleItem)
    if start_date is not None:
        query = query.filter(ScheduleItem.date >= _parse_date(start_date, "start_date"))
    if end_date is not None:
        query = query.filter(ScheduleItem.date <= _parse_date(end_date, "end_date"))
    if worker_id:
        query = query.filter(ScheduleItem.worker_id == as_uuid(worker_id, "worker_id"))
    if work_order_id:
        query = query.filter(ScheduleItem.work_order_id == as_uuid(work_order_id, "work_order_id"))
    if status:
        try:
            query = query.filter(ScheduleItem.status == ScheduleStatus(status).value)
        except ValueError:
            raise ValidationError(f"Unknown schedule status filter: {status}")
    return query.order_by(ScheduleItem.date, ScheduleItem.start_time, ScheduleItem.id).all()
