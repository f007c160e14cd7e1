"""
Time session ledger.

Owns clock-in/clock-out records, break tracking and the rule that a worker has
at most one open (active or paused) session at a time.
"""
from datetime import date, datetime, timezone
from typing import Dict, Iterator, List, Optional
import uuid

from sqlalchemy.orm import Session
import structlog

from ..config import settings
from ..errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from ..models.models import (
    OPEN_SESSION_STATUSES,
    LocationPing,
    ProgressUpdate,
    ScheduleItem,
    SessionBreak,
    SessionStatus,
    TimeSession,
)
from ..schemas.geo import GeoSample
from .audit import Actor, create_audit_log
from .directory import as_uuid, get_worker, work_context
from .geofence import validate_location
from .location import validate_sample
from .time_rules import day_bounds_utc, ensure_utc, minutes_between, worked_hours
from .transactions import commit_or_conflict, flush_or_conflict

logger = structlog.get_logger(__name__)

ALREADY_CHECKED_IN = "Worker is already checked in"


def _now(at: Optional[datetime]) -> datetime:
    return ensure_utc(at) if at else datetime.now(timezone.utc)


def record_sample(
    sample: GeoSample,
    target_lat: Optional[float] = None,
    target_lng: Optional[float] = None,
    radius_m: Optional[float] = None,
) -> Dict:
    """Validate a sample, annotate it with the geofence check, and return its stored form."""
    sample = validate_sample(sample)
    check = validate_location(
        sample.latitude,
        sample.longitude,
        target_lat,
        target_lng,
        accuracy_m=sample.accuracy,
        radius_m=radius_m,
    )
    annotated = sample.model_copy(update={
        "geofence_validated": check["valid"],
        "geofence_distance_m": check["distance_m"],
        "geofence_message": check["message"],
        "accuracy_risk": check["accuracy_risk"],
    })
    return annotated.model_dump(mode="json")


def get_session(db: Session, session_id) -> TimeSession:
    session_id = as_uuid(session_id, "session_id")
    session = db.query(TimeSession).filter(TimeSession.id == session_id).first()
    if not session:
        raise NotFoundError("Time session not found", entity_id=str(session_id))
    return session


def find_open_session(db: Session, worker_id) -> Optional[TimeSession]:
    return db.query(TimeSession).filter(
        TimeSession.worker_id == as_uuid(worker_id, "worker_id"),
        TimeSession.status.in_(OPEN_SESSION_STATUSES),
    ).first()


def clock_in(
    db: Session,
    worker_id,
    geo_sample: GeoSample,
    *,
    schedule_item_id: Optional[uuid.UUID] = None,
    work_order_id: Optional[uuid.UUID] = None,
    building_id: Optional[uuid.UUID] = None,
    notes: Optional[str] = None,
    photos: Optional[List[str]] = None,
    site_lat: Optional[float] = None,
    site_lng: Optional[float] = None,
    site_radius_m: Optional[float] = None,
    actor: Optional[Actor] = None,
    at: Optional[datetime] = None,
    commit: bool = True,
) -> TimeSession:
    """
    Open a new active session for a worker.

    Raises ConflictError when the worker already has an active or paused session.
    The open-session check is backed by a partial unique index, so two racing
    requests cannot both succeed.
    """
    worker = get_worker(db, worker_id)
    ctx = work_context(db, as_uuid(work_order_id, "work_order_id"), building_id)

    existing = find_open_session(db, worker.id)
    if existing:
        raise ConflictError(ALREADY_CHECKED_IN, entity_id=str(existing.id))

    check_in = record_sample(
        geo_sample,
        site_lat if site_lat is not None else ctx.site_lat,
        site_lng if site_lng is not None else ctx.site_lng,
        site_radius_m,
    )
    clock_in_time = _now(at)

    session = TimeSession(
        worker_id=worker.id,
        building_id=ctx.building_id,
        work_order_id=ctx.work_order_id,
        schedule_item_id=as_uuid(schedule_item_id, "schedule_item_id"),
        clock_in_time=clock_in_time,
        break_minutes=0,
        status=SessionStatus.ACTIVE.value,
        check_in=check_in,
        notes=notes,
        photos=list(photos or []),
        apartment_number=ctx.apartment_number,
        work_type=ctx.work_type,
        created_at=clock_in_time,
    )
    db.add(session)
    flush_or_conflict(db, ALREADY_CHECKED_IN)

    create_audit_log(
        db,
        entity_type="time_session",
        entity_id=str(session.id),
        action="CLOCK_IN",
        actor=actor,
        changes_json={"after": {"status": session.status}},
        context={
            "worker_id": str(worker.id),
            "schedule_item_id": str(session.schedule_item_id) if session.schedule_item_id else None,
            "gps": check_in,
        },
    )
    if commit:
        commit_or_conflict(db, ALREADY_CHECKED_IN)
        db.refresh(session)

    logger.info(
        "session_clocked_in",
        session_id=str(session.id),
        worker_id=str(worker.id),
        geofence_validated=check_in.get("geofence_validated"),
    )
    return session


def pause_session(
    db: Session,
    session_id,
    geo_sample: Optional[GeoSample] = None,
    *,
    reason: Optional[str] = None,
    actor: Optional[Actor] = None,
    at: Optional[datetime] = None,
) -> TimeSession:
    session = get_session(db, session_id)
    if session.status != SessionStatus.ACTIVE.value:
        raise InvalidStateError(
            f"Only active sessions can be paused (status is {session.status})",
            entity_id=str(session.id),
        )

    location = validate_sample(geo_sample).model_dump(mode="json") if geo_sample else None
    started = _now(at)
    session.breaks.append(SessionBreak(start_time=started, reason=reason, location=location))
    session.paused_at = started
    session.status = SessionStatus.PAUSED.value
    session.updated_at = started

    create_audit_log(
        db,
        entity_type="time_session",
        entity_id=str(session.id),
        action="PAUSE",
        actor=actor,
        changes_json={"before": {"status": "active"}, "after": {"status": "paused"}},
        context={"reason": reason, "gps": location},
    )
    commit_or_conflict(db, "Time session was modified concurrently")
    db.refresh(session)
    logger.info("session_paused", session_id=str(session.id))
    return session


def _close_open_break(session: TimeSession, ended: datetime) -> float:
    """End the open break, if any, and add its minutes to the session total."""
    open_break = next((b for b in session.breaks if b.end_time is None), None)
    start = open_break.start_time if open_break else session.paused_at
    if start is None:
        return 0.0
    minutes = max(0.0, minutes_between(start, ended))
    if open_break:
        open_break.end_time = ended
        open_break.duration_minutes = minutes
    session.break_minutes = float(session.break_minutes or 0) + minutes
    session.paused_at = None
    return minutes


def resume_session(
    db: Session,
    session_id,
    *,
    actor: Optional[Actor] = None,
    at: Optional[datetime] = None,
) -> TimeSession:
    session = get_session(db, session_id)
    if session.status != SessionStatus.PAUSED.value:
        raise InvalidStateError(
            f"Only paused sessions can be resumed (status is {session.status})",
            entity_id=str(session.id),
        )

    ended = _now(at)
    minutes = _close_open_break(session, ended)
    session.status = SessionStatus.ACTIVE.value
    session.updated_at = ended

    create_audit_log(
        db,
        entity_type="time_session",
        entity_id=str(session.id),
        action="RESUME",
        actor=actor,
        changes_json={"before": {"status": "paused"}, "after": {"status": "active"}},
        context={"break_minutes": minutes},
    )
    commit_or_conflict(db, "Time session was modified concurrently")
    db.refresh(session)
    logger.info("session_resumed", session_id=str(session.id), break_minutes=minutes)
    return session


def add_progress_update(
    db: Session,
    session_id,
    *,
    progress: Optional[int] = None,
    notes: Optional[str] = None,
    photos: Optional[List[str]] = None,
    actor: Optional[Actor] = None,
    at: Optional[datetime] = None,
) -> TimeSession:
    """
    Attach a progress report (percent complete, notes, photo references) to an
    active or paused session.
    """
    session = get_session(db, session_id)
    if session.status not in OPEN_SESSION_STATUSES:
        raise InvalidStateError(
            f"Progress can only be reported on an open session (status is {session.status})",
            entity_id=str(session.id),
        )
    if progress is not None:
        if isinstance(progress, bool) or not isinstance(progress, int) or not 0 <= progress <= 100:
            raise ValidationError("Progress must be a whole percentage between 0 and 100")
    notes = (notes or "").strip() or None
    photos = list(photos or [])
    if progress is None and notes is None and not photos:
        raise ValidationError("A progress update needs a percentage, notes or photos")

    reported = _now(at)
    update = ProgressUpdate(
        timestamp=reported,
        progress=progress,
        notes=notes,
        photos=photos,
        created_by=actor.id if actor else None,
    )
    session.progress_updates.append(update)
    session.updated_at = reported

    create_audit_log(
        db,
        entity_type="time_session",
        entity_id=str(session.id),
        action="PROGRESS",
        actor=actor,
        changes_json={"after": {"progress": progress}},
        context={"notes": notes, "photos": len(photos)},
    )
    commit_or_conflict(db, "Time session was modified concurrently")
    db.refresh(session)
    logger.info("session_progress_reported", session_id=str(session.id), progress=progress)
    return session


def clock_out(
    db: Session,
    session_id,
    geo_sample: GeoSample,
    *,
    notes: Optional[str] = None,
    photos: Optional[List[str]] = None,
    site_lat: Optional[float] = None,
    site_lng: Optional[float] = None,
    site_radius_m: Optional[float] = None,
    actor: Optional[Actor] = None,
    at: Optional[datetime] = None,
    commit: bool = True,
) -> TimeSession:
    """Close an active or paused session; an open break is ended at clock-out time."""
    session = get_session(db, session_id)
    if session.status not in OPEN_SESSION_STATUSES:
        raise InvalidStateError(
            f"Time session is already {session.status}",
            entity_id=str(session.id),
        )

    clock_out_time = _now(at)
    if clock_out_time < ensure_utc(session.clock_in_time):
        raise ValidationError("Clock-out time cannot be before clock-in time", entity_id=str(session.id))

    if site_lat is None and site_lng is None:
        ctx = work_context(db, session.work_order_id, session.building_id)
        site_lat, site_lng = ctx.site_lat, ctx.site_lng
    check_out = record_sample(geo_sample, site_lat, site_lng, site_radius_m)

    before_status = session.status
    if session.status == SessionStatus.PAUSED.value:
        _close_open_break(session, clock_out_time)

    session.clock_out_time = clock_out_time
    session.check_out = check_out
    session.status = SessionStatus.COMPLETED.value
    session.updated_at = clock_out_time
    if photos:
        session.photos = list(session.photos or []) + list(photos)
    if notes:
        session.notes = f"{session.notes}\n\nClock-out notes: {notes}" if session.notes else f"Clock-out notes: {notes}"

    flush_or_conflict(db, "Time session was modified concurrently")
    create_audit_log(
        db,
        entity_type="time_session",
        entity_id=str(session.id),
        action="CLOCK_OUT",
        actor=actor,
        changes_json={"before": {"status": before_status}, "after": {"status": session.status}},
        context={"worker_id": str(session.worker_id), "gps": check_out},
    )
    if commit:
        commit_or_conflict(db, "Time session was modified concurrently")
        db.refresh(session)

    logger.info(
        "session_clocked_out",
        session_id=str(session.id),
        worker_id=str(session.worker_id),
        break_minutes=session.break_minutes,
    )
    return session


def delete_session(db: Session, session_id, *, actor: Optional[Actor] = None) -> None:
    """Hard delete in any status; schedule items keep existing without the link."""
    session = get_session(db, session_id)
    snapshot = {
        "worker_id": str(session.worker_id),
        "status": session.status,
        "clock_in_time": session.clock_in_time,
        "clock_out_time": session.clock_out_time,
    }
    db.query(ScheduleItem).filter(ScheduleItem.time_session_id == session.id).update(
        {ScheduleItem.time_session_id: None}, synchronize_session="fetch"
    )
    db.query(LocationPing).filter(LocationPing.session_id == session.id).update(
        {LocationPing.session_id: None}, synchronize_session="fetch"
    )
    create_audit_log(
        db,
        entity_type="time_session",
        entity_id=str(session.id),
        action="DELETE",
        actor=actor,
        changes_json={"before": snapshot},
    )
    db.delete(session)
    commit_or_conflict(db, "Time session was modified concurrently")
    logger.info("session_deleted", session_id=str(session_id), worker_id=snapshot["worker_id"])


def correct_hours(
    db: Session,
    session_id,
    *,
    reason: str,
    corrected_hours: Optional[float] = None,
    override_rate: Optional[float] = None,
    actor: Optional[Actor] = None,
) -> TimeSession:
    """
    Record an admin correction of hours and/or hourly rate on a closed session.

    Corrections feed the payment report, which flags the session as corrected
    and shows the reason.
    """
    session = get_session(db, session_id)
    if session.status not in (SessionStatus.COMPLETED.value, SessionStatus.APPROVED.value):
        raise InvalidStateError(
            f"Only completed or approved sessions can be corrected (status is {session.status})",
            entity_id=str(session.id),
        )
    if corrected_hours is None and override_rate is None:
        raise ValidationError("Provide corrected hours or an override rate")
    if corrected_hours is not None and corrected_hours < 0:
        raise ValidationError("Corrected hours cannot be negative")
    if override_rate is not None and override_rate < 0:
        raise ValidationError("Override rate cannot be negative")
    reason = (reason or "").strip()
    if len(reason) < settings.require_reason_min_chars:
        raise ValidationError(
            f"Correction reason must be at least {settings.require_reason_min_chars} characters"
        )

    before = {
        "corrected_hours": session.corrected_hours,
        "override_rate": float(session.override_rate) if session.override_rate is not None else None,
        "correction_reason": session.correction_reason,
    }
    now = datetime.now(timezone.utc)
    if corrected_hours is not None:
        session.corrected_hours = float(corrected_hours)
    if override_rate is not None:
        session.override_rate = override_rate
    session.correction_reason = reason
    session.corrected_by = actor.id if actor else None
    session.corrected_at = now
    session.updated_at = now

    create_audit_log(
        db,
        entity_type="time_session",
        entity_id=str(session.id),
        action="CORRECT",
        actor=actor,
        changes_json={
            "before": before,
            "after": {
                "corrected_hours": session.corrected_hours,
                "override_rate": float(session.override_rate) if session.override_rate is not None else None,
                "correction_reason": reason,
            },
        },
    )
    commit_or_conflict(db, "Time session was modified concurrently")
    db.refresh(session)
    logger.info("session_corrected", session_id=str(session.id))
    return session


def date_filter_bounds(start_date, end_date):
    """Dates cover whole local days; datetimes are used as given."""
    lower = upper = None
    upper_inclusive = True
    if start_date is not None:
        if isinstance(start_date, datetime):
            lower = ensure_utc(start_date)
        else:
            lower, _ = day_bounds_utc(start_date, start_date, settings.tz_default)
    if end_date is not None:
        if isinstance(end_date, datetime):
            upper = ensure_utc(end_date)
        else:
            _, upper = day_bounds_utc(end_date, end_date, settings.tz_default)
            upper_inclusive = False
    return lower, upper, upper_inclusive


def query_sessions(
    db: Session,
    worker_id=None,
    building_id=None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    status=None,
):
    """Sessions matching every supplied filter; omitted filters match anything."""
    query = db.query(TimeSession)
    if worker_id:
        query = query.filter(TimeSession.worker_id == as_uuid(worker_id, "worker_id"))
    if building_id:
        query = query.filter(TimeSession.building_id == as_uuid(building_id, "building_id"))
    if status:
        statuses = [status] if isinstance(status, str) else list(status)
        try:
            values = [SessionStatus(s).value for s in statuses]
        except ValueError:
            raise ValidationError(f"Unknown session status filter: {status}")
        query = query.filter(TimeSession.status.in_(values))

    lower, upper, upper_inclusive = date_filter_bounds(start_date, end_date)
    if lower is not None:
        query = query.filter(TimeSession.clock_in_time >= lower)
    if upper is not None:
        if upper_inclusive:
            query = query.filter(TimeSession.clock_in_time <= upper)
        else:
            query = query.filter(TimeSession.clock_in_time < upper)
    return query.order_by(TimeSession.clock_in_time.desc(), TimeSession.id)


def list_sessions(
    db: Session,
    worker_id=None,
    building_id=None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    status=None,
) -> Iterator[TimeSession]:
    """Lazily stream sessions matching the filters, newest clock-in first."""
    query = query_sessions(db, worker_id, building_id, start_date, end_date, status)
    yield from query.yield_per(200)


def get_worker_status(db: Session, worker_id) -> Dict:
    worker = get_worker(db, worker_id)
    session = find_open_session(db, worker.id)
    return {
        "worker_id": worker.id,
        "is_active": session is not None,
        "is_paused": bool(session and session.status == SessionStatus.PAUSED.value),
        "session": session,
    }


def session_stats(
    db: Session,
    worker_id=None,
    building_id=None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> Dict:
    """Totals over closed, non-rejected sessions matching the filters."""
    total_sessions = 0
    total_hours = 0.0
    total_break = 0.0
    approved = 0
    pending = 0
    corrected = 0

    closed = [SessionStatus.COMPLETED.value, SessionStatus.APPROVED.value]
    for session in list_sessions(db, worker_id, building_id, start_date, end_date, status=closed):
        hours = worked_hours(
            session.clock_in_time,
            session.clock_out_time,
            session.break_minutes,
            session.corrected_hours,
        ) or 0.0
        total_sessions += 1
        total_hours += hours
        total_break += float(session.break_minutes or 0)
        if session.status == SessionStatus.APPROVED.value:
            approved += 1
        else:
            pending += 1
        if session.corrected_hours is not None or session.override_rate is not None:
            corrected += 1

    return {
        "total_sessions": total_sessions,
        "total_hours": round(total_hours, 2),
        "total_break_minutes": round(total_break, 2),
        "average_hours_per_session": round(total_hours / total_sessions, 2) if total_sessions else 0,
        "approved_sessions": approved,
        "pending_sessions": pending,
        "corrected_sessions": corrected,
    }
