"""
Time tracking API routes.
Handles time sessions, approvals, and the payment report.
"""
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from ..db import get_db
from ..schemas.payments import PaymentReport
from ..schemas.time_tracking import (
    ClockInRequest,
    ClockOutRequest,
    CorrectHoursRequest,
    LocationPingRequest,
    PauseRequest,
    ProgressUpdateRequest,
    RejectRequest,
)
from ..services import approvals, location_trail, payments, time_sessions
from ..services.audit import Actor
from ..services.location import PayloadLocationProvider, acquire_geo_sample
from .deps import get_actor
from .serializers import location_ping_to_dict, session_to_dict

router = APIRouter(prefix="/time-tracking", tags=["time-tracking"])


@router.post("/clock-in", status_code=201)
async def clock_in(
    body: ClockInRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Unplanned clock-in. 409 when the worker already has an open session."""
    sample = await acquire_geo_sample(PayloadLocationProvider(body))
    session = await run_in_threadpool(
        time_sessions.clock_in,
        db,
        body.worker_id,
        sample,
        work_order_id=body.work_order_id,
        building_id=body.building_id,
        notes=body.notes,
        photos=body.photos,
        actor=actor,
    )
    return session_to_dict(session)


@router.post("/sessions/{session_id}/clock-out")
async def clock_out(
    session_id: str,
    body: ClockOutRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    sample = await acquire_geo_sample(PayloadLocationProvider(body))
    session = await run_in_threadpool(
        time_sessions.clock_out,
        db,
        session_id,
        sample,
        notes=body.notes,
        photos=body.photos,
        actor=actor,
    )
    return session_to_dict(session)


@router.post("/sessions/{session_id}/pause")
def pause_session(
    session_id: str,
    body: Optional[PauseRequest] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Start a break; an optional location records where it was taken."""
    reason = body.reason if body else None
    location = body.location if body else None
    return session_to_dict(time_sessions.pause_session(db, session_id, location, reason=reason, actor=actor))


@router.post("/sessions/{session_id}/resume")
def resume_session(
    session_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return session_to_dict(time_sessions.resume_session(db, session_id, actor=actor))


@router.post("/sessions/{session_id}/progress")
def add_progress_update(
    session_id: str,
    body: ProgressUpdateRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    session = time_sessions.add_progress_update(
        db,
        session_id,
        progress=body.progress,
        notes=body.notes,
        photos=body.photos,
        actor=actor,
    )
    return session_to_dict(session)


@router.post("/sessions/{session_id}/approve")
def approve_session(
    session_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Approve a completed session. Approving twice returns the same result."""
    return session_to_dict(approvals.approve_session(db, session_id, actor=actor))


@router.post("/sessions/{session_id}/reject")
def reject_session(
    session_id: str,
    body: RejectRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    return session_to_dict(approvals.reject_session(db, session_id, body.reason, actor=actor))


@router.patch("/sessions/{session_id}/correct-hours")
def correct_hours(
    session_id: str,
    body: CorrectHoursRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    session = time_sessions.correct_hours(
        db,
        session_id,
        reason=body.reason,
        corrected_hours=body.corrected_hours,
        override_rate=body.override_rate,
        actor=actor,
    )
    return session_to_dict(session)


@router.delete("/sessions/{session_id}")
def delete_session(
    session_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    time_sessions.delete_session(db, session_id, actor=actor)
    return {"status": "ok"}


@router.get("/sessions")
def list_sessions(
    worker_id: Optional[str] = None,
    building_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    status: Optional[List[str]] = Query(default=None),
    limit: int = Query(default=500, ge=1, le=5000),
    db: Session = Depends(get_db),
):
    """Sessions matching all given filters, newest clock-in first."""
    result = []
    for session in time_sessions.list_sessions(db, worker_id, building_id, start_date, end_date, status):
        result.append(session_to_dict(session))
        if len(result) >= limit:
            break
    return result


@router.get("/workers/{worker_id}/status")
def worker_status(worker_id: str, db: Session = Depends(get_db)):
    status = time_sessions.get_worker_status(db, worker_id)
    return {
        "worker_id": str(status["worker_id"]),
        "is_active": status["is_active"],
        "is_paused": status["is_paused"],
        "session": session_to_dict(status["session"]) if status["session"] else None,
    }


@router.post("/workers/{worker_id}/location", status_code=201)
async def record_location(
    worker_id: str,
    body: LocationPingRequest,
    db: Session = Depends(get_db),
):
    sample = await acquire_geo_sample(PayloadLocationProvider(body))
    ping = await run_in_threadpool(
        location_trail.record_location,
        db,
        worker_id,
        sample,
        schedule_item_id=body.schedule_item_id,
        work_order_id=body.work_order_id,
    )
    return location_ping_to_dict(ping)


@router.get("/workers/{worker_id}/location-history")
def location_history(
    worker_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = Query(default=1000, ge=1, le=location_trail.MAX_HISTORY),
    db: Session = Depends(get_db),
):
    """The worker's readings in device-time order for the inclusive local date range."""
    pings = location_trail.location_history(db, worker_id, start_date, end_date, limit)
    return [location_ping_to_dict(p) for p in pings]


@router.get("/stats")
def stats(
    worker_id: Optional[str] = None,
    building_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
):
    return time_sessions.session_stats(db, worker_id, building_id, start_date, end_date)


@router.get("/pending")
def pending_approvals(
    limit: Optional[int] = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return [session_to_dict(s) for s in approvals.list_pending(db, limit=limit, offset=offset)]


@router.get("/payment-report", response_model=PaymentReport)
def payment_report(
    start_date: date,
    end_date: date,
    worker_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Per-worker hours and pay for the inclusive local date range."""
    return payments.build_payment_report(db, start_date, end_date, worker_id)


@router.get("/payment-report/rows")
def payment_report_rows(
    start_date: date,
    end_date: date,
    worker_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """The report flattened to one row per session, for spreadsheet export."""
    report = payments.build_payment_report(db, start_date, end_date, worker_id)
    return {"columns": list(payments.REPORT_COLUMNS), "rows": payments.report_rows(report)}
