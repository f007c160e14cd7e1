"""
Schedule API routes.
Handles planned work assignments and their check-in / check-out.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from ..db import get_db
from ..schemas.schedule import CheckInRequest, CheckOutRequest, ScheduleItemCreate
from ..services import schedules
from ..services.audit import Actor
from ..services.location import PayloadLocationProvider, acquire_geo_sample
from .deps import get_actor
from .serializers import schedule_item_to_dict

router = APIRouter(prefix="/schedule", tags=["schedule"])


@router.post("", status_code=201)
def create_schedule_item(
    body: ScheduleItemCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Assign a worker to a work order for a local date and time window."""
    item = schedules.create_schedule_item(
        db,
        work_order_id=body.work_order_id,
        worker_id=body.worker_id,
        date=body.date,
        start_time=body.start_time,
        end_time=body.end_time,
        notes=body.notes,
        location=body.location.model_dump() if body.location else None,
        geofence_radius_m=body.geofence_radius_m,
        actor=actor,
    )
    return schedule_item_to_dict(item)


@router.get("")
def get_schedule(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    worker_id: Optional[str] = None,
    status: Optional[str] = None,
    work_order_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    items = schedules.list_schedule(
        db,
        start_date=start_date,
        end_date=end_date,
        worker_id=worker_id,
        status=status,
        work_order_id=work_order_id,
    )
    return [schedule_item_to_dict(i) for i in items]


@router.get("/{item_id}")
def get_schedule_item(item_id: str, db: Session = Depends(get_db)):
    return schedule_item_to_dict(schedules.get_schedule_item(db, item_id))


@router.patch("/{item_id}")
def edit_schedule_item(
    item_id: str,
    payload: dict,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Partial update; status only changes through check-in, check-out and cancel."""
    item = schedules.edit_schedule_item(db, item_id, payload, actor=actor)
    return schedule_item_to_dict(item)


@router.post("/{item_id}/cancel")
def cancel_schedule_item(
    item_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    item = schedules.cancel_schedule_item(db, item_id, actor=actor)
    return schedule_item_to_dict(item)


@router.delete("/{item_id}")
def delete_schedule_item(
    item_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    schedules.delete_schedule_item(db, item_id, actor=actor)
    return {"status": "ok"}


@router.post("/{item_id}/check-in")
async def check_in(
    item_id: str,
    body: CheckInRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """
    Check the assigned worker in. The location is resolved before anything is
    written; a failed reading returns 503 and leaves the item scheduled.
    """
    sample = await acquire_geo_sample(PayloadLocationProvider(body))
    item = await run_in_threadpool(
        schedules.check_in,
        db,
        item_id,
        sample,
        notes=body.notes,
        photos=body.photos,
        actor=actor,
    )
    return schedule_item_to_dict(item)


@router.post("/{item_id}/check-out")
async def check_out(
    item_id: str,
    body: CheckOutRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    sample = await acquire_geo_sample(PayloadLocationProvider(body))
    item = await run_in_threadpool(
        schedules.check_out,
        db,
        item_id,
        sample,
        notes=body.notes,
        photos=body.photos,
        actor=actor,
    )
    return schedule_item_to_dict(item)
