"""
Database-backed worker and building/work-order directory lookups.
"""
import uuid
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from sqlalchemy.orm import Session

from ..errors import NotFoundError, ValidationError
from ..models.models import Building, Worker, WorkOrder


@dataclass(frozen=True)
class WorkerProfile:
    id: uuid.UUID
    name: str
    email: str
    hourly_rate: float


@dataclass(frozen=True)
class WorkContext:
    """Display fields for a work order, used for snapshots and report lines."""
    work_order_id: Optional[uuid.UUID]
    building_id: Optional[uuid.UUID]
    building_name: Optional[str]
    apartment_number: Optional[str]
    work_type: Optional[str]
    site_lat: Optional[float]
    site_lng: Optional[float]
    timezone: Optional[str]


def _profile(worker: Worker) -> WorkerProfile:
    return WorkerProfile(
        id=worker.id,
        name=worker.name or worker.email,
        email=worker.email,
        hourly_rate=float(worker.hourly_rate or 0),
    )


def get_worker(db: Session, worker_id) -> Worker:
    worker_id = as_uuid(worker_id, "worker_id")
    worker = db.query(Worker).filter(Worker.id == worker_id).first()
    if not worker:
        raise NotFoundError("Worker not found", entity_id=str(worker_id))
    return worker


def get_work_order(db: Session, work_order_id) -> WorkOrder:
    work_order_id = as_uuid(work_order_id, "work_order_id")
    work_order = db.query(WorkOrder).filter(WorkOrder.id == work_order_id).first()
    if not work_order:
        raise NotFoundError("Work order not found", entity_id=str(work_order_id))
    return work_order


def worker_profiles(db: Session, worker_ids: Optional[Iterable] = None) -> Dict[uuid.UUID, WorkerProfile]:
    query = db.query(Worker)
    if worker_ids is not None:
        ids = list(set(worker_ids))
        if not ids:
            return {}
        query = query.filter(Worker.id.in_(ids))
    return {w.id: _profile(w) for w in query.all()}


def work_context(
    db: Session,
    work_order_id: Optional[uuid.UUID] = None,
    building_id: Optional[uuid.UUID] = None,
) -> WorkContext:
    building_id = as_uuid(building_id, "building_id")
    work_order = None
    if work_order_id:
        work_order = get_work_order(db, work_order_id)
        building_id = building_id or work_order.building_id

    building = None
    if building_id:
        building = db.query(Building).filter(Building.id == building_id).first()

    return WorkContext(
        work_order_id=work_order.id if work_order else None,
        building_id=building.id if building else building_id,
        building_name=building.name if building else None,
        apartment_number=work_order.apartment_number if work_order else None,
        work_type=work_order.work_type if work_order else None,
        site_lat=float(building.lat) if building and building.lat is not None else None,
        site_lng=float(building.lng) if building and building.lng is not None else None,
        timezone=building.timezone if building else None,
    )


def building_names(db: Session, building_ids: Iterable) -> Dict[uuid.UUID, str]:
    ids = [b for b in set(building_ids) if b]
    if not ids:
        return {}
    return {b.id: b.name for b in db.query(Building).filter(Building.id.in_(ids)).all()}


def as_uuid(value, field: str = "id") -> Optional[uuid.UUID]:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ValidationError(f"{field} is not a valid id")
