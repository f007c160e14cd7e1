"""
Seed the local database with sample workers, buildings and work orders.

Usage:
  python scripts/seed_demo_data.py

This script is idempotent: running it multiple times will upsert the same
records based on unique fields (email for workers, name for buildings,
title + building for work orders).
"""
import os
import sys
from datetime import datetime, timezone

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fieldops.config import settings
from fieldops.db import SessionLocal, Base, engine
from fieldops.models.models import Building, Worker, WorkOrder


WORKERS = [
    ("Ana Souza", "ana.souza@example.com", "worker", 22.50),
    ("Ben Carter", "ben.carter@example.com", "worker", 20.00),
    ("Chloe Nguyen", "chloe.nguyen@example.com", "supervisor", 28.00),
    ("Dan Admin", "dan.admin@example.com", "admin", 0),
]

BUILDINGS = [
    ("Maple Court", "120 Maple Ave, Brooklyn, NY", 40.6782, -73.9442, "America/New_York"),
    ("Harbor View", "8 Water St, Jersey City, NJ", 40.7178, -74.0431, "America/New_York"),
]

WORK_ORDERS = [
    ("Kitchen repaint", "Maple Court", "4B", "A", "painting"),
    ("Bathroom tile repair", "Maple Court", "2A", "A", "tiling"),
    ("Window caulking", "Harbor View", "11C", "North", "maintenance"),
]


def ensure_worker(session, name: str, email: str, role: str, hourly_rate: float) -> Worker:
    worker = session.query(Worker).filter(Worker.email == email).first()
    if worker:
        worker.name = name
        worker.role = role
        worker.hourly_rate = hourly_rate
        session.add(worker)
        session.flush()
        return worker
    worker = Worker(
        name=name,
        email=email,
        role=role,
        hourly_rate=hourly_rate,
        is_active=True,
        created_at=datetime.now(timezone.utc),
    )
    session.add(worker)
    session.flush()
    return worker


def ensure_building(session, name: str, address: str, lat: float, lng: float, tz: str) -> Building:
    building = session.query(Building).filter(Building.name == name).first()
    if building:
        building.address = address
        building.lat = lat
        building.lng = lng
        building.timezone = tz
        session.add(building)
        session.flush()
        return building
    building = Building(name=name, address=address, lat=lat, lng=lng, timezone=tz)
    session.add(building)
    session.flush()
    return building


def ensure_work_order(session, title: str, building: Building, apartment: str, block: str, work_type: str) -> WorkOrder:
    work_order = session.query(WorkOrder).filter(
        WorkOrder.title == title,
        WorkOrder.building_id == building.id,
    ).first()
    if work_order:
        work_order.apartment_number = apartment
        work_order.block = block
        work_order.work_type = work_type
        session.add(work_order)
        session.flush()
        return work_order
    work_order = WorkOrder(
        title=title,
        building_id=building.id,
        apartment_number=apartment,
        block=block,
        work_type=work_type,
        status="open",
    )
    session.add(work_order)
    session.flush()
    return work_order


def main():
    if settings.database_url.startswith("sqlite:///./"):
        os.makedirs("var", exist_ok=True)
    Base.metadata.create_all(bind=engine)

    session = SessionLocal()
    try:
        workers = [ensure_worker(session, *w) for w in WORKERS]
        buildings = {b[0]: ensure_building(session, *b) for b in BUILDINGS}
        orders = [
            ensure_work_order(session, title, buildings[building], apt, block, work_type)
            for title, building, apt, block, work_type in WORK_ORDERS
        ]
        session.commit()
        print(f"Seeded {len(workers)} workers, {len(buildings)} buildings, {len(orders)} work orders")
        for w in workers:
            print(f"  worker     {w.id}  {w.name} <{w.email}> ${float(w.hourly_rate):.2f}/hr")
        for o in orders:
            print(f"  work order {o.id}  {o.title} ({o.apartment_number})")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()
