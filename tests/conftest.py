import os

# Configure before anything imports fieldops.config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ["REVERSE_GEOCODE_ENABLED"] = "false"
os.environ["TZ_DEFAULT"] = "America/New_York"

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fieldops.db import Base, get_db
from fieldops.models.models import Building, Worker, WorkOrder
from fieldops.schemas.geo import GeoSample

SITE_LAT = 40.7128
SITE_LNG = -74.0060


def utc(year, month, day, hour=0, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def on_site(accuracy=5.0, **kwargs):
    """A reading a few meters from the seeded building."""
    return GeoSample(latitude=SITE_LAT + 0.0001, longitude=SITE_LNG, accuracy=accuracy, **kwargs)


def far_away(accuracy=5.0):
    return GeoSample(latitude=40.7580, longitude=-73.9855, accuracy=accuracy)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def directory(db):
    """Workers, a building with coordinates and two work orders."""
    ana = Worker(name="Ana Souza", email="ana@example.com", role="worker", hourly_rate=20)
    ben = Worker(name="Ben Carter", email="ben@example.com", role="worker", hourly_rate=20)
    cara = Worker(name="Cara Diaz", email="cara@example.com", role="worker", hourly_rate=30)
    admin = Worker(name="Dana Admin", email="dana@example.com", role="admin", hourly_rate=0)
    building = Building(
        name="Maple Court",
        address="120 Maple Ave",
        lat=SITE_LAT,
        lng=SITE_LNG,
        timezone="America/New_York",
    )
    db.add_all([ana, ben, cara, admin, building])
    db.flush()
    paint = WorkOrder(title="Kitchen repaint", building_id=building.id, apartment_number="4B", work_type="painting")
    tile = WorkOrder(title="Bathroom tiles", building_id=building.id, apartment_number="2A", work_type="tiling")
    db.add_all([paint, tile])
    db.commit()
    return SimpleNamespace(
        ana=ana,
        ben=ben,
        cara=cara,
        admin=admin,
        building=building,
        paint=paint,
        tile=tile,
    )


@pytest.fixture
def client(session_factory, directory):
    from fastapi.testclient import TestClient
    from fieldops.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
