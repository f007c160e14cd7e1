import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Time,
    Boolean,
    ForeignKey,
    Integer,
    Float,
    Numeric,
    JSON,
    Text,
    Index,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScheduleStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SessionStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    APPROVED = "approved"
    REJECTED = "rejected"


OPEN_SESSION_STATUSES = (SessionStatus.ACTIVE.value, SessionStatus.PAUSED.value)
_OPEN_SESSION_CLAUSE = text("status IN ('active', 'paused')")


# Directory tables (workers, buildings, work orders)

class Worker(Base):
    __tablename__ = "workers"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(50), default="worker")  # worker|supervisor|admin
    hourly_rate: Mapped[float] = mapped_column(Numeric(10, 2), default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Building(Base):
    __tablename__ = "buildings"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(500))
    lat: Mapped[Optional[float]] = mapped_column(Numeric(10, 7))
    lng: Mapped[Optional[float]] = mapped_column(Numeric(10, 7))
    timezone: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    work_orders = relationship("WorkOrder", back_populates="building")


class WorkOrder(Base):
    __tablename__ = "work_orders"

    id: Mapped[uuid.UUID] = uuid_pk()
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    building_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("buildings.id", ondelete="SET NULL"), index=True)
    apartment_number: Mapped[Optional[str]] = mapped_column(String(50))
    block: Mapped[Optional[str]] = mapped_column(String(50))
    work_type: Mapped[Optional[str]] = mapped_column(String(100))
    status: Mapped[str] = mapped_column(String(50), default="open")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    building = relationship("Building", back_populates="work_orders")


# Scheduling & Time Tracking

class ScheduleItem(Base):
    """Planned assignment of a worker to a work order within a local time window"""
    __tablename__ = "schedule_items"

    id: Mapped[uuid.UUID] = uuid_pk()
    work_order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    worker_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True)
    date: Mapped[Date] = mapped_column(Date, nullable=False)  # Local date
    start_time: Mapped[Time] = mapped_column(Time(timezone=False), nullable=False)  # Local time
    end_time: Mapped[Time] = mapped_column(Time(timezone=False), nullable=False)  # Local time
    status: Mapped[str] = mapped_column(String(20), default=ScheduleStatus.SCHEDULED.value, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    location_address: Mapped[Optional[str]] = mapped_column(String(500))
    location_lat: Mapped[Optional[float]] = mapped_column(Numeric(10, 7))
    location_lng: Mapped[Optional[float]] = mapped_column(Numeric(10, 7))
    geofence_radius_m: Mapped[Optional[int]] = mapped_column(Integer)
    time_session_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("time_sessions.id", ondelete="SET NULL"), index=True)
    checked_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    checked_out_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    check_out_notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    worker = relationship("Worker")
    work_order = relationship("WorkOrder")
    time_session = relationship("TimeSession", foreign_keys=[time_session_id])

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("idx_schedule_items_worker_date", "worker_id", "date", "start_time"),
        Index("idx_schedule_items_date", "date"),
        Index("idx_schedule_items_status", "status"),
    )


class TimeSession(Base):
    """Worker clock-in/clock-out interval, reviewed before it counts toward payroll"""
    __tablename__ = "time_sessions"

    id: Mapped[uuid.UUID] = uuid_pk()
    worker_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False, index=True)
    building_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("buildings.id", ondelete="SET NULL"), index=True)
    work_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("work_orders.id", ondelete="SET NULL"), index=True)
    schedule_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)
    clock_in_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    clock_out_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    break_minutes: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    paused_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))  # Start of the open break
    status: Mapped[str] = mapped_column(String(20), default=SessionStatus.ACTIVE.value, nullable=False)
    check_in: Mapped[dict] = mapped_column(JSON, nullable=False)  # GeoSample at clock-in
    check_out: Mapped[Optional[dict]] = mapped_column(JSON)  # GeoSample at clock-out
    notes: Mapped[Optional[str]] = mapped_column(Text)
    photos: Mapped[Optional[list]] = mapped_column(JSON)  # Opaque photo references
    # Snapshots for reporting
    apartment_number: Mapped[Optional[str]] = mapped_column(String(50))
    work_type: Mapped[Optional[str]] = mapped_column(String(100))
    needs_reconciliation: Mapped[bool] = mapped_column(Boolean, default=False)  # Schedule cancelled while open
    # Review
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejected_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    # Admin corrections
    corrected_hours: Mapped[Optional[float]] = mapped_column(Float)
    override_rate: Mapped[Optional[float]] = mapped_column(Numeric(10, 2))
    correction_reason: Mapped[Optional[str]] = mapped_column(Text)
    corrected_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    corrected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    worker = relationship("Worker")
    building = relationship("Building")
    work_order = relationship("WorkOrder")
    breaks = relationship(
        "SessionBreak",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="SessionBreak.start_time",
    )
    progress_updates = relationship(
        "ProgressUpdate",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ProgressUpdate.timestamp",
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        # At most one open session per worker
        Index(
            "uq_time_sessions_open_worker",
            "worker_id",
            unique=True,
            postgresql_where=_OPEN_SESSION_CLAUSE,
            sqlite_where=_OPEN_SESSION_CLAUSE,
        ),
        Index("idx_time_sessions_worker_clock_in", "worker_id", "clock_in_time"),
        Index("idx_time_sessions_building_clock_in", "building_id", "clock_in_time"),
        Index("idx_time_sessions_status", "status"),
    )


class SessionBreak(Base):
    """Pause/resume interval inside a time session"""
    __tablename__ = "session_breaks"

    id: Mapped[uuid.UUID] = uuid_pk()
    session_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("time_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    duration_minutes: Mapped[Optional[float]] = mapped_column(Float)
    reason: Mapped[Optional[str]] = mapped_column(String(255))
    location: Mapped[Optional[dict]] = mapped_column(JSON)  # GeoSample where the break started

    session = relationship("TimeSession", back_populates="breaks")


class ProgressUpdate(Base):
    """Work progress reported while a session is open"""
    __tablename__ = "progress_updates"

    id: Mapped[uuid.UUID] = uuid_pk()
    session_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("time_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    progress: Mapped[Optional[int]] = mapped_column(Integer)  # Percent complete, 0-100
    notes: Mapped[Optional[str]] = mapped_column(Text)
    photos: Mapped[Optional[list]] = mapped_column(JSON)  # Opaque photo references
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    session = relationship("TimeSession", back_populates="progress_updates")


class LocationPing(Base):
    """Location reading sent by a worker's device between check-in and check-out"""
    __tablename__ = "location_pings"

    id: Mapped[uuid.UUID] = uuid_pk()
    worker_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="CASCADE"), nullable=False)
    session_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("time_sessions.id", ondelete="SET NULL"), index=True)
    schedule_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    work_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)  # Device timestamp
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    accuracy: Mapped[Optional[float]] = mapped_column(Float)
    activity: Mapped[Optional[str]] = mapped_column(String(50))  # working|break|traveling, device supplied
    address: Mapped[Optional[str]] = mapped_column(String(500))
    geofence_validated: Mapped[Optional[bool]] = mapped_column(Boolean)
    geofence_distance_m: Mapped[Optional[float]] = mapped_column(Float)

    __table_args__ = (
        Index("idx_location_pings_worker_recorded", "worker_id", "recorded_at"),
    )


class AuditLog(Base):
    """Append-only audit log for schedule and time-session actions"""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # schedule_item|time_session
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # CREATE|UPDATE|CHECK_IN|CHECK_OUT|PAUSE|RESUME|APPROVE|REJECT|CORRECT|PROGRESS|CANCEL|DELETE
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)
    actor_role: Mapped[Optional[str]] = mapped_column(String(50))  # admin|supervisor|worker|system
    source: Mapped[Optional[str]] = mapped_column(String(50))  # app|api|system
    changes_json: Mapped[Optional[dict]] = mapped_column(JSON)  # Before/after diff
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    context: Mapped[Optional[dict]] = mapped_column(JSON)  # worker_id, gps, reasons
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 for integrity verification

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_actor", "actor_id", "timestamp_utc"),
    )
