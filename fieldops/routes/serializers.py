"""
JSON shapes returned by the schedule and time-tracking routes.
"""
from datetime import datetime
from typing import Dict, Optional

from ..models.models import AuditLog, LocationPing, ScheduleItem, TimeSession
from ..services.audit import verify_audit_log
from ..services.time_rules import describe_duration, duration_minutes, ensure_utc, worked_hours


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return ensure_utc(dt).isoformat() if dt else None


def _str(value) -> Optional[str]:
    return str(value) if value is not None else None


def _float(value) -> Optional[float]:
    return float(value) if value is not None else None


def schedule_item_to_dict(item: ScheduleItem) -> Dict:
    return {
        "id": str(item.id),
        "work_order_id": str(item.work_order_id),
        "worker_id": str(item.worker_id),
        "date": item.date.isoformat(),
        "start_time": item.start_time.strftime("%H:%M"),
        "end_time": item.end_time.strftime("%H:%M"),
        "status": item.status,
        "notes": item.notes,
        "location": {
            "address": item.location_address,
            "lat": _float(item.location_lat),
            "lng": _float(item.location_lng),
        },
        "geofence_radius_m": item.geofence_radius_m,
        "time_session_id": _str(item.time_session_id),
        "checked_in_at": _iso(item.checked_in_at),
        "checked_out_at": _iso(item.checked_out_at),
        "check_out_notes": item.check_out_notes,
        "created_by": _str(item.created_by),
        "created_at": _iso(item.created_at),
        "updated_at": _iso(item.updated_at),
        "cancelled_at": _iso(item.cancelled_at),
        "cancelled_by": _str(item.cancelled_by),
    }


def session_to_dict(session: TimeSession) -> Dict:
    minutes = duration_minutes(session.clock_in_time, session.clock_out_time, session.break_minutes)
    hours = worked_hours(
        session.clock_in_time,
        session.clock_out_time,
        session.break_minutes,
        session.corrected_hours,
    )
    return {
        "id": str(session.id),
        "worker_id": str(session.worker_id),
        "building_id": _str(session.building_id),
        "work_order_id": _str(session.work_order_id),
        "schedule_item_id": _str(session.schedule_item_id),
        "status": session.status,
        "clock_in_time": _iso(session.clock_in_time),
        "clock_out_time": _iso(session.clock_out_time),
        "break_minutes": round(float(session.break_minutes or 0), 2),
        "paused_at": _iso(session.paused_at),
        "duration_minutes": round(minutes, 2) if minutes is not None else None,
        "duration": describe_duration(minutes),
        "worked_hours": round(hours, 2) if hours is not None else None,
        "check_in": session.check_in,
        "check_out": session.check_out,
        "notes": session.notes,
        "photos": session.photos or [],
        "apartment_number": session.apartment_number,
        "work_type": session.work_type,
        "needs_reconciliation": bool(session.needs_reconciliation),
        "approved_at": _iso(session.approved_at),
        "approved_by": _str(session.approved_by),
        "rejected_at": _iso(session.rejected_at),
        "rejected_by": _str(session.rejected_by),
        "rejection_reason": session.rejection_reason,
        "corrected_hours": session.corrected_hours,
        "override_rate": _float(session.override_rate),
        "correction_reason": session.correction_reason,
        "breaks": [
            {
                "start_time": _iso(b.start_time),
                "end_time": _iso(b.end_time),
                "duration_minutes": b.duration_minutes,
                "reason": b.reason,
                "location": b.location,
            }
            for b in session.breaks
        ],
        "progress_updates": [
            {
                "timestamp": _iso(p.timestamp),
                "progress": p.progress,
                "notes": p.notes,
                "photos": p.photos or [],
            }
            for p in session.progress_updates
        ],
    }


def audit_log_to_dict(log: AuditLog) -> Dict:
    return {
        "id": str(log.id),
        "entity_type": log.entity_type,
        "entity_id": str(log.entity_id),
        "action": log.action,
        "actor_id": _str(log.actor_id),
        "actor_role": log.actor_role,
        "source": log.source,
        "changes_json": log.changes_json,
        "timestamp_utc": _iso(log.timestamp_utc),
        "context": log.context,
        "integrity_hash": log.integrity_hash,
        "integrity_verified": verify_audit_log(log),
    }


def location_ping_to_dict(ping: LocationPing) -> Dict:
    return {
        "id": str(ping.id),
        "worker_id": str(ping.worker_id),
        "session_id": _str(ping.session_id),
        "schedule_item_id": _str(ping.schedule_item_id),
        "work_order_id": _str(ping.work_order_id),
        "timestamp": _iso(ping.recorded_at),
        "latitude": ping.latitude,
        "longitude": ping.longitude,
        "accuracy": ping.accuracy,
        "activity": ping.activity,
        "address": ping.address,
        "geofence_validated": ping.geofence_validated,
        "geofence_distance_m": ping.geofence_distance_m,
    }
