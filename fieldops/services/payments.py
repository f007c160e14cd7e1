"""
Payment aggregation engine.

compute_report is a pure fold over a closed set of sessions and worker
profiles: it filters to the date range, groups by worker, prices every session
at its override rate or the worker's profile rate, and flags corrections.
Sessions that cannot be priced (still open, or crossing a DST change) are
reported separately instead of being counted.
"""
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
import uuid

from sqlalchemy.orm import Session
import structlog

from ..config import settings
from ..errors import ValidationError
from ..models.models import SessionStatus, TimeSession
from ..schemas.payments import (
    IncompleteSession,
    PaymentLine,
    PaymentRecord,
    PaymentReport,
    PaymentSummary,
)
from .directory import WorkerProfile, as_uuid, building_names, worker_profiles
from .time_rules import day_bounds_utc, ensure_utc, local_date, spans_dst_transition, worked_hours

logger = structlog.get_logger(__name__)

REPORT_COLUMNS = (
    "worker_name",
    "worker_email",
    "total_hours",
    "total_pay",
    "sessions_count",
    "avg_hourly_rate",
    "date",
    "building",
    "apartment",
    "work_type",
    "session_hours",
    "session_rate",
    "session_pay",
    "was_corrected",
    "correction_reason",
)


@dataclass(frozen=True)
class SessionRecord:
    """The fields of a time session the payment engine reads."""
    id: uuid.UUID
    worker_id: uuid.UUID
    status: str
    clock_in_time: datetime
    clock_out_time: Optional[datetime] = None
    break_minutes: float = 0
    building_name: Optional[str] = None
    apartment_number: Optional[str] = None
    work_type: Optional[str] = None
    corrected_hours: Optional[float] = None
    override_rate: Optional[float] = None
    correction_reason: Optional[str] = None

    @classmethod
    def from_model(cls, session: TimeSession, building_name: Optional[str] = None) -> "SessionRecord":
        return cls(
            id=session.id,
            worker_id=session.worker_id,
            status=session.status,
            clock_in_time=ensure_utc(session.clock_in_time),
            clock_out_time=ensure_utc(session.clock_out_time),
            break_minutes=float(session.break_minutes or 0),
            building_name=building_name,
            apartment_number=session.apartment_number,
            work_type=session.work_type,
            corrected_hours=session.corrected_hours,
            override_rate=float(session.override_rate) if session.override_rate is not None else None,
            correction_reason=session.correction_reason,
        )


def _money(value: float) -> float:
    return round(value + 0.0, 2)


def _correction(session: SessionRecord, profile_rate: float) -> Tuple[bool, Optional[str]]:
    """
    Decide whether a session was corrected against the worker's current profile
    rate, and why. A correction always comes with a non-empty reason.
    """
    notes = []
    if session.override_rate is not None and round(session.override_rate, 2) != round(profile_rate, 2):
        notes.append(f"Rate overridden to {session.override_rate:.2f}/hr (profile rate {profile_rate:.2f}/hr)")
    if session.corrected_hours is not None:
        notes.append(f"Hours corrected to {session.corrected_hours:.2f}")
    if not notes:
        return False, None
    reason = (session.correction_reason or "").strip()
    return True, reason or "; ".join(notes)


def _price(session: SessionRecord, profile: WorkerProfile, timezone_str: str) -> PaymentLine:
    hours = _money(worked_hours(
        session.clock_in_time,
        session.clock_out_time,
        session.break_minutes,
        session.corrected_hours,
    ))
    rate = session.override_rate if session.override_rate is not None else profile.hourly_rate
    was_corrected, reason = _correction(session, profile.hourly_rate)
    return PaymentLine(
        session_id=session.id,
        date=local_date(session.clock_in_time, timezone_str),
        building=session.building_name,
        apartment=session.apartment_number,
        work_type=session.work_type,
        hours=hours,
        hourly_rate=_money(rate),
        pay=_money(hours * rate),
        was_corrected=was_corrected,
        correction_reason=reason,
    )


def _session_sort_key(session: SessionRecord):
    return (session.clock_in_time, str(session.id))


def compute_report(
    sessions: Iterable[SessionRecord],
    worker_profiles: Mapping[uuid.UUID, WorkerProfile],
    date_range: Tuple[date, date],
    worker_filter: Optional[uuid.UUID] = None,
    *,
    include_unapproved: bool = False,
    timezone_str: Optional[str] = None,
) -> PaymentReport:
    """
    Build the payment report for date_range (inclusive, local dates).

    Counted sessions are approved ones, or with include_unapproved every closed
    session that was not rejected. Rejected sessions are always dropped. The
    output does not depend on the order of `sessions`.
    """
    start_date, end_date = date_range
    if end_date < start_date:
        raise ValidationError("end_date must be on or after start_date")
    timezone_str = timezone_str or settings.tz_default

    priced: Dict[uuid.UUID, List[SessionRecord]] = defaultdict(list)
    incomplete: List[IncompleteSession] = []

    def skip(session: SessionRecord, day: date, reason: str) -> None:
        incomplete.append(IncompleteSession(
            session_id=session.id,
            worker_id=session.worker_id,
            date=day,
            status=session.status,
            reason=reason,
        ))

    for session in sorted(sessions, key=_session_sort_key):
        if worker_filter is not None and session.worker_id != worker_filter:
            continue
        day = local_date(session.clock_in_time, timezone_str)
        if not start_date <= day <= end_date:
            continue
        if session.status == SessionStatus.REJECTED.value:
            continue
        if session.clock_out_time is None:
            skip(session, day, "Session is still in progress")
            continue
        if not include_unapproved and session.status != SessionStatus.APPROVED.value:
            continue
        if spans_dst_transition(session.clock_in_time, session.clock_out_time, timezone_str):
            skip(session, day, "Session spans a daylight saving time change")
            continue
        if session.worker_id not in worker_profiles:
            skip(session, day, "Worker profile not found")
            continue
        priced[session.worker_id].append(session)

    records: List[PaymentRecord] = []
    for worker_id, worker_sessions in priced.items():
        profile = worker_profiles[worker_id]
        lines = [_price(s, profile, timezone_str) for s in worker_sessions]
        total_hours = _money(sum(line.hours for line in lines))
        total_pay = _money(sum(line.pay for line in lines))
        records.append(PaymentRecord(
            worker_id=worker_id,
            worker_name=profile.name,
            worker_email=profile.email,
            total_hours=total_hours,
            total_pay=total_pay,
            sessions_count=len(lines),
            avg_hourly_rate=_money(total_pay / total_hours) if total_hours > 0 else 0.0,
            sessions=lines,
        ))

    records.sort(key=lambda r: (r.worker_name.casefold(), str(r.worker_id)))
    incomplete.sort(key=lambda i: (i.date, str(i.worker_id), str(i.session_id)))

    total_hours = _money(sum(r.total_hours for r in records))
    total_pay = _money(sum(r.total_pay for r in records))
    summary = PaymentSummary(
        total_workers=len(records),
        total_sessions=sum(r.sessions_count for r in records),
        total_hours=total_hours,
        total_pay=total_pay,
        avg_hourly_rate=_money(total_pay / total_hours) if total_hours > 0 else 0.0,
        corrected_sessions=sum(1 for r in records for line in r.sessions if line.was_corrected),
        incomplete_sessions=len(incomplete),
    )
    return PaymentReport(
        start_date=start_date,
        end_date=end_date,
        include_unapproved=include_unapproved,
        records=records,
        incomplete=incomplete,
        summary=summary,
    )


def report_rows(report: PaymentReport) -> List[Dict]:
    """Flatten a report to one row per session with the worker fields repeated."""
    rows = []
    for record in report.records:
        for line in record.sessions:
            rows.append({
                "worker_name": record.worker_name,
                "worker_email": record.worker_email,
                "total_hours": record.total_hours,
                "total_pay": record.total_pay,
                "sessions_count": record.sessions_count,
                "avg_hourly_rate": record.avg_hourly_rate,
                "date": line.date.isoformat(),
                "building": line.building,
                "apartment": line.apartment,
                "work_type": line.work_type,
                "session_hours": line.hours,
                "session_rate": line.hourly_rate,
                "session_pay": line.pay,
                "was_corrected": line.was_corrected,
                "correction_reason": line.correction_reason,
            })
    return rows


def build_payment_report(
    db: Session,
    start_date: date,
    end_date: date,
    worker_id=None,
    *,
    include_unapproved: Optional[bool] = None,
    timezone_str: Optional[str] = None,
) -> PaymentReport:
    """Load sessions and worker profiles for the range and run compute_report."""
    if end_date < start_date:
        raise ValidationError("end_date must be on or after start_date")
    if include_unapproved is None:
        include_unapproved = settings.payroll_include_unapproved
    timezone_str = timezone_str or settings.tz_default
    worker_id = as_uuid(worker_id, "worker_id")

    lower, upper = day_bounds_utc(start_date, end_date, timezone_str)
    query = db.query(TimeSession).filter(
        TimeSession.clock_in_time >= lower,
        TimeSession.clock_in_time < upper,
        TimeSession.status != SessionStatus.REJECTED.value,
    )
    if worker_id:
        query = query.filter(TimeSession.worker_id == worker_id)
    models = query.all()

    names = building_names(db, (s.building_id for s in models))
    records = [SessionRecord.from_model(s, names.get(s.building_id)) for s in models]
    profiles = worker_profiles(db, {s.worker_id for s in models})

    report = compute_report(
        records,
        profiles,
        (start_date, end_date),
        worker_id,
        include_unapproved=include_unapproved,
        timezone_str=timezone_str,
    )
    logger.info(
        "payment_report_built",
        start_date=start_date.isoformat(),
        end_date=end_date.isoformat(),
        workers=report.summary.total_workers,
        sessions=report.summary.total_sessions,
        incomplete=report.summary.incomplete_sessions,
    )
    return report
