import random
import uuid
from datetime import date, timedelta

import pytest

from fieldops.errors import ValidationError
from fieldops.services import approvals, time_sessions
from fieldops.services.directory import WorkerProfile
from fieldops.services.payments import (
    REPORT_COLUMNS,
    SessionRecord,
    build_payment_report,
    compute_report,
    report_rows,
)

from conftest import on_site, utc

NY = "America/New_York"
MARCH = (date(2024, 3, 1), date(2024, 3, 31))

ANA = WorkerProfile(id=uuid.UUID(int=1), name="Ana Souza", email="ana@example.com", hourly_rate=20.0)
BEN = WorkerProfile(id=uuid.UUID(int=2), name="Ben Carter", email="ben@example.com", hourly_rate=20.0)
ZOE = WorkerProfile(id=uuid.UUID(int=3), name="zoe Park", email="zoe@example.com", hourly_rate=30.0)
PROFILES = {p.id: p for p in (ANA, BEN, ZOE)}

_ids = iter(range(1000, 100000))


def session(worker, start, hours=4.0, status="approved", **kwargs):
    return SessionRecord(
        id=uuid.UUID(int=next(_ids)),
        worker_id=worker.id,
        status=status,
        clock_in_time=start,
        clock_out_time=start + timedelta(hours=hours) if hours is not None else None,
        building_name="Maple Court",
        apartment_number="4B",
        work_type="painting",
        **kwargs,
    )


def report(sessions, **kwargs):
    kwargs.setdefault("timezone_str", NY)
    return compute_report(sessions, PROFILES, MARCH, **kwargs)


def test_two_approved_sessions_at_profile_rate():
    result = report([
        session(BEN, utc(2024, 3, 4, 14)),
        session(BEN, utc(2024, 3, 5, 14)),
    ])
    assert len(result.records) == 1
    record = result.records[0]
    assert record.worker_id == BEN.id
    assert record.total_hours == 8
    assert record.total_pay == 160
    assert record.sessions_count == 2
    assert record.avg_hourly_rate == 20
    assert [line.was_corrected for line in record.sessions] == [False, False]
    assert all(line.correction_reason is None for line in record.sessions)


def test_override_rate_marks_correction_and_is_used_for_pay():
    result = report([session(ANA, utc(2024, 3, 4, 14), override_rate=25.0)])
    line = result.records[0].sessions[0]
    assert line.was_corrected is True
    assert line.correction_reason
    assert "25.00" in line.correction_reason
    assert line.hourly_rate == 25
    assert line.pay == 100


def test_stored_correction_reason_wins():
    result = report([
        session(ANA, utc(2024, 3, 4, 14), override_rate=25.0, correction_reason="Lead painter rate"),
    ])
    assert result.records[0].sessions[0].correction_reason == "Lead painter rate"


def test_override_equal_to_profile_rate_is_not_a_correction():
    result = report([session(ANA, utc(2024, 3, 4, 14), override_rate=20.0)])
    assert result.records[0].sessions[0].was_corrected is False


def test_corrected_hours_replace_clocked_duration():
    result = report([session(ZOE, utc(2024, 3, 4, 14), hours=4, corrected_hours=2.5)])
    line = result.records[0].sessions[0]
    assert line.hours == 2.5
    assert line.pay == 75
    assert line.was_corrected is True


def test_breaks_reduce_paid_hours():
    result = report([session(ANA, utc(2024, 3, 4, 14), hours=8, break_minutes=30)])
    assert result.records[0].total_hours == 7.5
    assert result.records[0].total_pay == 150


def test_rejected_sessions_never_count():
    sessions = [
        session(ANA, utc(2024, 3, 4, 14), status="rejected"),
        session(ANA, utc(2024, 3, 5, 14), status="rejected"),
    ]
    assert report(sessions).records == []
    assert report(sessions, include_unapproved=True).records == []


def test_unapproved_sessions_need_opt_in():
    sessions = [
        session(ANA, utc(2024, 3, 4, 14), status="completed"),
        session(ANA, utc(2024, 3, 5, 14), status="approved"),
    ]
    assert report(sessions).records[0].sessions_count == 1
    assert report(sessions, include_unapproved=True).records[0].sessions_count == 2


def test_open_sessions_are_listed_as_incomplete():
    open_session = session(ANA, utc(2024, 3, 4, 14), hours=None, status="active")
    result = report([open_session, session(ANA, utc(2024, 3, 5, 14))])
    assert result.records[0].sessions_count == 1
    assert [i.session_id for i in result.incomplete] == [open_session.id]
    assert result.incomplete[0].reason == "Session is still in progress"
    assert result.summary.incomplete_sessions == 1


def test_dst_spanning_sessions_are_listed_as_incomplete():
    # Overnight shift across the 2024-03-10 spring-forward
    overnight = session(ANA, utc(2024, 3, 10, 4), hours=6)
    result = report([overnight])
    assert result.records == []
    assert result.incomplete[0].session_id == overnight.id
    assert "daylight saving" in result.incomplete[0].reason


def test_date_range_uses_local_calendar_day():
    # 02:00 UTC on the 5th is the evening of the 4th in New York
    late = session(ANA, utc(2024, 3, 5, 2), hours=2)
    result = compute_report([late], PROFILES, (date(2024, 3, 4), date(2024, 3, 4)), timezone_str=NY)
    assert result.records[0].sessions[0].date == date(2024, 3, 4)
    result = compute_report([late], PROFILES, (date(2024, 3, 5), date(2024, 3, 5)), timezone_str=NY)
    assert result.records == []


def test_worker_filter():
    sessions = [session(ANA, utc(2024, 3, 4, 14)), session(BEN, utc(2024, 3, 4, 14))]
    result = report(sessions, worker_filter=BEN.id)
    assert [r.worker_id for r in result.records] == [BEN.id]


def test_workers_sorted_by_name_and_sessions_by_date():
    sessions = [
        session(ZOE, utc(2024, 3, 6, 14)),
        session(ANA, utc(2024, 3, 7, 14)),
        session(ANA, utc(2024, 3, 4, 14)),
        session(BEN, utc(2024, 3, 5, 14)),
    ]
    result = report(sessions)
    assert [r.worker_name for r in result.records] == ["Ana Souza", "Ben Carter", "zoe Park"]
    assert [line.date for line in result.records[0].sessions] == [date(2024, 3, 4), date(2024, 3, 7)]


def test_result_does_not_depend_on_input_order():
    sessions = [
        session(worker, utc(2024, 3, day, 13 + day % 3), hours=1 + day / 7, override_rate=rate)
        for day in range(1, 29)
        for worker, rate in ((ANA, None), (BEN, 22.5), (ZOE, None))
    ]
    expected = report(sessions)
    shuffled = list(sessions)
    random.Random(7).shuffle(shuffled)
    assert report(shuffled) == expected
    assert report(list(reversed(sessions))) == expected


def test_compute_report_is_pure():
    sessions = [session(ANA, utc(2024, 3, 4, 14)), session(BEN, utc(2024, 3, 5, 14), override_rate=25.0)]
    snapshot = list(sessions)
    first = report(sessions)
    assert report(sessions) == first
    assert sessions == snapshot


def test_summary_totals():
    result = report([
        session(ANA, utc(2024, 3, 4, 14), hours=4),
        session(ZOE, utc(2024, 3, 4, 14), hours=2, override_rate=35.0),
    ])
    assert result.summary.total_workers == 2
    assert result.summary.total_sessions == 2
    assert result.summary.total_hours == 6
    assert result.summary.total_pay == 150
    assert result.summary.avg_hourly_rate == 25
    assert result.summary.corrected_sessions == 1


def test_zero_hours_gives_zero_average():
    result = report([session(ANA, utc(2024, 3, 4, 14), hours=0)])
    assert result.records[0].total_hours == 0
    assert result.records[0].avg_hourly_rate == 0


def test_empty_report():
    result = report([])
    assert result.records == []
    assert result.summary.total_pay == 0
    assert report_rows(result) == []


def test_inverted_range_rejected():
    with pytest.raises(ValidationError):
        compute_report([], PROFILES, (date(2024, 3, 5), date(2024, 3, 4)))


def test_report_rows_follow_export_columns():
    result = report([
        session(ANA, utc(2024, 3, 4, 14)),
        session(ANA, utc(2024, 3, 5, 14), override_rate=25.0),
        session(BEN, utc(2024, 3, 4, 14)),
    ])
    rows = report_rows(result)
    assert len(rows) == 3
    assert all(tuple(row) == REPORT_COLUMNS for row in rows)
    assert rows[0]["worker_name"] == "Ana Souza"
    assert rows[0]["total_pay"] == 180
    assert rows[0]["date"] == "2024-03-04"
    assert rows[1]["session_rate"] == 25
    assert rows[1]["was_corrected"] is True
    assert rows[2]["worker_email"] == "ben@example.com"


def test_build_payment_report_from_database(db, directory):
    admin_id = directory.admin.id
    for worker in (directory.ben, directory.ana):
        for day in (4, 5):
            s = time_sessions.clock_in(db, worker.id, on_site(), work_order_id=directory.paint.id, at=utc(2024, 3, day, 14))
            s = time_sessions.clock_out(db, s.id, on_site(), at=utc(2024, 3, day, 18))
            approvals.approve_session(db, s.id)
    corrected = time_sessions.clock_in(db, directory.cara.id, on_site(), at=utc(2024, 3, 4, 14))
    time_sessions.clock_out(db, corrected.id, on_site(), at=utc(2024, 3, 4, 20))
    time_sessions.correct_hours(db, corrected.id, override_rate=35, reason="Weekend crew rate")
    approvals.approve_session(db, corrected.id)
    time_sessions.clock_in(db, admin_id, on_site(), at=utc(2024, 3, 5, 14))

    result = build_payment_report(db, date(2024, 3, 4), date(2024, 3, 5))

    assert [r.worker_name for r in result.records] == ["Ana Souza", "Ben Carter", "Cara Diaz"]
    ben = result.records[1]
    assert ben.total_hours == 8
    assert ben.total_pay == 160
    assert ben.sessions[0].building == "Maple Court"
    assert ben.sessions[0].apartment == "4B"
    cara = result.records[2]
    assert cara.total_pay == 210
    assert cara.sessions[0].was_corrected is True
    assert cara.sessions[0].correction_reason == "Weekend crew rate"
    assert [i.worker_id for i in result.incomplete] == [admin_id]

    only_ben = build_payment_report(db, date(2024, 3, 4), date(2024, 3, 5), worker_id=str(directory.ben.id))
    assert [r.worker_id for r in only_ben.records] == [directory.ben.id]
