import uuid
from datetime import date, timedelta

import pytest

from fieldops.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from fieldops.models.models import ProgressUpdate, ScheduleItem, SessionStatus, TimeSession
from fieldops.services import time_sessions
from fieldops.config import settings
from fieldops.services.audit import Actor, get_audit_logs, verify_audit_log
from fieldops.services.time_rules import describe_duration, duration_minutes
from fieldops.services.transactions import flush_or_conflict

from conftest import far_away, on_site, utc

NINE_AM = utc(2024, 3, 4, 14)  # 09:00 in New York


def clock_in(db, directory, worker=None, at=NINE_AM, **kwargs):
    worker = worker or directory.ana
    kwargs.setdefault("work_order_id", directory.paint.id)
    return time_sessions.clock_in(db, worker.id, on_site(), at=at, **kwargs)


def test_clock_in_snapshots_work_order(db, directory):
    session = clock_in(db, directory)
    assert session.status == SessionStatus.ACTIVE.value
    assert session.building_id == directory.building.id
    assert session.apartment_number == "4B"
    assert session.work_type == "painting"
    assert session.check_in["geofence_validated"] is True
    assert session.clock_out_time is None


def test_clock_in_outside_geofence_is_recorded_not_blocked(db, directory):
    session = time_sessions.clock_in(db, directory.ana.id, far_away(), work_order_id=directory.paint.id, at=NINE_AM)
    assert session.status == SessionStatus.ACTIVE.value
    assert session.check_in["geofence_validated"] is False
    assert "outside" in session.check_in["geofence_message"]


def test_second_clock_in_conflicts(db, directory):
    first = clock_in(db, directory)
    with pytest.raises(ConflictError) as exc:
        clock_in(db, directory, at=NINE_AM + timedelta(hours=1))
    assert exc.value.detail == "Worker is already checked in"
    assert exc.value.entity_id == str(first.id)
    assert db.query(TimeSession).filter(TimeSession.worker_id == directory.ana.id).count() == 1


def test_paused_session_still_counts_as_open(db, directory):
    session = clock_in(db, directory)
    time_sessions.pause_session(db, session.id, at=NINE_AM + timedelta(hours=1))
    with pytest.raises(ConflictError):
        clock_in(db, directory, at=NINE_AM + timedelta(hours=2))


def test_other_workers_are_independent(db, directory):
    clock_in(db, directory)
    other = clock_in(db, directory, worker=directory.ben)
    assert other.status == SessionStatus.ACTIVE.value


def test_unique_index_backs_up_open_session_rule(db, directory):
    for _ in range(2):
        db.add(TimeSession(
            worker_id=directory.ana.id,
            clock_in_time=NINE_AM,
            status=SessionStatus.ACTIVE.value,
            check_in={"latitude": 0, "longitude": 0},
        ))
    with pytest.raises(ConflictError):
        flush_or_conflict(db, "Worker is already checked in")
    assert db.query(TimeSession).count() == 0


def test_clock_in_unknown_worker(db, directory):
    with pytest.raises(NotFoundError):
        time_sessions.clock_in(db, uuid.uuid4(), on_site(), at=NINE_AM)


def test_pause_resume_clock_out_accumulates_breaks(db, directory):
    session = clock_in(db, directory)
    time_sessions.pause_session(db, session.id, reason="lunch", at=utc(2024, 3, 4, 16))
    time_sessions.resume_session(db, session.id, at=utc(2024, 3, 4, 16, 30))
    session = time_sessions.clock_out(db, session.id, on_site(), at=utc(2024, 3, 4, 22))

    assert session.status == SessionStatus.COMPLETED.value
    assert session.break_minutes == 30
    assert duration_minutes(session.clock_in_time, session.clock_out_time, session.break_minutes) == 450
    assert len(session.breaks) == 1
    assert session.breaks[0].reason == "lunch"
    assert session.breaks[0].duration_minutes == 30


def test_clock_out_while_paused_closes_break(db, directory):
    session = clock_in(db, directory)
    time_sessions.pause_session(db, session.id, at=NINE_AM + timedelta(hours=1))
    session = time_sessions.clock_out(db, session.id, on_site(), at=NINE_AM + timedelta(hours=2))
    assert session.status == SessionStatus.COMPLETED.value
    assert session.break_minutes == 60
    assert session.paused_at is None


def test_clock_out_appends_notes(db, directory):
    session = clock_in(db, directory, notes="Started on the kitchen")
    session = time_sessions.clock_out(db, session.id, on_site(), notes="Second coat done", at=NINE_AM + timedelta(hours=3))
    assert session.notes == "Started on the kitchen\n\nClock-out notes: Second coat done"
    assert session.check_out["geofence_validated"] is True


def test_clock_out_twice_is_invalid(db, directory):
    session = clock_in(db, directory)
    time_sessions.clock_out(db, session.id, on_site(), at=NINE_AM + timedelta(hours=1))
    with pytest.raises(InvalidStateError) as exc:
        time_sessions.clock_out(db, session.id, on_site(), at=NINE_AM + timedelta(hours=2))
    assert "already completed" in exc.value.detail


def test_clock_out_before_clock_in_rejected(db, directory):
    session = clock_in(db, directory)
    with pytest.raises(ValidationError):
        time_sessions.clock_out(db, session.id, on_site(), at=NINE_AM - timedelta(minutes=5))


def test_pause_and_resume_require_matching_state(db, directory):
    session = clock_in(db, directory)
    with pytest.raises(InvalidStateError):
        time_sessions.resume_session(db, session.id, at=NINE_AM + timedelta(minutes=5))
    time_sessions.pause_session(db, session.id, at=NINE_AM + timedelta(minutes=10))
    with pytest.raises(InvalidStateError):
        time_sessions.pause_session(db, session.id, at=NINE_AM + timedelta(minutes=15))


def test_open_session_duration_is_in_progress(db, directory):
    session = clock_in(db, directory)
    minutes = duration_minutes(session.clock_in_time, session.clock_out_time, session.break_minutes)
    assert minutes is None
    assert describe_duration(minutes) == "in progress"


def test_clock_in_writes_audit_entry(db, directory):
    actor = Actor(id=directory.ana.id, role="worker")
    session = clock_in(db, directory, actor=actor)
    logs = get_audit_logs(db, "time_session", str(session.id))
    assert [log.action for log in logs] == ["CLOCK_IN"]
    assert logs[0].actor_id == directory.ana.id
    assert logs[0].actor_role == "worker"
    assert len(logs[0].integrity_hash) == 64


def test_audit_hash_is_keyed_on_configured_secret(db, directory, monkeypatch):
    monkeypatch.setattr(settings, "audit_integrity_secret", "s3cret-key")
    session = clock_in(db, directory)
    log = get_audit_logs(db, "time_session", str(session.id))[0]
    assert verify_audit_log(log)
    assert verify_audit_log(log, integrity_secret="s3cret-key")
    assert not verify_audit_log(log, integrity_secret=settings.app_name)
    assert not verify_audit_log(log, integrity_secret="change-me")

    monkeypatch.setattr(settings, "audit_integrity_secret", "rotated")
    assert not verify_audit_log(log)


def test_tampered_audit_row_fails_verification(db, directory):
    session = clock_in(db, directory)
    log = get_audit_logs(db, "time_session", str(session.id))[0]
    assert verify_audit_log(log)
    log.actor_role = "admin"
    assert not verify_audit_log(log)


def test_delete_session_unlinks_schedule_item(db, directory):
    item = ScheduleItem(
        work_order_id=directory.paint.id,
        worker_id=directory.ana.id,
        date=date(2024, 3, 4),
        start_time=NINE_AM.time(),
        end_time=(NINE_AM + timedelta(hours=8)).time(),
    )
    db.add(item)
    db.commit()
    session = clock_in(db, directory, schedule_item_id=item.id)
    item.time_session_id = session.id
    db.commit()

    time_sessions.delete_session(db, session.id)

    db.refresh(item)
    assert item.time_session_id is None
    assert db.query(TimeSession).count() == 0
    assert [log.action for log in get_audit_logs(db, "time_session", str(session.id))][0] == "DELETE"


def test_pause_records_break_location(db, directory):
    session = clock_in(db, directory)
    session = time_sessions.pause_session(db, session.id, on_site(activity="break"), reason="lunch", at=NINE_AM + timedelta(hours=3))
    location = session.breaks[0].location
    assert location["latitude"] == pytest.approx(on_site().latitude)
    assert location["activity"] == "break"
    assert get_audit_logs(db, "time_session", str(session.id))[0].context["gps"]["accuracy"] == 5.0


def test_pause_rejects_bad_break_location(db, directory):
    session = clock_in(db, directory)
    with pytest.raises(ValidationError):
        time_sessions.pause_session(db, session.id, on_site(accuracy=-1), at=NINE_AM + timedelta(hours=1))
    db.rollback()
    assert time_sessions.get_session(db, session.id).status == SessionStatus.ACTIVE.value


class TestProgressUpdates:
    def test_updates_accumulate_in_order(self, db, directory):
        session = clock_in(db, directory)
        time_sessions.add_progress_update(db, session.id, progress=40, notes="Primer on", at=NINE_AM + timedelta(hours=2))
        time_sessions.pause_session(db, session.id, at=NINE_AM + timedelta(hours=3))
        session = time_sessions.add_progress_update(
            db, session.id, progress=75, photos=["photos/kitchen-2.jpg"], at=NINE_AM + timedelta(hours=3, minutes=5)
        )
        assert [p.progress for p in session.progress_updates] == [40, 75]
        assert session.progress_updates[0].notes == "Primer on"
        assert session.progress_updates[1].photos == ["photos/kitchen-2.jpg"]
        assert session.status == SessionStatus.PAUSED.value

    def test_audited_with_actor(self, db, directory):
        session = clock_in(db, directory)
        actor = Actor(id=directory.ana.id, role="worker")
        time_sessions.add_progress_update(db, session.id, progress=10, actor=actor)
        log = get_audit_logs(db, "time_session", str(session.id))[0]
        assert log.action == "PROGRESS"
        assert log.actor_id == directory.ana.id
        assert session.progress_updates[0].created_by == directory.ana.id

    def test_closed_session_rejected(self, db, directory):
        session = clock_in(db, directory)
        time_sessions.clock_out(db, session.id, on_site(), at=NINE_AM + timedelta(hours=4))
        with pytest.raises(InvalidStateError):
            time_sessions.add_progress_update(db, session.id, progress=100)

    @pytest.mark.parametrize("progress", [-1, 101, 50.5, True])
    def test_progress_must_be_a_percentage(self, db, directory, progress):
        session = clock_in(db, directory)
        with pytest.raises(ValidationError):
            time_sessions.add_progress_update(db, session.id, progress=progress)

    def test_empty_update_rejected(self, db, directory):
        session = clock_in(db, directory)
        with pytest.raises(ValidationError):
            time_sessions.add_progress_update(db, session.id, notes="   ")

    def test_deleted_with_session(self, db, directory):
        session = clock_in(db, directory)
        time_sessions.add_progress_update(db, session.id, progress=20)
        time_sessions.delete_session(db, session.id)
        assert db.query(ProgressUpdate).count() == 0


class TestCorrectHours:
    def completed(self, db, directory):
        session = clock_in(db, directory)
        return time_sessions.clock_out(db, session.id, on_site(), at=NINE_AM + timedelta(hours=4))

    def test_correction_recorded(self, db, directory):
        session = self.completed(db, directory)
        admin = Actor(id=directory.admin.id, role="admin")
        session = time_sessions.correct_hours(
            db, session.id, corrected_hours=3.5, override_rate=25, reason="Left early for supplies", actor=admin
        )
        assert session.corrected_hours == 3.5
        assert float(session.override_rate) == 25
        assert session.corrected_by == directory.admin.id
        assert get_audit_logs(db, "time_session", str(session.id))[0].action == "CORRECT"

    def test_reason_too_short(self, db, directory):
        session = self.completed(db, directory)
        with pytest.raises(ValidationError):
            time_sessions.correct_hours(db, session.id, corrected_hours=3, reason="ok")

    def test_requires_a_value(self, db, directory):
        session = self.completed(db, directory)
        with pytest.raises(ValidationError):
            time_sessions.correct_hours(db, session.id, reason="Nothing to change")

    def test_negative_hours_rejected(self, db, directory):
        session = self.completed(db, directory)
        with pytest.raises(ValidationError):
            time_sessions.correct_hours(db, session.id, corrected_hours=-1, reason="Typo in timesheet")

    def test_open_session_cannot_be_corrected(self, db, directory):
        session = clock_in(db, directory)
        with pytest.raises(InvalidStateError):
            time_sessions.correct_hours(db, session.id, corrected_hours=2, reason="Forgot to clock out")


class TestQueries:
    @pytest.fixture
    def history(self, db, directory):
        """Ana: two closed days and one open session. Ben: one closed day."""
        a1 = clock_in(db, directory, at=utc(2024, 3, 4, 14))
        time_sessions.clock_out(db, a1.id, on_site(), at=utc(2024, 3, 4, 18))
        a2 = clock_in(db, directory, at=utc(2024, 3, 5, 14))
        time_sessions.clock_out(db, a2.id, on_site(), at=utc(2024, 3, 5, 16))
        a3 = clock_in(db, directory, at=utc(2024, 3, 6, 14))
        b1 = clock_in(db, directory, worker=directory.ben, at=utc(2024, 3, 4, 15))
        time_sessions.clock_out(db, b1.id, on_site(), at=utc(2024, 3, 4, 20))
        return a1, a2, a3, b1

    def test_filters_combine_with_and(self, db, directory, history):
        a1, a2, a3, b1 = history
        ids = [s.id for s in time_sessions.list_sessions(db, worker_id=directory.ana.id)]
        assert ids == [a3.id, a2.id, a1.id]

        ids = [s.id for s in time_sessions.list_sessions(db, worker_id=directory.ana.id, status="completed")]
        assert ids == [a2.id, a1.id]

        ids = [s.id for s in time_sessions.list_sessions(db, start_date=date(2024, 3, 4), end_date=date(2024, 3, 4))]
        assert set(ids) == {a1.id, b1.id}

    def test_list_sessions_is_lazy(self, db, directory, history):
        iterator = time_sessions.list_sessions(db)
        assert next(iterator).id == history[2].id

    def test_unknown_status_filter(self, db, directory, history):
        with pytest.raises(ValidationError):
            list(time_sessions.list_sessions(db, status="paid"))

    def test_worker_status(self, db, directory, history):
        status = time_sessions.get_worker_status(db, directory.ana.id)
        assert status["is_active"] is True
        assert status["is_paused"] is False
        assert status["session"].id == history[2].id
        assert time_sessions.get_worker_status(db, directory.ben.id)["is_active"] is False

    def test_stats(self, db, directory, history):
        stats = time_sessions.session_stats(db, worker_id=directory.ana.id)
        assert stats["total_sessions"] == 2
        assert stats["total_hours"] == 6
        assert stats["average_hours_per_session"] == 3
        assert stats["pending_sessions"] == 2
        assert stats["approved_sessions"] == 0
