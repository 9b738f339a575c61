from datetime import timedelta

import pytest

from conftest import DAY, at
from opshub.errors import InvalidStateError, PermissionDeniedError, ValidationError
from opshub.models.models import Attendance, AuditLog, TimeEntry
from opshub.services.time_entries import (
    add_missed_entry,
    clock_in,
    clock_out,
    day_entries,
    delete_entry,
    edit_entry,
    end_break,
    force_clock_out,
    get_active_clocks,
    get_current_status,
    get_daily_summary,
    start_break,
)


def test_clock_sequence(db, kiosk, alice):
    clock_in(db, kiosk, alice.id, now=at("09:00"))
    with pytest.raises(InvalidStateError, match="Already clocked in"):
        clock_in(db, kiosk, alice.id, now=at("09:01"))
    with pytest.raises(InvalidStateError, match="Not currently on break"):
        end_break(db, kiosk, alice.id, now=at("09:02"))
    start_break(db, kiosk, alice.id, now=at("12:00"))
    with pytest.raises(InvalidStateError, match="on break"):
        clock_out(db, kiosk, alice.id, now=at("12:10"))
    end_break(db, kiosk, alice.id, now=at("12:30"))
    clock_out(db, kiosk, alice.id, now=at("17:00"))
    with pytest.raises(InvalidStateError, match="Already clocked out"):
        clock_out(db, kiosk, alice.id, now=at("17:01"))

    status = get_current_status(db, alice.id, now=at("18:00"))
    assert status["status"] == "clocked_out"
    assert status["date"] == DAY
    assert status["hours_worked"] == 7.5
    assert [e["type"] for e in status["entries"]] == ["clock_in", "break_start", "break_end", "clock_out"]


def test_clock_out_before_clock_in_fails(db, kiosk, alice):
    with pytest.raises(InvalidStateError, match="Not clocked in"):
        clock_out(db, kiosk, alice.id, now=at("09:00"))


def test_viewer_cannot_clock(db, viewer, alice):
    with pytest.raises(PermissionDeniedError):
        clock_in(db, viewer, alice.id, now=at("09:00"))


def test_invalid_source_rejected(db, kiosk, alice):
    with pytest.raises(ValidationError):
        clock_in(db, kiosk, alice.id, source="carrier_pigeon", now=at("09:00"))


def test_early_clock_in_blocked(db, kiosk, alice, morning_shift):
    with pytest.raises(InvalidStateError, match="Please wait 15 minutes"):
        clock_in(db, kiosk, alice.id, now=at("07:45"))
    assert db.query(TimeEntry).count() == 0


def test_only_admin_may_bypass_schedule(db, kiosk, admin, alice, morning_shift):
    with pytest.raises(PermissionDeniedError):
        clock_in(db, kiosk, alice.id, bypass_schedule_check=True, now=at("07:45"))
    entry = clock_in(db, admin, alice.id, bypass_schedule_check=True, now=at("07:45"))
    assert entry.is_late is False
    assert entry.scheduled_start is None


def test_grace_clock_in_is_not_late(db, kiosk, alice, morning_shift):
    entry = clock_in(db, kiosk, alice.id, now=at("08:04"))
    assert entry.is_late is False
    assert entry.minutes_late == 4
    record = db.query(Attendance).one()
    assert record.status == "present"
    assert record.actual_start == "08:04"


def test_late_clock_in_creates_late_attendance(db, kiosk, alice, morning_shift):
    entry = clock_in(db, kiosk, alice.id, now=at("08:20"))
    assert entry.is_late is True
    assert entry.minutes_late == 20
    assert entry.scheduled_start == "08:00"
    record = db.query(Attendance).one()
    assert record.status == "late"
    assert record.minutes_late == 20
    assert record.scheduled_start == "08:00"
    assert record.scheduled_end == "16:30"


def test_second_clock_in_keeps_first_arrival(db, kiosk, alice, morning_shift):
    clock_in(db, kiosk, alice.id, now=at("08:00"))
    clock_out(db, kiosk, alice.id, now=at("11:00"))
    second = clock_in(db, kiosk, alice.id, now=at("12:00"))
    assert second.is_late is False
    assert db.query(Attendance).one().status == "present"


def test_overnight_session_continues_after_midnight(db, kiosk, alice):
    clock_in(db, kiosk, alice.id, now=at("22:00"))
    next_day = "2026-06-16"
    entry = clock_out(db, kiosk, alice.id, now=at("02:00", next_day))
    assert entry.date == DAY
    summary = get_daily_summary(db, DAY, now=at("09:00", next_day))[0]
    assert summary["total_hours"] == 4.0
    assert summary["is_complete"] is True


def test_clock_in_refused_while_overnight_session_open(db, kiosk, alice):
    clock_in(db, kiosk, alice.id, now=at("22:00"))
    next_day = "2026-06-16"
    with pytest.raises(InvalidStateError, match="Still clocked in from 2026-06-15"):
        clock_in(db, kiosk, alice.id, now=at("01:00", next_day))
    assert day_entries(db, alice.id, next_day) == []

    clock_out(db, kiosk, alice.id, now=at("02:00", next_day))
    entry = clock_in(db, kiosk, alice.id, now=at("09:00", next_day))
    assert entry.date == next_day
    assert get_daily_summary(db, DAY, now=at("12:00", next_day))[0]["total_hours"] == 4.0


def test_split_shift_back_on_the_clock_is_incomplete(db, kiosk, alice):
    clock_in(db, kiosk, alice.id, now=at("08:00"))
    clock_out(db, kiosk, alice.id, now=at("11:00"))
    clock_in(db, kiosk, alice.id, now=at("14:00"))
    summary = get_daily_summary(db, DAY, now=at("15:00"))[0]
    assert summary["clock_out"] is not None
    assert summary["is_complete"] is False


def test_daily_summary_subtracts_breaks_and_flags_incomplete(db, kiosk, alice, bob):
    clock_in(db, kiosk, alice.id, now=at("08:00"))
    start_break(db, kiosk, alice.id, now=at("12:00"))
    end_break(db, kiosk, alice.id, now=at("12:45"))
    clock_out(db, kiosk, alice.id, now=at("16:45"))
    clock_in(db, kiosk, bob.id, now=at("09:00"))

    rows = {r["personnel_name"]: r for r in get_daily_summary(db, DAY, now=at("13:00"))}
    assert rows["Alice Ng"]["break_minutes"] == 45
    assert rows["Alice Ng"]["total_hours"] == 8.0
    assert rows["Alice Ng"]["is_complete"] is True
    assert rows["Bob Reyes"]["is_complete"] is False
    assert rows["Bob Reyes"]["clock_out"] is None
    assert rows["Bob Reyes"]["total_hours"] == 4.0


def test_active_clocks(db, kiosk, alice, bob):
    clock_in(db, kiosk, alice.id, now=at("08:00"))
    clock_in(db, kiosk, bob.id, now=at("09:00"))
    start_break(db, kiosk, bob.id, now=at("10:00"))
    active = get_active_clocks(db, now=at("10:30"))
    assert [(a["personnel_name"], a["status"]) for a in active] == [("Alice Ng", "working"), ("Bob Reyes", "on_break")]
    clock_out(db, kiosk, alice.id, now=at("10:45"))
    assert [a["personnel_name"] for a in get_active_clocks(db, now=at("11:00"))] == ["Bob Reyes"]


def test_edit_keeps_id_and_first_original(db, kiosk, manager, alice):
    entry = clock_in(db, kiosk, alice.id, now=at("09:10"))
    entry_id = entry.id
    edit_entry(db, manager, entry_id, at("09:00"), "Badge reader was down", now=at("10:00"))
    edited = edit_entry(db, manager, entry_id, at("08:55"), "Confirmed with camera", now=at("10:05"))
    assert edited.id == entry_id
    assert db.query(TimeEntry).count() == 1
    assert edited.original_timestamp.replace(tzinfo=None) == at("09:10").replace(tzinfo=None)
    assert edited.edit_reason == "Confirmed with camera"
    assert edited.edited_by == manager.id
    logs = db.query(AuditLog).filter(AuditLog.entity_id == entry_id, AuditLog.action == "UPDATE").all()
    assert len(logs) == 2


def test_edit_requires_reason(db, kiosk, manager, alice):
    entry = clock_in(db, kiosk, alice.id, now=at("09:10"))
    with pytest.raises(ValidationError):
        edit_entry(db, manager, entry.id, at("09:00"), "")


def test_add_missed_entry(db, manager, alice):
    entry = add_missed_entry(db, manager, alice.id, DAY, "clock_in", at("08:00"), "Forgot to punch", now=at("12:00"))
    assert entry.source == "admin"
    assert entry.edit_reason == "Forgot to punch"
    log = db.query(AuditLog).filter(AuditLog.entity_id == entry.id).one()
    assert log.action == "CREATE"
    assert log.actor_id == manager.id
    with pytest.raises(ValidationError):
        add_missed_entry(db, manager, alice.id, DAY, "lunch", at("12:00"), "Forgot")


def test_delete_entry_is_audited(db, kiosk, manager, alice):
    entry = clock_in(db, kiosk, alice.id, now=at("09:00"))
    entry_id = entry.id
    delete_entry(db, manager, entry_id, reason="Duplicate punch")
    assert db.query(TimeEntry).count() == 0
    log = db.query(AuditLog).filter(AuditLog.entity_id == entry_id).one()
    assert log.action == "DELETE"
    assert log.changes_json["before"]["type"] == "clock_in"


def test_force_clock_out_closes_open_break(db, kiosk, manager, alice):
    clock_in(db, kiosk, alice.id, now=at("08:00"))
    start_break(db, kiosk, alice.id, now=at("12:00"))
    entry = force_clock_out(db, manager, alice.id, timestamp=at("13:00"), now=at("18:00"))
    assert entry.type == "clock_out"
    types = [e.type for e in day_entries(db, alice.id, DAY)]
    assert types == ["clock_in", "break_start", "break_end", "clock_out"]
    assert get_current_status(db, alice.id, now=at("18:00"))["status"] == "clocked_out"
    assert db.query(AuditLog).filter(AuditLog.action == "FORCE_CLOCK_OUT").count() == 1


def test_force_clock_out_requires_open_session(db, manager, alice):
    with pytest.raises(InvalidStateError):
        force_clock_out(db, manager, alice.id, now=at("18:00"))


def test_force_clock_out_cannot_precede_last_entry(db, kiosk, manager, alice):
    clock_in(db, kiosk, alice.id, now=at("08:00"))
    with pytest.raises(ValidationError):
        force_clock_out(db, manager, alice.id, timestamp=at("08:00") - timedelta(minutes=5), now=at("18:00"))
