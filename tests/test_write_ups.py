from datetime import datetime

import pytest
import pytz

from conftest import at
from opshub.errors import AlreadyLinkedError, InvalidStateError, ValidationError
from opshub.models.models import WriteUp
from opshub.services.attendance import upsert_attendance
from opshub.services.write_ups import (
    WriteUpSeverity,
    acknowledge_write_up,
    add_follow_up_notes,
    count_recent_attendance_write_ups,
    create_write_up_from_attendance,
    list_write_ups,
    severity_for_count,
    subtract_months,
)

# Monthly late arrivals, each written up at noon on the day
LATE_DAYS = ["2026-01-12", "2026-02-09", "2026-03-09", "2026-04-13", "2026-05-11"]


def _late(db, manager, person, date, minutes=15):
    return upsert_attendance(db, manager, person.id, date, "late", scheduled_start="08:00", minutes_late=minutes)


@pytest.mark.parametrize("count, expected", [
    (-1, WriteUpSeverity.verbal_warning),
    (0, WriteUpSeverity.verbal_warning),
    (1, WriteUpSeverity.written_warning),
    (2, WriteUpSeverity.final_warning),
    (3, WriteUpSeverity.suspension),
    (12, WriteUpSeverity.suspension),
])
def test_severity_for_count(count, expected):
    assert severity_for_count(count) == expected


def test_severity_is_monotonic():
    ladder = [severity_for_count(n) for n in range(8)]
    assert ladder == sorted(ladder)
    assert WriteUpSeverity.verbal_warning < WriteUpSeverity.suspension


@pytest.mark.parametrize("start, months, expected", [
    (datetime(2026, 8, 31, 14, 0), 6, datetime(2026, 2, 28, 14, 0)),
    (datetime(2024, 8, 31, 14, 0), 6, datetime(2024, 2, 29, 14, 0)),
    (datetime(2026, 1, 15, 9, 30), 1, datetime(2025, 12, 15, 9, 30)),
    (datetime(2026, 6, 15), 0, datetime(2026, 6, 15)),
])
def test_subtract_months_clamps_to_month_end(start, months, expected):
    assert subtract_months(start, months) == expected


def test_escalation_ladder(db, manager, alice):
    severities = []
    for date in LATE_DAYS:
        record = _late(db, manager, alice, date)
        severities.append(create_write_up_from_attendance(db, manager, record.id, now=at("12:00", date)).severity)
    assert severities == ["verbal_warning", "written_warning", "final_warning", "suspension", "suspension"]


def test_write_up_describes_the_record(db, manager, alice):
    record = _late(db, manager, alice, "2026-06-10", minutes=22)
    write_up = create_write_up_from_attendance(db, manager, record.id, action_taken="Discussed", now=at("12:00"))
    assert write_up.category == "attendance"
    assert write_up.date == "2026-06-10"
    assert write_up.issued_by == manager.id
    assert write_up.issued_by_name == manager.name
    assert write_up.action_taken == "Discussed"
    assert "22 minutes" in write_up.description
    assert "scheduled 08:00" in write_up.description


def test_lookback_ignores_old_write_ups(db, manager, alice):
    old = _late(db, manager, alice, "2025-11-03")
    create_write_up_from_attendance(db, manager, old.id, now=at("12:00", "2025-11-03"))
    recent = _late(db, manager, alice, "2026-06-10")
    write_up = create_write_up_from_attendance(db, manager, recent.id, now=at("12:00"))
    assert write_up.severity == "verbal_warning"
    assert count_recent_attendance_write_ups(db, alice.id, now=at("12:00")) == 1


def test_lookback_counts_six_calendar_months(db, manager, alice):
    first = _late(db, manager, alice, "2025-12-15")
    create_write_up_from_attendance(db, manager, first.id, now=at("12:00", "2025-12-15"))
    second = _late(db, manager, alice, "2026-06-12")
    write_up = create_write_up_from_attendance(db, manager, second.id, now=at("12:00", "2026-06-15"))
    assert write_up.severity == "written_warning"


def test_other_people_do_not_count(db, manager, alice, bob):
    a1 = _late(db, manager, alice, "2026-06-01")
    a2 = _late(db, manager, alice, "2026-06-02")
    b1 = _late(db, manager, bob, "2026-06-03")
    create_write_up_from_attendance(db, manager, a1.id, now=at("12:00", "2026-06-01"))
    create_write_up_from_attendance(db, manager, a2.id, now=at("12:00", "2026-06-02"))
    assert create_write_up_from_attendance(db, manager, b1.id, now=at("12:00", "2026-06-03")).severity == "verbal_warning"


def test_one_write_up_per_attendance_record(db, manager, alice):
    record = _late(db, manager, alice, "2026-06-10")
    create_write_up_from_attendance(db, manager, record.id, now=at("12:00"))
    with pytest.raises(AlreadyLinkedError):
        create_write_up_from_attendance(db, manager, record.id, now=at("12:05"))
    assert db.query(WriteUp).count() == 1


@pytest.mark.parametrize("status", ["present", "absent", "excused"])
def test_only_late_or_no_show_can_be_written_up(db, manager, alice, status):
    record = upsert_attendance(db, manager, alice.id, "2026-06-10", status)
    with pytest.raises(InvalidStateError):
        create_write_up_from_attendance(db, manager, record.id)


def test_no_show_write_up(db, manager, alice):
    record = upsert_attendance(db, manager, alice.id, "2026-06-10", "no_call_no_show", scheduled_start="08:00")
    write_up = create_write_up_from_attendance(db, manager, record.id, now=at("12:00"))
    assert write_up.description.startswith("No call / no show on 2026-06-10")


def test_old_write_ups_are_archived_from_list(db, manager, alice):
    old = _late(db, manager, alice, "2026-02-02")
    recent = _late(db, manager, alice, "2026-06-10")
    create_write_up_from_attendance(db, manager, old.id, now=at("12:00", "2026-02-02"))
    create_write_up_from_attendance(db, manager, recent.id, now=at("12:00"))

    active = list_write_ups(db, personnel_id=alice.id, now=at("12:00"))
    assert [w["date"] for w in active] == ["2026-06-10"]
    assert active[0]["severity_label"] == "Written Warning"
    everything = list_write_ups(db, personnel_id=alice.id, include_archived=True, now=at("12:00"))
    assert [(w["date"], w["is_expired"]) for w in everything] == [("2026-06-10", False), ("2026-02-02", True)]
    assert [w["date"] for w in list_write_ups(db, severity="verbal_warning", include_archived=True, now=at("12:00"))] == [
        "2026-02-02"
    ]


def test_acknowledge_once(db, manager, alice):
    record = _late(db, manager, alice, "2026-06-10")
    write_up = create_write_up_from_attendance(db, manager, record.id, now=at("12:00"))
    acknowledged = acknowledge_write_up(db, manager, write_up.id, now=at("13:00"))
    assert acknowledged.acknowledged_at.replace(tzinfo=None) == at("13:00").astimezone(pytz.UTC).replace(tzinfo=None)
    with pytest.raises(InvalidStateError):
        acknowledge_write_up(db, manager, write_up.id, now=at("14:00"))


def test_follow_up_notes(db, manager, alice):
    record = _late(db, manager, alice, "2026-06-10")
    write_up = create_write_up_from_attendance(db, manager, record.id, now=at("12:00"))
    with pytest.raises(ValidationError):
        add_follow_up_notes(db, manager, write_up.id, "   ")
    assert add_follow_up_notes(db, manager, write_up.id, " Improved this week ").follow_up_notes == "Improved this week"
