import math

import pytest

from opshub.errors import ValidationError
from opshub.services.agreements import (
    EQUIPMENT_VALUE,
    ConditionChecklist,
    OverallCondition,
    build_agreement_text,
    clamp_deduction,
    condition_summary,
    format_value,
    normalise_return_flags,
    resolve_deduction,
    resolve_equipment_value,
)
from opshub.services.time_rules import ArrivalStatus, evaluate_arrival, combine_date_time


def test_agreement_text_is_deterministic():
    first = build_agreement_text("scanner", "12", "SN-0012", "Alice Ng")
    second = build_agreement_text("scanner", "12", "SN-0012", "Alice Ng")
    assert first == second
    assert first.startswith("EQUIPMENT RESPONSIBILITY AGREEMENT")
    assert "Equipment: Scanner #12" in first
    assert "Serial Number: SN-0012" in first
    assert "$100.00" in first
    assert "premises" in first


def test_agreement_text_without_serial():
    assert "Serial Number: N/A" in build_agreement_text("picker", "3", None, "Bob Reyes")


def test_format_value():
    assert format_value(EQUIPMENT_VALUE) == "$100.00"
    assert format_value(1234.5) == "$1,234.50"


def test_equipment_value_cannot_be_changed():
    assert resolve_equipment_value() == EQUIPMENT_VALUE
    assert resolve_equipment_value(100) == EQUIPMENT_VALUE
    with pytest.raises(ValidationError):
        resolve_equipment_value(99.99)
    with pytest.raises(ValidationError):
        resolve_equipment_value(math.nan)


@pytest.mark.parametrize("raw, expected", [
    (-20, 0.0),
    (0, 0.0),
    (42.499, 42.5),
    (100, 100.0),
    (100.01, 100.0),
    (1e9, 100.0),
    (math.inf, 0.0),
    ("abc", 0.0),
    (None, 0.0),
    ("25", 25.0),
])
def test_clamp_deduction(raw, expected):
    assert clamp_deduction(raw) == expected


def test_deduction_only_when_required():
    assert resolve_deduction(False, 50) is None
    assert resolve_deduction(True, 500) == EQUIPMENT_VALUE


def test_repair_forces_not_ready():
    assert normalise_return_flags(True, True) == (True, False)
    assert normalise_return_flags(False, True) == (False, True)
    assert normalise_return_flags(False, False) == (False, False)


def test_condition_summary_lists_failed_checks():
    checklist = ConditionChecklist(
        physical_condition=True,
        screen_functional=False,
        buttons_working=True,
        battery_condition=False,
        charging_port_ok=True,
        scanner_functional=True,
        clean_condition=True,
    )
    summary = condition_summary(checklist, OverallCondition.fair, "Scuffed", True, 25.0)
    assert summary == (
        "Condition: Fair. Failed checks: Screen functional, Battery condition. "
        "Repair required. Deduction: $25.00. Damage: Scuffed"
    )


@pytest.mark.parametrize("hhmm, status, minutes", [
    ("07:55", ArrivalStatus.on_time, 0),
    ("08:00", ArrivalStatus.on_time, 0),
    ("08:05", ArrivalStatus.grace_period, 5),
    ("08:05:59", ArrivalStatus.grace_period, 5),
    ("08:06", ArrivalStatus.late, 6),
])
def test_evaluate_arrival_bands(hhmm, status, minutes):
    scheduled = combine_date_time("2026-06-15", "08:00")
    hh, mm, *rest = hhmm.split(":")
    actual = combine_date_time("2026-06-15", f"{hh}:{mm}")
    if rest:
        actual = actual.replace(second=int(rest[0]))
    assert evaluate_arrival(scheduled, actual, on_time_window=0, grace_minutes=5) == (status, minutes)


def test_evaluate_arrival_with_on_time_window():
    scheduled = combine_date_time("2026-06-15", "08:00")
    actual = combine_date_time("2026-06-15", "08:03")
    assert evaluate_arrival(scheduled, actual, on_time_window=3, grace_minutes=5)[0] == ArrivalStatus.on_time
