import pytest

from opshub.services import agreements, attendance, equipment_registry, time_entries, write_ups
from opshub.services.time_rules import ArrivalStatus


@pytest.mark.parametrize("table, members", [
    (agreements.CONDITION_LABELS, set(agreements.OverallCondition)),
    (agreements.CHECKLIST_LABELS, set(agreements.ConditionChecklist.model_fields)),
    (equipment_registry.TYPE_LABELS, set(equipment_registry.EquipmentType)),
    (equipment_registry.HANDHELD_STATUS_LABELS, set(equipment_registry.HandheldStatus)),
    (equipment_registry.FLEET_STATUS_LABELS, set(equipment_registry.FleetStatus)),
    (attendance.LIVE_STATUS_LABELS, set(attendance.LiveStatus)),
    (attendance._FROM_ARRIVAL, set(ArrivalStatus)),
    (time_entries._STATUS_AFTER, set(time_entries.EntryType)),
    (write_ups.SEVERITY_LABELS, set(write_ups.WriteUpSeverity)),
])
def test_every_member_has_an_entry(table, members):
    assert set(table) == members


def test_severity_ladder_covers_every_severity():
    assert set(write_ups.SEVERITY_LADDER) == set(write_ups.WriteUpSeverity)
    assert len(write_ups.SEVERITY_LADDER) == len(write_ups.WriteUpSeverity)
