"""
Equipment responsibility agreements and return condition checks.

``EQUIPMENT_VALUE`` is the single source for the value written into every
agreement and for the deduction ceiling.
"""
import math
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel

from ..errors import ValidationError


EQUIPMENT_VALUE = 100.00


class OverallCondition(str, Enum):
    excellent = "excellent"
    good = "good"
    fair = "fair"
    poor = "poor"
    damaged = "damaged"


CONDITION_LABELS = {
    OverallCondition.excellent: "Excellent",
    OverallCondition.good: "Good",
    OverallCondition.fair: "Fair",
    OverallCondition.poor: "Poor",
    OverallCondition.damaged: "Damaged",
}


class ConditionChecklist(BaseModel):
    """
    Mechanical facts recorded at return. The assessor sets
    ``OverallCondition`` separately; it is never computed from these.
    """
    physical_condition: bool
    screen_functional: bool
    buttons_working: bool
    battery_condition: bool
    charging_port_ok: bool
    scanner_functional: bool
    clean_condition: bool


CHECKLIST_LABELS = {
    "physical_condition": "Physical condition",
    "screen_functional": "Screen functional",
    "buttons_working": "Buttons working",
    "battery_condition": "Battery condition",
    "charging_port_ok": "Charging port OK",
    "scanner_functional": "Scanner functional",
    "clean_condition": "Clean condition",
}


def format_value(value: float) -> str:
    amount = Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"${amount:,}"


def resolve_equipment_value(value: Optional[float] = None) -> float:
    """Callers may echo the value back but never choose a different one."""
    if value is None:
        return EQUIPMENT_VALUE
    if not isinstance(value, (int, float)) or not math.isfinite(value) or round(float(value), 2) != EQUIPMENT_VALUE:
        raise ValidationError(f"Equipment value is fixed at {format_value(EQUIPMENT_VALUE)}")
    return EQUIPMENT_VALUE


def build_agreement_text(
    equipment_type: str,
    number: str,
    serial_number: Optional[str],
    employee_name: str,
    value: float = EQUIPMENT_VALUE,
) -> str:
    """
    Render the agreement the employee signs.

    The output depends only on the arguments (no dates, no locale), so the
    same unit and employee always produce the same text for assign and
    reassign alike.
    """
    type_name = equipment_type.strip().capitalize()
    serial = serial_number.strip() if serial_number and serial_number.strip() else "N/A"
    amount = format_value(value)
    lines = [
        "EQUIPMENT RESPONSIBILITY AGREEMENT",
        "",
        f"Employee: {employee_name}",
        f"Equipment: {type_name} #{number}",
        f"Serial Number: {serial}",
        f"Equipment Value: {amount}",
        "",
        f"1. I acknowledge receipt of the {type_name.lower()} identified above, valued at {amount}.",
        "2. This equipment is company property and will be used on company premises only. "
        "It will not be taken off site for any reason.",
        "3. I will use the equipment only for work duties and will take reasonable care of it, "
        "keeping it clean, charged and protected from drops, moisture and misuse.",
        "4. I will report any damage, malfunction or loss to my supervisor immediately.",
        "5. If the equipment is lost or damaged through my negligence or misuse, I authorize "
        f"a payroll deduction for the repair or replacement cost, not to exceed {amount}.",
        "6. I will return the equipment in the same condition, normal wear excepted, when "
        "asked by a supervisor or when my employment ends.",
        "",
        "By signing below I confirm that I have read, understood and agree to these terms.",
    ]
    return "\n".join(lines)


def clamp_deduction(amount) -> float:
    """
    Force a deduction into [0, EQUIPMENT_VALUE].

    Missing, non-numeric and non-finite input become 0. This corrects rather
    than rejects.
    """
    if amount is None or isinstance(amount, bool):
        return 0.0
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value):
        return 0.0
    return round(min(max(value, 0.0), EQUIPMENT_VALUE), 2)


def resolve_deduction(deduction_required: bool, amount) -> Optional[float]:
    if not deduction_required:
        return None
    return clamp_deduction(amount)


def normalise_return_flags(repair_required: bool, ready_for_reassignment: bool) -> Tuple[bool, bool]:
    """A unit needing repair is never ready for reassignment."""
    repair = bool(repair_required)
    return repair, bool(ready_for_reassignment) and not repair


def condition_summary(
    checklist: ConditionChecklist,
    overall_condition: OverallCondition,
    damage_notes: Optional[str] = None,
    repair_required: bool = False,
    deduction_amount: Optional[float] = None,
) -> str:
    """One-line summary for history notes and the unit's condition notes."""
    failed = [CHECKLIST_LABELS[k] for k, ok in checklist.model_dump().items() if not ok]
    parts = [f"Condition: {CONDITION_LABELS[OverallCondition(overall_condition)]}"]
    parts.append(f"Failed checks: {', '.join(failed)}" if failed else "All checks passed")
    if repair_required:
        parts.append("Repair required")
    if deduction_amount is not None:
        parts.append(f"Deduction: {format_value(deduction_amount)}")
    if damage_notes and damage_notes.strip():
        parts.append(f"Damage: {damage_notes.strip()}")
    return ". ".join(parts)
