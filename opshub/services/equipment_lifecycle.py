"""
Equipment lifecycle: assign, return, reassign, retire and delete.

Each operation is one transaction. The unit's current status (and assignee)
is the precondition of the UPDATE that moves it, so two requests racing on
the same unit cannot both succeed.
"""
import uuid
from datetime import datetime
from typing import Optional, List, Union, Dict, Any

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ..db import atomic
from ..errors import NotFoundError, ValidationError, InvalidStateError, require_reason
from ..models.models import (
    Equipment,
    EquipmentAgreement,
    EquipmentConditionCheck,
    EquipmentHistory,
    Personnel,
    User,
)
from .agreements import (
    ConditionChecklist,
    OverallCondition,
    build_agreement_text,
    condition_summary,
    normalise_return_flags,
    resolve_deduction,
    resolve_equipment_value,
)
from .audit import create_audit_log
from .equipment_history import record_history, new_transaction_id, HistoryAction
from .equipment_registry import (
    HandheldStatus,
    conditional_update,
    display_name,
    get_equipment,
    is_handheld,
)
from .permissions import ensure_permission, ensure_super_admin, EQUIPMENT_WRITE
from .personnel import get_personnel
from .time_rules import utc_now

logger = structlog.get_logger(__name__)

ASSIGNED = HandheldStatus.assigned.value
AVAILABLE = HandheldStatus.available.value
MAINTENANCE = HandheldStatus.maintenance.value
RETIRED = "retired"


def _require_handheld(equipment: Equipment) -> None:
    if not is_handheld(equipment.equipment_type):
        raise InvalidStateError(f"{display_name(equipment)} does not use signed assignments")


def _require_signature(signature_data: Optional[str], who: str) -> str:
    text = (signature_data or "").strip()
    if not text:
        raise ValidationError(f"{who} signature is required")
    return text


def _parse_checklist(checklist: Union[ConditionChecklist, Dict[str, Any]]) -> ConditionChecklist:
    if isinstance(checklist, ConditionChecklist):
        return checklist
    try:
        return ConditionChecklist.model_validate(checklist)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid checklist: {e.errors()[0]['msg']}")


def _parse_condition(overall_condition) -> OverallCondition:
    try:
        return OverallCondition(overall_condition)
    except ValueError:
        raise ValidationError(f"Invalid overall condition: {overall_condition}")


def _create_agreement(
    db: Session,
    equipment: Equipment,
    person: Personnel,
    signature: str,
    value: float,
    witness: User,
    signed_at: datetime,
) -> EquipmentAgreement:
    agreement = EquipmentAgreement(
        equipment_id=equipment.id,
        equipment_type=equipment.equipment_type,
        equipment_number=equipment.number,
        serial_number=equipment.serial_number,
        personnel_id=person.id,
        personnel_name=person.full_name,
        equipment_value=value,
        agreement_text=build_agreement_text(
            equipment.equipment_type,
            equipment.number,
            equipment.serial_number,
            person.full_name,
            value,
        ),
        signature_data=signature,
        signed_at=signed_at,
        witnessed_by=witness.id,
        witnessed_by_name=witness.name,
        created_at=signed_at,
    )
    db.add(agreement)
    db.flush()
    return agreement


def _create_condition_check(
    db: Session,
    equipment: Equipment,
    actor: User,
    checklist: ConditionChecklist,
    overall: OverallCondition,
    damage_notes: Optional[str],
    repair_required: bool,
    ready: bool,
    deduction_required: bool,
    deduction_amount: Optional[float],
    checked_at: datetime,
    sign_off_signature: Optional[str] = None,
) -> EquipmentConditionCheck:
    check = EquipmentConditionCheck(
        equipment_id=equipment.id,
        equipment_type=equipment.equipment_type,
        returned_by=equipment.assigned_to,
        returned_by_name=equipment.assigned_person_name,
        checked_by=actor.id,
        checked_by_name=actor.name,
        checklist=checklist.model_dump(),
        overall_condition=overall.value,
        damage_notes=damage_notes,
        repair_required=repair_required,
        ready_for_reassignment=ready,
        deduction_required=bool(deduction_required),
        deduction_amount=deduction_amount,
        sign_off_signature=sign_off_signature,
        checked_at=checked_at,
    )
    db.add(check)
    db.flush()
    return check


def assign_equipment_with_agreement(
    db: Session,
    actor: User,
    equipment_id: uuid.UUID,
    personnel_id: uuid.UUID,
    signature_data: str,
    equipment_value: Optional[float] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> EquipmentAgreement:
    """
    Hand an available unit to an employee against a signed agreement.

    Raises:
        InvalidStateError: the unit is not ``available`` (or is a fleet unit)
        ValidationError: missing signature or a non-standard value
    """
    ensure_permission(actor, EQUIPMENT_WRITE)
    value = resolve_equipment_value(equipment_value)
    signature = _require_signature(signature_data, "Employee")
    equipment = get_equipment(db, equipment_id)
    _require_handheld(equipment)
    person = get_personnel(db, personnel_id)
    if equipment.status != AVAILABLE:
        raise InvalidStateError(f"{display_name(equipment)} is {equipment.status}, not available")

    ts = now or utc_now()
    with atomic(db):
        conditional_update(db, equipment, AVAILABLE, {
            "status": ASSIGNED,
            "assigned_to": person.id,
            "assigned_person_name": person.full_name,
            "assigned_at": ts,
            "updated_at": ts,
        })
        agreement = _create_agreement(db, equipment, person, signature, value, actor, ts)
        record_history(
            db,
            equipment,
            HistoryAction.assigned,
            actor,
            previous_status=AVAILABLE,
            new_status=ASSIGNED,
            new_assignee_id=person.id,
            new_assignee_name=person.full_name,
            notes=notes or "Responsibility agreement signed",
            now=ts,
        )
    logger.info(
        "equipment_assigned",
        equipment_id=str(equipment.id),
        personnel_id=str(person.id),
        agreement_id=str(agreement.id),
    )
    return agreement


def return_equipment_with_check(
    db: Session,
    actor: User,
    equipment_id: uuid.UUID,
    checklist: Union[ConditionChecklist, Dict[str, Any]],
    overall_condition,
    damage_notes: Optional[str] = None,
    repair_required: bool = False,
    ready_for_reassignment: bool = True,
    deduction_required: bool = False,
    deduction_amount: Optional[float] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> EquipmentConditionCheck:
    """
    Take a unit back from its assignee with a condition check.

    ``repair_required`` forces ``ready_for_reassignment`` off; the deduction
    is clamped into [0, EQUIPMENT_VALUE]. The unit ends ``available`` when
    ready, otherwise ``maintenance``.
    """
    ensure_permission(actor, EQUIPMENT_WRITE)
    equipment = get_equipment(db, equipment_id)
    _require_handheld(equipment)
    if equipment.status != ASSIGNED:
        raise InvalidStateError(f"{display_name(equipment)} is {equipment.status}, not assigned")
    items = _parse_checklist(checklist)
    overall = _parse_condition(overall_condition)
    repair, ready = normalise_return_flags(repair_required, ready_for_reassignment)
    deduction = resolve_deduction(deduction_required, deduction_amount)
    new_status = AVAILABLE if ready else MAINTENANCE
    summary = condition_summary(items, overall, damage_notes, repair, deduction)

    previous_id = equipment.assigned_to
    previous_name = equipment.assigned_person_name
    ts = now or utc_now()
    with atomic(db):
        check = _create_condition_check(
            db, equipment, actor, items, overall, damage_notes,
            repair, ready, deduction_required, deduction, ts,
        )
        conditional_update(db, equipment, ASSIGNED, {
            "status": new_status,
            "assigned_to": None,
            "assigned_person_name": None,
            "assigned_at": None,
            "condition_notes": summary,
            "updated_at": ts,
        }, expected_assignee=previous_id, check_assignee=True)
        record_history(
            db,
            equipment,
            HistoryAction.unassigned,
            actor,
            previous_status=ASSIGNED,
            new_status=new_status,
            previous_assignee_id=previous_id,
            previous_assignee_name=previous_name,
            condition_check_id=check.id,
            notes=f"{summary}. {notes}" if notes else summary,
            now=ts,
        )
    logger.info(
        "equipment_returned",
        equipment_id=str(equipment.id),
        personnel_id=str(previous_id),
        new_status=new_status,
        deduction=deduction,
    )
    return check


def reassign_equipment(
    db: Session,
    actor: User,
    equipment_id: uuid.UUID,
    checklist: Union[ConditionChecklist, Dict[str, Any]],
    overall_condition,
    sign_off_signature: str,
    new_personnel_id: uuid.UUID,
    new_personnel_signature: str,
    damage_notes: Optional[str] = None,
    repair_required: bool = False,
    deduction_required: bool = False,
    deduction_amount: Optional[float] = None,
    equipment_value: Optional[float] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> EquipmentAgreement:
    """
    Move an assigned unit straight to another employee.

    The condition check and manager sign-off come first; a unit that needs
    repair stops here with nothing written. Otherwise a new agreement is
    signed and both history rows share one transaction id. The unit never
    passes through ``available``.
    """
    ensure_permission(actor, EQUIPMENT_WRITE)
    value = resolve_equipment_value(equipment_value)
    equipment = get_equipment(db, equipment_id)
    _require_handheld(equipment)
    if equipment.status != ASSIGNED:
        raise InvalidStateError(f"{display_name(equipment)} is {equipment.status}, not assigned")
    if repair_required:
        raise InvalidStateError(f"{display_name(equipment)} needs repair and cannot be reassigned; return it instead")
    items = _parse_checklist(checklist)
    overall = _parse_condition(overall_condition)
    sign_off = _require_signature(sign_off_signature, "Manager sign-off")
    signature = _require_signature(new_personnel_signature, "Employee")
    person = get_personnel(db, new_personnel_id)
    if person.id == equipment.assigned_to:
        raise ValidationError(f"{display_name(equipment)} is already assigned to {person.full_name}")
    deduction = resolve_deduction(deduction_required, deduction_amount)
    summary = condition_summary(items, overall, damage_notes, False, deduction)

    previous_id = equipment.assigned_to
    previous_name = equipment.assigned_person_name
    ts = now or utc_now()
    tx = new_transaction_id()
    with atomic(db):
        check = _create_condition_check(
            db, equipment, actor, items, overall, damage_notes,
            False, True, deduction_required, deduction, ts,
            sign_off_signature=sign_off,
        )
        conditional_update(db, equipment, ASSIGNED, {
            "assigned_to": person.id,
            "assigned_person_name": person.full_name,
            "assigned_at": ts,
            "condition_notes": summary,
            "updated_at": ts,
        }, expected_assignee=previous_id, check_assignee=True)
        agreement = _create_agreement(db, equipment, person, signature, value, actor, ts)
        record_history(
            db,
            equipment,
            HistoryAction.unassigned,
            actor,
            transaction_id=tx,
            previous_status=ASSIGNED,
            new_status=ASSIGNED,
            previous_assignee_id=previous_id,
            previous_assignee_name=previous_name,
            condition_check_id=check.id,
            notes=f"Reassigned to {person.full_name}. {summary}",
            sequence=0,
            now=ts,
        )
        record_history(
            db,
            equipment,
            HistoryAction.assigned,
            actor,
            transaction_id=tx,
            previous_status=ASSIGNED,
            new_status=ASSIGNED,
            previous_assignee_id=previous_id,
            previous_assignee_name=previous_name,
            new_assignee_id=person.id,
            new_assignee_name=person.full_name,
            notes=notes or f"Reassigned from {previous_name}",
            sequence=1,
            now=ts,
        )
    logger.info(
        "equipment_reassigned",
        equipment_id=str(equipment.id),
        from_personnel_id=str(previous_id),
        to_personnel_id=str(person.id),
        transaction_id=str(tx),
    )
    return agreement


def retire_equipment(
    db: Session,
    actor: User,
    equipment_id: uuid.UUID,
    reason: str,
    now: Optional[datetime] = None,
) -> Equipment:
    """Retire a unit of any type. Terminal: a retired unit never changes again."""
    ensure_permission(actor, EQUIPMENT_WRITE)
    text = require_reason(reason)
    equipment = get_equipment(db, equipment_id)
    if equipment.status == RETIRED:
        raise InvalidStateError(f"{display_name(equipment)} is already retired")

    previous_status = equipment.status
    previous_id = equipment.assigned_to
    previous_name = equipment.assigned_person_name
    ts = now or utc_now()
    with atomic(db):
        conditional_update(db, equipment, previous_status, {
            "status": RETIRED,
            "assigned_to": None,
            "assigned_person_name": None,
            "assigned_at": None,
            "retired_at": ts,
            "retired_reason": text,
            "updated_at": ts,
        }, expected_assignee=previous_id, check_assignee=True)
        record_history(
            db,
            equipment,
            HistoryAction.status_change,
            actor,
            previous_status=previous_status,
            new_status=RETIRED,
            previous_assignee_id=previous_id,
            previous_assignee_name=previous_name,
            notes=f"Retired: {text}",
            now=ts,
        )
    logger.info("equipment_retired", equipment_id=str(equipment.id), previous_status=previous_status)
    return equipment


def _snapshot(equipment: Equipment) -> Dict[str, Any]:
    return {
        "equipment_type": equipment.equipment_type,
        "number": equipment.number,
        "serial_number": equipment.serial_number,
        "model": equipment.model,
        "location_id": equipment.location_id,
        "status": equipment.status,
        "assigned_to": equipment.assigned_to,
        "assigned_person_name": equipment.assigned_person_name,
        "retired_reason": equipment.retired_reason,
    }


def delete_equipment(
    db: Session,
    actor: User,
    equipment_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> None:
    """
    Permanently remove a unit with its agreements, condition checks and
    history. Super admin only. The generic audit log keeps a snapshot.
    """
    ensure_super_admin(actor)
    equipment = get_equipment(db, equipment_id)
    snapshot = _snapshot(equipment)

    with atomic(db):
        removed = {
            "history": db.query(EquipmentHistory)
            .filter(EquipmentHistory.equipment_id == equipment.id)
            .delete(synchronize_session=False),
            "condition_checks": db.query(EquipmentConditionCheck)
            .filter(EquipmentConditionCheck.equipment_id == equipment.id)
            .delete(synchronize_session=False),
            "agreements": db.query(EquipmentAgreement)
            .filter(EquipmentAgreement.equipment_id == equipment.id)
            .delete(synchronize_session=False),
        }
        db.expire(equipment)
        create_audit_log(
            db,
            entity_type="equipment",
            entity_id=equipment_id,
            action="DELETE",
            actor=actor,
            context={"snapshot": snapshot, "removed": removed},
            now=now,
        )
        db.delete(equipment)
    logger.warning(
        "equipment_deleted",
        equipment_id=str(equipment_id),
        equipment_type=snapshot["equipment_type"],
        number=snapshot["number"],
        **removed,
    )


def get_agreement(db: Session, agreement_id: uuid.UUID) -> EquipmentAgreement:
    agreement = db.query(EquipmentAgreement).filter(EquipmentAgreement.id == agreement_id).first()
    if not agreement:
        raise NotFoundError("Agreement not found")
    return agreement


def get_agreements(
    db: Session,
    equipment_id: Optional[uuid.UUID] = None,
    personnel_id: Optional[uuid.UUID] = None,
) -> List[EquipmentAgreement]:
    if equipment_id is None and personnel_id is None:
        raise ValidationError("Provide an equipment or personnel id")
    query = db.query(EquipmentAgreement)
    if equipment_id is not None:
        query = query.filter(EquipmentAgreement.equipment_id == equipment_id)
    if personnel_id is not None:
        query = query.filter(EquipmentAgreement.personnel_id == personnel_id)
    return query.order_by(EquipmentAgreement.signed_at.desc()).all()


def get_condition_checks(db: Session, equipment_id: uuid.UUID) -> List[EquipmentConditionCheck]:
    return (
        db.query(EquipmentConditionCheck)
        .filter(EquipmentConditionCheck.equipment_id == equipment_id)
        .order_by(EquipmentConditionCheck.checked_at.desc())
        .all()
    )
