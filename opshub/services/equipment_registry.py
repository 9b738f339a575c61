"""
Equipment registry: scanners, pickers, vehicles and computers.

Handhelds (scanners, pickers) follow the assignment lifecycle and use
``HandheldStatus``; fleet units (vehicles, computers) use ``FleetStatus``.
``assigned`` and ``retired`` are only reachable through the lifecycle
operations in ``equipment_lifecycle``.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, Type

import structlog
from sqlalchemy.orm import Session

from ..db import atomic
from ..errors import NotFoundError, ValidationError, InvalidStateError
from ..models.models import Equipment, User
from .equipment_history import record_history, HistoryAction
from .permissions import ensure_permission, EQUIPMENT_WRITE
from .personnel import get_location
from .time_rules import utc_now

logger = structlog.get_logger(__name__)


class EquipmentType(str, Enum):
    scanner = "scanner"
    picker = "picker"
    vehicle = "vehicle"
    computer = "computer"


class HandheldStatus(str, Enum):
    available = "available"
    assigned = "assigned"
    maintenance = "maintenance"
    lost = "lost"
    retired = "retired"


class FleetStatus(str, Enum):
    active = "active"
    maintenance = "maintenance"
    out_of_service = "out_of_service"
    in_repair = "in_repair"
    retired = "retired"


HANDHELD_TYPES = frozenset({EquipmentType.scanner, EquipmentType.picker})

TYPE_LABELS = {
    EquipmentType.scanner: "Scanner",
    EquipmentType.picker: "Picker",
    EquipmentType.vehicle: "Vehicle",
    EquipmentType.computer: "Computer",
}

HANDHELD_STATUS_LABELS = {
    HandheldStatus.available: "Available",
    HandheldStatus.assigned: "Assigned",
    HandheldStatus.maintenance: "Maintenance",
    HandheldStatus.lost: "Lost",
    HandheldStatus.retired: "Retired",
}

FLEET_STATUS_LABELS = {
    FleetStatus.active: "Active",
    FleetStatus.maintenance: "Maintenance",
    FleetStatus.out_of_service: "Out of Service",
    FleetStatus.in_repair: "In Repair",
    FleetStatus.retired: "Retired",
}

# Statuses the lifecycle operations own
LIFECYCLE_ONLY = frozenset({"assigned", "retired"})

# Descriptive fields editable through update_equipment
UPDATABLE_FIELDS = (
    "number",
    "serial_number",
    "pin",
    "model",
    "location_id",
    "purchase_date",
    "last_maintenance_date",
    "condition_notes",
    "notes",
)


def parse_type(equipment_type) -> EquipmentType:
    try:
        return EquipmentType(equipment_type)
    except ValueError:
        raise ValidationError(f"Unknown equipment type: {equipment_type}")


def is_handheld(equipment_type) -> bool:
    return parse_type(equipment_type) in HANDHELD_TYPES


def status_enum_for(equipment_type) -> Type[Enum]:
    return HandheldStatus if is_handheld(equipment_type) else FleetStatus


def initial_status(equipment_type) -> str:
    return HandheldStatus.available.value if is_handheld(equipment_type) else FleetStatus.active.value


def status_label(equipment_type, status: str) -> str:
    enum_cls = status_enum_for(equipment_type)
    labels = HANDHELD_STATUS_LABELS if enum_cls is HandheldStatus else FLEET_STATUS_LABELS
    return labels[enum_cls(status)]


def type_label(equipment_type) -> str:
    return TYPE_LABELS[parse_type(equipment_type)]


def display_name(equipment: Equipment) -> str:
    return f"{type_label(equipment.equipment_type)} #{equipment.number}"


def get_equipment(db: Session, equipment_id: uuid.UUID) -> Equipment:
    equipment = db.query(Equipment).filter(Equipment.id == equipment_id).first()
    if not equipment:
        raise NotFoundError("Equipment not found")
    return equipment


def list_equipment(
    db: Session,
    equipment_type: Optional[str] = None,
    location_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
) -> List[Equipment]:
    query = db.query(Equipment)
    if equipment_type:
        query = query.filter(Equipment.equipment_type == parse_type(equipment_type).value)
    if location_id:
        query = query.filter(Equipment.location_id == location_id)
    if status:
        query = query.filter(Equipment.status == status)
    return query.order_by(Equipment.equipment_type.asc(), Equipment.number.asc()).all()


def get_personnel_equipment(db: Session, personnel_id: uuid.UUID) -> List[Equipment]:
    """Units currently assigned to a person."""
    return (
        db.query(Equipment)
        .filter(Equipment.assigned_to == personnel_id, Equipment.status == HandheldStatus.assigned.value)
        .order_by(Equipment.equipment_type.asc(), Equipment.number.asc())
        .all()
    )


def _ensure_unique_number(
    db: Session,
    equipment_type: str,
    number: str,
    location_id: Optional[uuid.UUID],
    exclude_id: Optional[uuid.UUID] = None,
) -> None:
    query = db.query(Equipment).filter(
        Equipment.equipment_type == equipment_type,
        Equipment.number == number,
    )
    if location_id is None:
        query = query.filter(Equipment.location_id.is_(None))
    else:
        query = query.filter(Equipment.location_id == location_id)
    if exclude_id is not None:
        query = query.filter(Equipment.id != exclude_id)
    if query.first():
        raise ValidationError(f"{TYPE_LABELS[EquipmentType(equipment_type)]} #{number} already exists at this location")


def _clean_number(number) -> str:
    text = (number or "").strip()
    if not text:
        raise ValidationError("Equipment number is required")
    return text


def create_equipment(
    db: Session,
    actor: User,
    equipment_type,
    fields: Dict[str, Any],
    now: Optional[datetime] = None,
) -> Equipment:
    """Register a unit; starts ``available`` (handheld) or ``active`` (fleet)."""
    ensure_permission(actor, EQUIPMENT_WRITE)
    etype = parse_type(equipment_type)
    number = _clean_number(fields.get("number"))
    location_id = fields.get("location_id")
    if location_id:
        get_location(db, location_id)
    _ensure_unique_number(db, etype.value, number, location_id)

    with atomic(db):
        equipment = Equipment(
            equipment_type=etype.value,
            number=number,
            serial_number=fields.get("serial_number"),
            pin=fields.get("pin"),
            model=fields.get("model"),
            location_id=location_id,
            status=initial_status(etype),
            purchase_date=fields.get("purchase_date"),
            last_maintenance_date=fields.get("last_maintenance_date"),
            condition_notes=fields.get("condition_notes"),
            notes=fields.get("notes"),
            created_at=now or utc_now(),
            created_by=actor.id,
        )
        db.add(equipment)
    db.refresh(equipment)
    logger.info("equipment_created", equipment_id=str(equipment.id), equipment_type=etype.value, number=number)
    return equipment


def create_scanner(db: Session, actor: User, fields: Dict[str, Any]) -> Equipment:
    return create_equipment(db, actor, EquipmentType.scanner, fields)


def create_picker(db: Session, actor: User, fields: Dict[str, Any]) -> Equipment:
    return create_equipment(db, actor, EquipmentType.picker, fields)


def create_vehicle(db: Session, actor: User, fields: Dict[str, Any]) -> Equipment:
    return create_equipment(db, actor, EquipmentType.vehicle, fields)


def create_computer(db: Session, actor: User, fields: Dict[str, Any]) -> Equipment:
    return create_equipment(db, actor, EquipmentType.computer, fields)


def update_equipment(
    db: Session,
    actor: User,
    equipment_id: uuid.UUID,
    fields: Dict[str, Any],
    now: Optional[datetime] = None,
) -> Equipment:
    """Edit descriptive fields. Status and assignee go through lifecycle operations."""
    ensure_permission(actor, EQUIPMENT_WRITE)
    blocked = set(fields) - set(UPDATABLE_FIELDS)
    if blocked:
        raise ValidationError(f"Fields not editable here: {', '.join(sorted(blocked))}")
    equipment = get_equipment(db, equipment_id)

    if "number" in fields:
        fields = dict(fields, number=_clean_number(fields["number"]))
    if fields.get("location_id"):
        get_location(db, fields["location_id"])
    if "number" in fields or "location_id" in fields:
        _ensure_unique_number(
            db,
            equipment.equipment_type,
            fields.get("number", equipment.number),
            fields.get("location_id", equipment.location_id),
            exclude_id=equipment.id,
        )

    with atomic(db):
        for key, value in fields.items():
            setattr(equipment, key, value)
        equipment.updated_at = now or utc_now()
    db.refresh(equipment)
    return equipment


def conditional_update(
    db: Session,
    equipment: Equipment,
    expected_status: str,
    values: Dict[str, Any],
    expected_assignee: Optional[uuid.UUID] = None,
    check_assignee: bool = False,
) -> None:
    """
    Apply ``values`` only if the unit still has ``expected_status`` (and
    assignee). A concurrent transition makes this raise instead of overwrite.
    """
    query = db.query(Equipment).filter(
        Equipment.id == equipment.id,
        Equipment.status == expected_status,
    )
    if check_assignee:
        if expected_assignee is None:
            query = query.filter(Equipment.assigned_to.is_(None))
        else:
            query = query.filter(Equipment.assigned_to == expected_assignee)
    updated = query.update(values, synchronize_session=False)
    if updated != 1:
        raise InvalidStateError(f"{display_name(equipment)} changed while this request was in progress")
    db.refresh(equipment)


def change_status(
    db: Session,
    actor: User,
    equipment_id: uuid.UUID,
    new_status: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Equipment:
    """
    Manual status change outside the assignment lifecycle (maintenance, lost,
    out_of_service, ...).
    """
    ensure_permission(actor, EQUIPMENT_WRITE)
    equipment = get_equipment(db, equipment_id)
    enum_cls = status_enum_for(equipment.equipment_type)
    try:
        target = enum_cls(new_status).value
    except ValueError:
        raise ValidationError(f"Invalid status for {type_label(equipment.equipment_type).lower()}: {new_status}")

    current = equipment.status
    if current == "retired":
        raise InvalidStateError(f"{display_name(equipment)} is retired")
    if target in LIFECYCLE_ONLY:
        raise InvalidStateError(f"Status '{target}' can only be set by assign or retire")
    if current == HandheldStatus.assigned.value:
        raise InvalidStateError(f"{display_name(equipment)} must be returned before changing its status")
    if target == current:
        raise InvalidStateError(f"{display_name(equipment)} is already {target}")

    ts = now or utc_now()
    with atomic(db):
        conditional_update(db, equipment, current, {"status": target, "updated_at": ts})
        record_history(
            db,
            equipment,
            HistoryAction.status_change,
            actor,
            previous_status=current,
            new_status=target,
            notes=notes,
            now=ts,
        )
    logger.info(
        "equipment_status_changed",
        equipment_id=str(equipment.id),
        previous_status=current,
        new_status=target,
    )
    return equipment
