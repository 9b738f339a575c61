"""
Equipment history writer.
Append-only; rows disappear only when their equipment is hard-deleted.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, List
from sqlalchemy.orm import Session

from ..models.models import Equipment, EquipmentHistory, User
from .time_rules import utc_now


class HistoryAction(str, Enum):
    assigned = "assigned"
    unassigned = "unassigned"
    status_change = "status_change"
    condition_check = "condition_check"


def new_transaction_id() -> uuid.UUID:
    return uuid.uuid4()


def record_history(
    db: Session,
    equipment: Equipment,
    action: HistoryAction,
    performed_by: User,
    transaction_id: Optional[uuid.UUID] = None,
    previous_status: Optional[str] = None,
    new_status: Optional[str] = None,
    previous_assignee_id: Optional[uuid.UUID] = None,
    previous_assignee_name: Optional[str] = None,
    new_assignee_id: Optional[uuid.UUID] = None,
    new_assignee_name: Optional[str] = None,
    condition_check_id: Optional[uuid.UUID] = None,
    notes: Optional[str] = None,
    sequence: int = 0,
    now: Optional[datetime] = None,
) -> EquipmentHistory:
    """
    Append a history row to the current transaction.

    Names are snapshots so the record keeps showing who held the unit at the
    time, even after a person is renamed.
    """
    row = EquipmentHistory(
        equipment_id=equipment.id,
        equipment_type=equipment.equipment_type,
        transaction_id=transaction_id or new_transaction_id(),
        action=HistoryAction(action).value,
        previous_status=previous_status,
        new_status=new_status,
        previous_assignee_id=previous_assignee_id,
        previous_assignee_name=previous_assignee_name,
        new_assignee_id=new_assignee_id,
        new_assignee_name=new_assignee_name,
        condition_check_id=condition_check_id,
        performed_by=performed_by.id,
        performed_by_name=performed_by.name,
        notes=notes,
        sequence=sequence,
        created_at=now or utc_now(),
    )
    db.add(row)
    db.flush()
    return row


def get_history(db: Session, equipment_id: uuid.UUID, limit: Optional[int] = None) -> List[EquipmentHistory]:
    """Newest first, including within a transaction (highest sequence first)."""
    query = (
        db.query(EquipmentHistory)
        .filter(EquipmentHistory.equipment_id == equipment_id)
        .order_by(EquipmentHistory.created_at.desc(), EquipmentHistory.sequence.desc())
    )
    if limit:
        query = query.limit(limit)
    return query.all()
