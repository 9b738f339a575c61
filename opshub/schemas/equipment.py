import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator

from ..services.agreements import ConditionChecklist, OverallCondition
from ..services.equipment_registry import EquipmentType


# Equipment Schemas
class EquipmentBase(BaseModel):
    number: str
    serial_number: Optional[str] = None
    pin: Optional[str] = None
    model: Optional[str] = None
    location_id: Optional[uuid.UUID] = None
    purchase_date: Optional[str] = None
    last_maintenance_date: Optional[str] = None
    condition_notes: Optional[str] = None
    notes: Optional[str] = None


class EquipmentCreate(EquipmentBase):
    pass


class EquipmentUpdate(BaseModel):
    number: Optional[str] = None
    serial_number: Optional[str] = None
    pin: Optional[str] = None
    model: Optional[str] = None
    location_id: Optional[uuid.UUID] = None
    purchase_date: Optional[str] = None
    last_maintenance_date: Optional[str] = None
    condition_notes: Optional[str] = None
    notes: Optional[str] = None


class EquipmentResponse(EquipmentBase):
    id: uuid.UUID
    equipment_type: EquipmentType
    status: str
    assigned_to: Optional[uuid.UUID] = None
    assigned_person_name: Optional[str] = None
    assigned_at: Optional[datetime] = None
    retired_at: Optional[datetime] = None
    retired_reason: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Lifecycle requests
class StatusChangeRequest(BaseModel):
    status: str
    notes: Optional[str] = None


class AssignRequest(BaseModel):
    personnel_id: uuid.UUID
    signature_data: str
    equipment_value: Optional[float] = None
    notes: Optional[str] = None


class ReturnRequest(BaseModel):
    checklist: ConditionChecklist
    overall_condition: OverallCondition
    damage_notes: Optional[str] = None
    repair_required: bool = False
    ready_for_reassignment: bool = True
    deduction_required: bool = False
    deduction_amount: Optional[float] = None
    notes: Optional[str] = None


class ReassignRequest(BaseModel):
    checklist: ConditionChecklist
    overall_condition: OverallCondition
    sign_off_signature: str
    new_personnel_id: uuid.UUID
    new_personnel_signature: str
    damage_notes: Optional[str] = None
    repair_required: bool = False
    deduction_required: bool = False
    deduction_amount: Optional[float] = None
    equipment_value: Optional[float] = None
    notes: Optional[str] = None


class RetireRequest(BaseModel):
    reason: str

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("A reason is required")
        return v.strip()


# Record responses
class AgreementResponse(BaseModel):
    id: uuid.UUID
    equipment_id: uuid.UUID
    equipment_type: str
    equipment_number: str
    serial_number: Optional[str] = None
    personnel_id: uuid.UUID
    personnel_name: str
    equipment_value: float
    agreement_text: str
    signed_at: datetime
    witnessed_by: Optional[uuid.UUID] = None
    witnessed_by_name: str

    class Config:
        from_attributes = True


class ConditionCheckResponse(BaseModel):
    id: uuid.UUID
    equipment_id: uuid.UUID
    equipment_type: str
    returned_by: Optional[uuid.UUID] = None
    returned_by_name: Optional[str] = None
    checked_by: Optional[uuid.UUID] = None
    checked_by_name: str
    checklist: ConditionChecklist
    overall_condition: OverallCondition
    damage_notes: Optional[str] = None
    repair_required: bool
    ready_for_reassignment: bool
    deduction_required: bool
    deduction_amount: Optional[float] = None
    checked_at: datetime

    class Config:
        from_attributes = True


class HistoryResponse(BaseModel):
    id: uuid.UUID
    equipment_id: uuid.UUID
    transaction_id: uuid.UUID
    action: str
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    previous_assignee_id: Optional[uuid.UUID] = None
    previous_assignee_name: Optional[str] = None
    new_assignee_id: Optional[uuid.UUID] = None
    new_assignee_name: Optional[str] = None
    condition_check_id: Optional[uuid.UUID] = None
    performed_by: Optional[uuid.UUID] = None
    performed_by_name: str
    notes: Optional[str] = None
    created_at: datetime
    sequence: int

    class Config:
        from_attributes = True


class EquipmentDetailResponse(EquipmentResponse):
    type_label: str
    status_label: str
    display_name: str
    agreements: List[AgreementResponse] = []
    condition_checks: List[ConditionCheckResponse] = []
