import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_current_user, require_permissions
from ..schemas.equipment import (
    EquipmentCreate,
    EquipmentUpdate,
    EquipmentResponse,
    EquipmentDetailResponse,
    StatusChangeRequest,
    AssignRequest,
    ReturnRequest,
    ReassignRequest,
    RetireRequest,
    AgreementResponse,
    ConditionCheckResponse,
    HistoryResponse,
)
from ..services import equipment_lifecycle as lifecycle
from ..services import equipment_registry as registry
from ..services.agreement_pdf import render_agreement_pdf
from ..services.equipment_history import get_history
from ..services.equipment_registry import EquipmentType
from ..services.permissions import EQUIPMENT_READ, EQUIPMENT_WRITE

router = APIRouter(prefix="/equipment", tags=["equipment"])


def _detail(equipment) -> EquipmentDetailResponse:
    base = EquipmentResponse.model_validate(equipment).model_dump()
    return EquipmentDetailResponse(
        **base,
        type_label=registry.type_label(equipment.equipment_type),
        status_label=registry.status_label(equipment.equipment_type, equipment.status),
        display_name=registry.display_name(equipment),
        agreements=[AgreementResponse.model_validate(a) for a in equipment.agreements],
        condition_checks=[ConditionCheckResponse.model_validate(c) for c in equipment.condition_checks],
    )


# ---------- REGISTRY ----------
@router.get("", response_model=List[EquipmentResponse])
def list_equipment(
    equipment_type: Optional[EquipmentType] = Query(None),
    location_id: Optional[uuid.UUID] = Query(None),
    status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions(EQUIPMENT_READ))
):
    """List equipment with filters"""
    return registry.list_equipment(
        db,
        equipment_type=equipment_type.value if equipment_type else None,
        location_id=location_id,
        status=status,
    )


@router.get("/personnel/{personnel_id}", response_model=List[EquipmentResponse])
def get_personnel_equipment(
    personnel_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions(EQUIPMENT_READ))
):
    """Equipment currently assigned to a person"""
    return registry.get_personnel_equipment(db, personnel_id)


@router.get("/agreements/{agreement_id}/pdf")
def download_agreement_pdf(
    agreement_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions(EQUIPMENT_READ))
):
    """Signed agreement as a PDF"""
    agreement = lifecycle.get_agreement(db, agreement_id)
    filename = f"agreement-{agreement.equipment_type}-{agreement.equipment_number}.pdf"
    return Response(
        content=render_agreement_pdf(agreement),
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )


@router.post("/{equipment_type}", response_model=EquipmentResponse, status_code=201)
def create_equipment(
    equipment_type: EquipmentType,
    payload: EquipmentCreate,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(EQUIPMENT_WRITE))
):
    """Register a scanner, picker, vehicle or computer"""
    return registry.create_equipment(db, user, equipment_type, payload.model_dump())


@router.get("/{equipment_id}", response_model=EquipmentDetailResponse)
def get_equipment(
    equipment_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions(EQUIPMENT_READ))
):
    """Equipment detail with agreements and condition checks"""
    return _detail(registry.get_equipment(db, equipment_id))


@router.patch("/{equipment_id}", response_model=EquipmentResponse)
def update_equipment(
    equipment_id: uuid.UUID,
    payload: EquipmentUpdate,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(EQUIPMENT_WRITE))
):
    """Edit descriptive fields"""
    return registry.update_equipment(db, user, equipment_id, payload.model_dump(exclude_unset=True))


@router.delete("/{equipment_id}")
def delete_equipment(
    equipment_id: uuid.UUID,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(EQUIPMENT_WRITE))
):
    """Hard delete with all agreements, checks and history (super admin only)"""
    lifecycle.delete_equipment(db, user, equipment_id)
    return {"message": "Equipment deleted successfully"}


# ---------- LIFECYCLE ----------
@router.post("/{equipment_id}/status", response_model=EquipmentResponse)
def change_status(
    equipment_id: uuid.UUID,
    payload: StatusChangeRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(EQUIPMENT_WRITE))
):
    """Manual status change (maintenance, lost, out of service, ...)"""
    return registry.change_status(db, user, equipment_id, payload.status, payload.notes)


@router.post("/{equipment_id}/assign", response_model=AgreementResponse, status_code=201)
def assign_equipment(
    equipment_id: uuid.UUID,
    payload: AssignRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(EQUIPMENT_WRITE))
):
    """Assign an available handheld with a signed agreement"""
    return lifecycle.assign_equipment_with_agreement(
        db,
        user,
        equipment_id,
        payload.personnel_id,
        payload.signature_data,
        equipment_value=payload.equipment_value,
        notes=payload.notes,
    )


@router.post("/{equipment_id}/return", response_model=ConditionCheckResponse, status_code=201)
def return_equipment(
    equipment_id: uuid.UUID,
    payload: ReturnRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(EQUIPMENT_WRITE))
):
    """Return an assigned handheld with a condition check"""
    return lifecycle.return_equipment_with_check(
        db,
        user,
        equipment_id,
        payload.checklist,
        payload.overall_condition,
        damage_notes=payload.damage_notes,
        repair_required=payload.repair_required,
        ready_for_reassignment=payload.ready_for_reassignment,
        deduction_required=payload.deduction_required,
        deduction_amount=payload.deduction_amount,
        notes=payload.notes,
    )


@router.post("/{equipment_id}/reassign", response_model=AgreementResponse, status_code=201)
def reassign_equipment(
    equipment_id: uuid.UUID,
    payload: ReassignRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(EQUIPMENT_WRITE))
):
    """Hand an assigned handheld straight to another person"""
    return lifecycle.reassign_equipment(
        db,
        user,
        equipment_id,
        payload.checklist,
        payload.overall_condition,
        payload.sign_off_signature,
        payload.new_personnel_id,
        payload.new_personnel_signature,
        damage_notes=payload.damage_notes,
        repair_required=payload.repair_required,
        deduction_required=payload.deduction_required,
        deduction_amount=payload.deduction_amount,
        equipment_value=payload.equipment_value,
        notes=payload.notes,
    )


@router.post("/{equipment_id}/retire", response_model=EquipmentResponse)
def retire_equipment(
    equipment_id: uuid.UUID,
    payload: RetireRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(EQUIPMENT_WRITE))
):
    """Take a unit out of service for good"""
    return lifecycle.retire_equipment(db, user, equipment_id, payload.reason)


# ---------- RECORDS ----------
@router.get("/{equipment_id}/history", response_model=List[HistoryResponse])
def equipment_history(
    equipment_id: uuid.UUID,
    limit: Optional[int] = Query(None, ge=1, le=500),
    db: Session = Depends(get_db),
    _=Depends(require_permissions(EQUIPMENT_READ))
):
    """History, newest first"""
    registry.get_equipment(db, equipment_id)
    return get_history(db, equipment_id, limit=limit)


@router.get("/{equipment_id}/agreements", response_model=List[AgreementResponse])
def equipment_agreements(
    equipment_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions(EQUIPMENT_READ))
):
    registry.get_equipment(db, equipment_id)
    return lifecycle.get_agreements(db, equipment_id=equipment_id)


@router.get("/{equipment_id}/condition-checks", response_model=List[ConditionCheckResponse])
def equipment_condition_checks(
    equipment_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions(EQUIPMENT_READ))
):
    registry.get_equipment(db, equipment_id)
    return lifecycle.get_condition_checks(db, equipment_id)
