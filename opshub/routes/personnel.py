import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_current_user, require_permissions
from ..schemas.personnel import (
    PersonnelCreate,
    PersonnelResponse,
    LocationCreate,
    LocationResponse,
    ShiftCreate,
    ShiftResponse,
)
from ..services import personnel as personnel_service
from ..services.permissions import ATTENDANCE_READ, ATTENDANCE_WRITE, EQUIPMENT_READ, TIMECLOCK_READ

router = APIRouter(prefix="/personnel", tags=["personnel"])

# Anyone who can see equipment, clocks or attendance can look people up
_READERS = (ATTENDANCE_READ, EQUIPMENT_READ, TIMECLOCK_READ)


@router.get("", response_model=List[PersonnelResponse])
def list_personnel(
    location_id: Optional[uuid.UUID] = Query(None),
    department: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions(*_READERS))
):
    return personnel_service.list_personnel(db, location_id=location_id, department=department, status=status)


@router.post("", response_model=PersonnelResponse, status_code=201)
def create_personnel(
    payload: PersonnelCreate,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(ATTENDANCE_WRITE))
):
    return personnel_service.create_personnel(db, user, payload.model_dump())


@router.get("/locations", response_model=List[LocationResponse])
def list_locations(
    db: Session = Depends(get_db),
    _=Depends(require_permissions(*_READERS))
):
    return personnel_service.list_locations(db)


@router.post("/locations", response_model=LocationResponse, status_code=201)
def create_location(
    payload: LocationCreate,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(ATTENDANCE_WRITE))
):
    return personnel_service.create_location(db, user, payload.name, payload.address)


@router.get("/shifts", response_model=List[ShiftResponse])
def list_shifts(
    date: str = Query(..., description="YYYY-MM-DD"),
    db: Session = Depends(get_db),
    _=Depends(require_permissions(*_READERS))
):
    return personnel_service.list_shifts(db, date)


@router.post("/shifts", response_model=ShiftResponse, status_code=201)
def create_shift(
    payload: ShiftCreate,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(ATTENDANCE_WRITE))
):
    return personnel_service.create_shift(db, user, payload.model_dump())
