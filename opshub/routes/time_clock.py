import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_current_user, require_permissions
from ..schemas.time_clock import (
    ClockActionRequest,
    ClockInRequest,
    TimeEntryResponse,
    ClockStatusResponse,
    ActiveClockResponse,
    DailySummaryResponse,
    MissedEntryCreate,
    TimeEntryEdit,
    ForceClockOutRequest,
    CorrectionCreate,
    CorrectionReview,
    CorrectionResponse,
)
from ..services import corrections
from ..services import time_entries
from ..services.corrections import CorrectionStatus
from ..services.permissions import TIMECLOCK_READ, TIMECLOCK_WRITE
from ..services.time_rules import local_date_str, utc_now

router = APIRouter(prefix="/time-clock", tags=["time-clock"])


# ---------- CLOCK ACTIONS ----------
@router.post("/clock-in", response_model=TimeEntryResponse, status_code=201)
def clock_in(
    payload: ClockInRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(TIMECLOCK_WRITE))
):
    return time_entries.clock_in(
        db,
        user,
        payload.personnel_id,
        source=payload.source.value,
        location_id=payload.location_id,
        notes=payload.notes,
        bypass_schedule_check=payload.bypass_schedule_check,
    )


@router.post("/clock-out", response_model=TimeEntryResponse, status_code=201)
def clock_out(
    payload: ClockActionRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(TIMECLOCK_WRITE))
):
    return time_entries.clock_out(db, user, payload.personnel_id, source=payload.source.value, notes=payload.notes)


@router.post("/break-start", response_model=TimeEntryResponse, status_code=201)
def break_start(
    payload: ClockActionRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(TIMECLOCK_WRITE))
):
    return time_entries.start_break(db, user, payload.personnel_id, source=payload.source.value, notes=payload.notes)


@router.post("/break-end", response_model=TimeEntryResponse, status_code=201)
def break_end(
    payload: ClockActionRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(TIMECLOCK_WRITE))
):
    return time_entries.end_break(db, user, payload.personnel_id, source=payload.source.value, notes=payload.notes)


# ---------- LIVE VIEWS ----------
@router.get("/status/{personnel_id}", response_model=ClockStatusResponse)
def current_status(
    personnel_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions(TIMECLOCK_READ))
):
    return time_entries.get_current_status(db, personnel_id)


@router.get("/active", response_model=List[ActiveClockResponse])
def active_clocks(
    db: Session = Depends(get_db),
    _=Depends(require_permissions(TIMECLOCK_READ))
):
    """Everyone working or on break right now"""
    return time_entries.get_active_clocks(db)


@router.get("/entries", response_model=List[TimeEntryResponse])
def entries_by_date(
    date: Optional[str] = Query(None, description="YYYY-MM-DD, defaults to today"),
    db: Session = Depends(get_db),
    _=Depends(require_permissions(TIMECLOCK_READ))
):
    return time_entries.get_entries_by_date(db, date or local_date_str(utc_now()))


@router.get("/personnel/{personnel_id}/entries", response_model=List[TimeEntryResponse])
def entries_by_personnel(
    personnel_id: uuid.UUID,
    start_date: str = Query(...),
    end_date: str = Query(...),
    db: Session = Depends(get_db),
    _=Depends(require_permissions(TIMECLOCK_READ))
):
    return time_entries.get_entries_by_personnel(db, personnel_id, start_date, end_date)


@router.get("/daily-summary", response_model=List[DailySummaryResponse])
def daily_summary(
    date: Optional[str] = Query(None, description="YYYY-MM-DD, defaults to today"),
    db: Session = Depends(get_db),
    _=Depends(require_permissions(TIMECLOCK_READ))
):
    return time_entries.get_daily_summary(db, date or local_date_str(utc_now()))


# ---------- MANAGER CHANGES ----------
@router.post("/entries", response_model=TimeEntryResponse, status_code=201)
def add_missed_entry(
    payload: MissedEntryCreate,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(TIMECLOCK_WRITE))
):
    """Add a punch the employee missed"""
    return time_entries.add_missed_entry(
        db,
        user,
        payload.personnel_id,
        payload.date,
        payload.type.value,
        payload.timestamp,
        payload.reason,
        notes=payload.notes,
    )


@router.patch("/entries/{entry_id}", response_model=TimeEntryResponse)
def edit_entry(
    entry_id: uuid.UUID,
    payload: TimeEntryEdit,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(TIMECLOCK_WRITE))
):
    return time_entries.edit_entry(db, user, entry_id, payload.timestamp, payload.reason)


@router.delete("/entries/{entry_id}")
def delete_entry(
    entry_id: uuid.UUID,
    reason: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(TIMECLOCK_WRITE))
):
    time_entries.delete_entry(db, user, entry_id, reason=reason)
    return {"message": "Time entry deleted successfully"}


@router.post("/force-clock-out", response_model=TimeEntryResponse, status_code=201)
def force_clock_out(
    payload: ForceClockOutRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(TIMECLOCK_WRITE))
):
    return time_entries.force_clock_out(db, user, payload.personnel_id, timestamp=payload.timestamp, notes=payload.notes)


# ---------- CORRECTIONS ----------
@router.post("/corrections", response_model=CorrectionResponse, status_code=201)
def request_correction(
    payload: CorrectionCreate,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(TIMECLOCK_READ, TIMECLOCK_WRITE))
):
    return corrections.request_correction(
        db,
        user,
        payload.personnel_id,
        payload.request_type.value,
        payload.date,
        payload.reason,
        time_entry_id=payload.time_entry_id,
        requested_timestamp=payload.requested_timestamp,
        requested_type=payload.requested_type.value if payload.requested_type else None,
    )


@router.get("/corrections", response_model=List[CorrectionResponse])
def list_corrections(
    status: Optional[CorrectionStatus] = Query(None),
    personnel_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions(TIMECLOCK_READ))
):
    return corrections.get_corrections(db, status=status.value if status else None, personnel_id=personnel_id)


@router.get("/corrections/pending", response_model=List[CorrectionResponse])
def pending_corrections(
    db: Session = Depends(get_db),
    _=Depends(require_permissions(TIMECLOCK_WRITE))
):
    """Review queue, oldest first"""
    return corrections.get_pending_corrections(db)


@router.post("/corrections/{correction_id}/review", response_model=CorrectionResponse)
def review_correction(
    correction_id: uuid.UUID,
    payload: CorrectionReview,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(TIMECLOCK_WRITE))
):
    return corrections.review_correction(db, user, correction_id, payload.status.value, notes=payload.notes)
