import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_current_user, require_permissions
from ..schemas.attendance import (
    LiveAttendanceResponse,
    AttendanceUpsert,
    AttendanceResponse,
    AttendanceIssueResponse,
    LatePatternResponse,
    WriteUpCreate,
    FollowUpNotes,
    WriteUpResponse,
)
from ..services import attendance
from ..services import write_ups
from ..services.permissions import ATTENDANCE_READ, ATTENDANCE_WRITE
from ..services.write_ups import WriteUpSeverity

router = APIRouter(prefix="/attendance", tags=["attendance"])


# ---------- LIVE ----------
@router.get("/today-live", response_model=List[LiveAttendanceResponse])
def today_live(
    date: Optional[str] = Query(None, description="YYYY-MM-DD, defaults to today"),
    db: Session = Depends(get_db),
    _=Depends(require_permissions(ATTENDANCE_READ))
):
    """Arrival board for everyone scheduled today"""
    return attendance.get_today_live(db, date=date)


@router.post("/no-shows", response_model=List[AttendanceResponse])
def mark_no_shows(
    date: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(ATTENDANCE_WRITE))
):
    """Record no-call/no-shows whose cutoff has passed"""
    return attendance.mark_no_shows(db, user, date=date)


# ---------- RECORDS ----------
@router.put("", response_model=AttendanceResponse)
def upsert_attendance(
    payload: AttendanceUpsert,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(ATTENDANCE_WRITE))
):
    data = payload.model_dump()
    return attendance.upsert_attendance(
        db,
        user,
        data.pop("personnel_id"),
        data.pop("date"),
        data.pop("status").value,
        **data,
    )


@router.get("/summary/{personnel_id}")
def attendance_summary(
    personnel_id: uuid.UUID,
    start_date: str = Query(...),
    end_date: str = Query(...),
    db: Session = Depends(get_db),
    _=Depends(require_permissions(ATTENDANCE_READ))
):
    """Counts per attendance status plus total hours"""
    return attendance.get_attendance_summary(db, personnel_id, start_date, end_date)


@router.get("/late-pattern/{personnel_id}", response_model=LatePatternResponse)
def late_pattern(
    personnel_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions(ATTENDANCE_READ))
):
    return attendance.check_late_pattern(db, personnel_id)


@router.get("/issues", response_model=List[AttendanceIssueResponse])
def attendance_issues(
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions(ATTENDANCE_READ))
):
    """Late and no-call/no-show records with the recommended write-up"""
    return attendance.get_issues(db, start_date=start_date, end_date=end_date)


# ---------- WRITE-UPS ----------
@router.post("/{attendance_id}/write-up", response_model=WriteUpResponse, status_code=201)
def create_write_up(
    attendance_id: uuid.UUID,
    payload: Optional[WriteUpCreate] = None,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(ATTENDANCE_WRITE))
):
    return write_ups.create_write_up_from_attendance(
        db,
        user,
        attendance_id,
        action_taken=payload.action_taken if payload else None,
    )


@router.get("/write-ups", response_model=List[WriteUpResponse])
def list_write_ups(
    personnel_id: Optional[uuid.UUID] = Query(None),
    severity: Optional[WriteUpSeverity] = Query(None),
    include_archived: bool = Query(False),
    db: Session = Depends(get_db),
    _=Depends(require_permissions(ATTENDANCE_READ))
):
    return write_ups.list_write_ups(
        db,
        personnel_id=personnel_id,
        severity=severity.value if severity else None,
        include_archived=include_archived,
    )


@router.post("/write-ups/{write_up_id}/acknowledge", response_model=WriteUpResponse)
def acknowledge_write_up(
    write_up_id: uuid.UUID,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(ATTENDANCE_WRITE))
):
    return write_ups.acknowledge_write_up(db, user, write_up_id)


@router.post("/write-ups/{write_up_id}/follow-up", response_model=WriteUpResponse)
def add_follow_up(
    write_up_id: uuid.UUID,
    payload: FollowUpNotes,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
    _=Depends(require_permissions(ATTENDANCE_WRITE))
):
    return write_ups.add_follow_up_notes(db, user, write_up_id, payload.notes)
