import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from ..services.attendance import AttendanceStatus, LiveStatus
from ..services.write_ups import WriteUpCategory, WriteUpSeverity


class LiveAttendanceResponse(BaseModel):
    personnel_id: uuid.UUID
    personnel_name: str
    department: Optional[str] = None
    position: Optional[str] = None
    shift_id: uuid.UUID
    shift_name: Optional[str] = None
    scheduled_start: str
    scheduled_end: Optional[str] = None
    actual_start: Optional[datetime] = None
    status: LiveStatus
    status_label: str
    minutes_late: int
    clock_status: str


class AttendanceUpsert(BaseModel):
    personnel_id: uuid.UUID
    date: str
    status: AttendanceStatus
    scheduled_start: Optional[str] = None
    scheduled_end: Optional[str] = None
    actual_start: Optional[str] = None
    actual_end: Optional[str] = None
    minutes_late: Optional[int] = None
    hours_worked: Optional[float] = None
    notes: Optional[str] = None


class AttendanceResponse(BaseModel):
    id: uuid.UUID
    personnel_id: uuid.UUID
    date: str
    status: AttendanceStatus
    scheduled_start: Optional[str] = None
    scheduled_end: Optional[str] = None
    actual_start: Optional[str] = None
    actual_end: Optional[str] = None
    minutes_late: Optional[int] = None
    hours_worked: Optional[float] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class AttendanceIssueResponse(BaseModel):
    attendance_id: uuid.UUID
    personnel_id: uuid.UUID
    personnel_name: str
    department: Optional[str] = None
    date: str
    status: AttendanceStatus
    scheduled_start: Optional[str] = None
    actual_start: Optional[str] = None
    minutes_late: Optional[int] = None
    has_linked_write_up: bool
    write_ups_in_window: int
    recommended_severity: WriteUpSeverity
    recommended_severity_label: str


class LatePatternResponse(BaseModel):
    personnel_id: uuid.UUID
    since: str
    late_count: int
    has_pattern: bool


class WriteUpCreate(BaseModel):
    action_taken: Optional[str] = None


class FollowUpNotes(BaseModel):
    notes: str


class WriteUpResponse(BaseModel):
    id: uuid.UUID
    personnel_id: uuid.UUID
    attendance_id: Optional[uuid.UUID] = None
    date: str
    category: WriteUpCategory
    severity: WriteUpSeverity
    description: str
    action_taken: Optional[str] = None
    follow_up_required: bool = False
    follow_up_date: Optional[str] = None
    follow_up_notes: Optional[str] = None
    issued_by: Optional[uuid.UUID] = None
    issued_by_name: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    is_archived: bool = False
    created_at: datetime
    personnel_name: Optional[str] = None
    severity_label: Optional[str] = None
    is_expired: Optional[bool] = None

    class Config:
        from_attributes = True
