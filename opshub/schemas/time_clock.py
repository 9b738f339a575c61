import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from ..services.corrections import CorrectionStatus, CorrectionType
from ..services.time_entries import EntrySource, EntryType


class ClockActionRequest(BaseModel):
    personnel_id: uuid.UUID
    source: EntrySource = EntrySource.kiosk
    location_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None


class ClockInRequest(ClockActionRequest):
    bypass_schedule_check: bool = False


class TimeEntryResponse(BaseModel):
    id: uuid.UUID
    personnel_id: uuid.UUID
    date: str
    type: EntryType
    timestamp: datetime
    source: EntrySource
    location_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None
    edited_by: Optional[uuid.UUID] = None
    edited_at: Optional[datetime] = None
    original_timestamp: Optional[datetime] = None
    edit_reason: Optional[str] = None
    scheduled_start: Optional[str] = None
    minutes_late: Optional[int] = None
    is_late: bool = False
    personnel_name: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None

    class Config:
        from_attributes = True


class ClockStatusResponse(BaseModel):
    personnel_id: uuid.UUID
    date: str
    status: str
    hours_worked: float
    entries: List[TimeEntryResponse]
    last_entry: Optional[TimeEntryResponse] = None


class ActiveClockResponse(BaseModel):
    personnel_id: uuid.UUID
    personnel_name: str
    position: Optional[str] = None
    department: Optional[str] = None
    clock_in_time: datetime
    status: str  # working|on_break
    hours_worked: float


class DailySummaryResponse(BaseModel):
    personnel_id: uuid.UUID
    personnel_name: str
    department: Optional[str] = None
    position: Optional[str] = None
    clock_in: Optional[datetime] = None
    clock_out: Optional[datetime] = None
    break_minutes: int
    total_hours: float
    is_complete: bool
    entries: List[TimeEntryResponse]


# Manager changes
class MissedEntryCreate(BaseModel):
    personnel_id: uuid.UUID
    date: str
    type: EntryType
    timestamp: datetime
    reason: str
    notes: Optional[str] = None


class TimeEntryEdit(BaseModel):
    timestamp: datetime
    reason: str


class ForceClockOutRequest(BaseModel):
    personnel_id: uuid.UUID
    timestamp: Optional[datetime] = None
    notes: Optional[str] = None


# Corrections
class CorrectionCreate(BaseModel):
    personnel_id: uuid.UUID
    request_type: CorrectionType
    date: str
    reason: str
    time_entry_id: Optional[uuid.UUID] = None
    requested_timestamp: Optional[datetime] = None
    requested_type: Optional[EntryType] = None


class CorrectionReview(BaseModel):
    status: CorrectionStatus
    notes: Optional[str] = None


class CorrectionResponse(BaseModel):
    id: uuid.UUID
    personnel_id: uuid.UUID
    time_entry_id: Optional[uuid.UUID] = None
    date: str
    request_type: CorrectionType
    current_timestamp: Optional[datetime] = None
    requested_timestamp: Optional[datetime] = None
    requested_type: Optional[EntryType] = None
    reason: str
    status: CorrectionStatus
    requested_at: datetime
    reviewed_by: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    personnel_name: Optional[str] = None
    department: Optional[str] = None

    class Config:
        from_attributes = True
