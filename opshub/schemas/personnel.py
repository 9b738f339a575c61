import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class PersonnelCreate(BaseModel):
    first_name: str
    last_name: str
    email: Optional[str] = None
    position: Optional[str] = None
    department: Optional[str] = None
    location_id: Optional[uuid.UUID] = None
    status: str = "active"


class PersonnelResponse(PersonnelCreate):
    id: uuid.UUID
    full_name: str
    created_at: datetime

    class Config:
        from_attributes = True


class LocationCreate(BaseModel):
    name: str
    address: Optional[str] = None


class LocationResponse(LocationCreate):
    id: uuid.UUID
    is_active: bool

    class Config:
        from_attributes = True


class ShiftCreate(BaseModel):
    date: str
    start_time: str
    end_time: Optional[str] = None
    name: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    notes: Optional[str] = None
    personnel_ids: List[uuid.UUID] = []


class ShiftResponse(BaseModel):
    id: uuid.UUID
    date: str
    start_time: str
    end_time: Optional[str] = None
    name: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    notes: Optional[str] = None
    personnel: List[PersonnelResponse] = []

    class Config:
        from_attributes = True
