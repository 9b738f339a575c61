"""
Personnel, locations and shifts: the records the equipment and attendance
services resolve people and schedules against.
"""
import uuid
from typing import Optional, List, Dict, Any
from sqlalchemy.orm import Session

from ..db import atomic
from ..errors import NotFoundError, ValidationError
from ..models.models import Personnel, Location, Shift, User
from .permissions import ensure_permission, ATTENDANCE_WRITE
from .time_rules import parse_date, parse_hhmm, utc_now


PERSONNEL_STATUSES = ("active", "on_leave", "terminated")


def get_personnel(db: Session, personnel_id: uuid.UUID) -> Personnel:
    person = db.query(Personnel).filter(Personnel.id == personnel_id).first()
    if not person:
        raise NotFoundError("Personnel not found")
    return person


def get_location(db: Session, location_id: uuid.UUID) -> Location:
    location = db.query(Location).filter(Location.id == location_id).first()
    if not location:
        raise NotFoundError("Location not found")
    return location


def create_personnel(db: Session, actor: User, fields: Dict[str, Any]) -> Personnel:
    ensure_permission(actor, ATTENDANCE_WRITE)
    first = (fields.get("first_name") or "").strip()
    last = (fields.get("last_name") or "").strip()
    if not first or not last:
        raise ValidationError("First and last name are required")
    status = fields.get("status") or "active"
    if status not in PERSONNEL_STATUSES:
        raise ValidationError(f"Invalid personnel status: {status}")
    if fields.get("location_id"):
        get_location(db, fields["location_id"])
    with atomic(db):
        person = Personnel(
            first_name=first,
            last_name=last,
            email=fields.get("email"),
            position=fields.get("position"),
            department=fields.get("department"),
            location_id=fields.get("location_id"),
            status=status,
            created_at=utc_now(),
        )
        db.add(person)
    db.refresh(person)
    return person


def list_personnel(
    db: Session,
    status: Optional[str] = None,
    department: Optional[str] = None,
    location_id: Optional[uuid.UUID] = None,
) -> List[Personnel]:
    query = db.query(Personnel)
    if status:
        query = query.filter(Personnel.status == status)
    if department:
        query = query.filter(Personnel.department == department)
    if location_id:
        query = query.filter(Personnel.location_id == location_id)
    return query.order_by(Personnel.last_name.asc(), Personnel.first_name.asc()).all()


def create_location(db: Session, actor: User, name: str, address: Optional[str] = None) -> Location:
    ensure_permission(actor, ATTENDANCE_WRITE)
    name = (name or "").strip()
    if not name:
        raise ValidationError("Location name is required")
    with atomic(db):
        location = Location(name=name, address=address, created_at=utc_now())
        db.add(location)
    db.refresh(location)
    return location


def list_locations(db: Session, active_only: bool = True) -> List[Location]:
    query = db.query(Location)
    if active_only:
        query = query.filter(Location.is_active == True)  # noqa: E712
    return query.order_by(Location.name.asc()).all()


def create_shift(db: Session, actor: User, fields: Dict[str, Any]) -> Shift:
    ensure_permission(actor, ATTENDANCE_WRITE)
    parse_date(fields.get("date"))
    parse_hhmm(fields.get("start_time"))
    if fields.get("end_time"):
        parse_hhmm(fields["end_time"])
    people = [get_personnel(db, pid) for pid in fields.get("personnel_ids") or []]
    with atomic(db):
        shift = Shift(
            date=fields["date"],
            name=fields.get("name"),
            start_time=fields["start_time"],
            end_time=fields.get("end_time"),
            department=fields.get("department"),
            position=fields.get("position"),
            notes=fields.get("notes"),
            created_by=actor.id,
            created_at=utc_now(),
        )
        shift.personnel = people
        db.add(shift)
    db.refresh(shift)
    return shift


def list_shifts(db: Session, date: str) -> List[Shift]:
    parse_date(date)
    return db.query(Shift).filter(Shift.date == date).order_by(Shift.start_time.asc()).all()


def scheduled_shift_for(db: Session, personnel_id: uuid.UUID, date: str) -> Optional[Shift]:
    """Earliest shift on ``date`` the person is assigned to, if any."""
    return (
        db.query(Shift)
        .filter(Shift.date == date, Shift.personnel.any(Personnel.id == personnel_id))
        .order_by(Shift.start_time.asc())
        .first()
    )
