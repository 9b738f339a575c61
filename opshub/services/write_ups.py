"""
Write-up escalation.

The next attendance write-up's severity is set by how many attendance
write-ups the employee received in the trailing lookback window, counted
back from now.
"""
import calendar
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..db import atomic
from ..errors import NotFoundError, ValidationError, InvalidStateError, AlreadyLinkedError
from ..models.models import Attendance, WriteUp, Personnel, User
from .audit import create_audit_log
from .permissions import ensure_permission, ATTENDANCE_WRITE
from .time_rules import ensure_utc, local_date_str, parse_date, utc_now

logger = structlog.get_logger(__name__)


class WriteUpCategory(str, Enum):
    attendance = "attendance"
    behavior = "behavior"
    safety = "safety"
    performance = "performance"
    policy_violation = "policy_violation"


class WriteUpSeverity(str, Enum):
    """Ordered from mildest to most serious."""
    verbal_warning = "verbal_warning"
    written_warning = "written_warning"
    final_warning = "final_warning"
    suspension = "suspension"

    @property
    def rank(self) -> int:
        return SEVERITY_LADDER.index(self)

    def __lt__(self, other):
        return self.rank < WriteUpSeverity(other).rank

    def __le__(self, other):
        return self.rank <= WriteUpSeverity(other).rank

    def __gt__(self, other):
        return self.rank > WriteUpSeverity(other).rank

    def __ge__(self, other):
        return self.rank >= WriteUpSeverity(other).rank


SEVERITY_LADDER = (
    WriteUpSeverity.verbal_warning,
    WriteUpSeverity.written_warning,
    WriteUpSeverity.final_warning,
    WriteUpSeverity.suspension,
)

SEVERITY_LABELS = {
    WriteUpSeverity.verbal_warning: "Verbal Warning",
    WriteUpSeverity.written_warning: "Written Warning",
    WriteUpSeverity.final_warning: "Final Warning",
    WriteUpSeverity.suspension: "Suspension",
}

# Attendance outcomes that can be written up
WRITABLE_ATTENDANCE = ("late", "no_call_no_show")


def severity_for_count(count: int) -> WriteUpSeverity:
    """0 prior write-ups -> verbal, 1 -> written, 2 -> final, 3 or more -> suspension."""
    return SEVERITY_LADDER[min(max(int(count), 0), len(SEVERITY_LADDER) - 1)]


def subtract_months(dt: datetime, months: int) -> datetime:
    """Same wall time ``months`` calendar months earlier, clamped to month end."""
    month_index = dt.year * 12 + (dt.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def lookback_start(now: Optional[datetime] = None) -> datetime:
    return subtract_months(ensure_utc(now) if now else utc_now(), settings.write_up_lookback_months)


def count_recent_attendance_write_ups(db: Session, personnel_id: uuid.UUID, now: Optional[datetime] = None) -> int:
    """Attendance write-ups created in [now - lookback, now]."""
    ts = ensure_utc(now) if now else utc_now()
    return (
        db.query(WriteUp)
        .filter(
            WriteUp.personnel_id == personnel_id,
            WriteUp.category == WriteUpCategory.attendance.value,
            WriteUp.created_at >= lookback_start(ts),
            WriteUp.created_at <= ts,
        )
        .count()
    )


def has_linked_write_up(db: Session, attendance_id: uuid.UUID) -> bool:
    return db.query(WriteUp.id).filter(WriteUp.attendance_id == attendance_id).first() is not None


def _describe(record: Attendance) -> str:
    scheduled = f" (scheduled {record.scheduled_start})" if record.scheduled_start else ""
    if record.status == "no_call_no_show":
        return f"No call / no show on {record.date}{scheduled}."
    minutes = f" {record.minutes_late} minutes" if record.minutes_late else ""
    return f"Late arrival on {record.date}: clocked in{minutes} late{scheduled}."


def create_write_up_from_attendance(
    db: Session,
    actor: User,
    attendance_id: uuid.UUID,
    action_taken: Optional[str] = None,
    now: Optional[datetime] = None,
) -> WriteUp:
    """
    Issue the next attendance write-up for a late or no-call/no-show record.

    Raises:
        NotFoundError: unknown attendance record
        InvalidStateError: the record is not late or a no-call/no-show
        AlreadyLinkedError: a write-up already references this record
    """
    ensure_permission(actor, ATTENDANCE_WRITE)
    record = db.query(Attendance).filter(Attendance.id == attendance_id).first()
    if not record:
        raise NotFoundError("Attendance record not found")
    if record.status not in WRITABLE_ATTENDANCE:
        raise InvalidStateError(f"Attendance marked '{record.status}' cannot be written up")
    if has_linked_write_up(db, record.id):
        raise AlreadyLinkedError("A write-up already exists for this attendance record")

    ts = ensure_utc(now) if now else utc_now()
    prior = count_recent_attendance_write_ups(db, record.personnel_id, ts)
    severity = severity_for_count(prior)
    try:
        with atomic(db):
            write_up = WriteUp(
                personnel_id=record.personnel_id,
                attendance_id=record.id,
                date=record.date,
                category=WriteUpCategory.attendance.value,
                severity=severity.value,
                description=_describe(record),
                action_taken=action_taken,
                follow_up_required=False,
                issued_by=actor.id,
                issued_by_name=actor.name,
                created_at=ts,
            )
            db.add(write_up)
            db.flush()
            create_audit_log(
                db,
                entity_type="write_up",
                entity_id=write_up.id,
                action="CREATE",
                actor=actor,
                context={"attendance_id": record.id, "prior_count": prior, "severity": severity.value},
                now=ts,
            )
    except IntegrityError as e:
        # Lost a race with another request linking the same record
        raise AlreadyLinkedError("A write-up already exists for this attendance record") from e

    logger.info(
        "write_up_created",
        write_up_id=str(write_up.id),
        personnel_id=str(record.personnel_id),
        severity=severity.value,
        prior_count=prior,
    )
    return write_up


def get_write_up(db: Session, write_up_id: uuid.UUID) -> WriteUp:
    write_up = db.query(WriteUp).filter(WriteUp.id == write_up_id).first()
    if not write_up:
        raise NotFoundError("Write-up not found")
    return write_up


def is_expired(write_up: WriteUp, now: Optional[datetime] = None) -> bool:
    """Write-ups drop off the active list WRITE_UP_ARCHIVE_DAYS after their date."""
    today = parse_date(local_date_str(ensure_utc(now) if now else utc_now()))
    return (today - parse_date(write_up.date)).days >= settings.write_up_archive_days


def list_write_ups(
    db: Session,
    personnel_id: Optional[uuid.UUID] = None,
    severity: Optional[str] = None,
    include_archived: bool = False,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    query = db.query(WriteUp, Personnel).join(Personnel, Personnel.id == WriteUp.personnel_id)
    if personnel_id:
        query = query.filter(WriteUp.personnel_id == personnel_id)
    if severity:
        query = query.filter(WriteUp.severity == WriteUpSeverity(severity).value)

    results = []
    for write_up, person in query.all():
        expired = is_expired(write_up, now)
        archived = bool(write_up.is_archived) or expired
        if archived and not include_archived:
            continue
        data = {c.name: getattr(write_up, c.name) for c in WriteUp.__table__.columns}
        data.update(
            personnel_name=person.full_name,
            severity_label=SEVERITY_LABELS[WriteUpSeverity(write_up.severity)],
            is_archived=archived,
            is_expired=expired,
        )
        results.append(data)
    return sorted(results, key=lambda w: (w["date"], w["created_at"]), reverse=True)


def acknowledge_write_up(db: Session, actor: User, write_up_id: uuid.UUID, now: Optional[datetime] = None) -> WriteUp:
    ensure_permission(actor, ATTENDANCE_WRITE)
    write_up = get_write_up(db, write_up_id)
    if write_up.acknowledged_at is not None:
        raise InvalidStateError("Write-up already acknowledged")
    with atomic(db):
        write_up.acknowledged_at = ensure_utc(now) if now else utc_now()
    return write_up


def add_follow_up_notes(db: Session, actor: User, write_up_id: uuid.UUID, notes: str) -> WriteUp:
    ensure_permission(actor, ATTENDANCE_WRITE)
    text = (notes or "").strip()
    if not text:
        raise ValidationError("Follow-up notes are required")
    write_up = get_write_up(db, write_up_id)
    with atomic(db):
        write_up.follow_up_notes = text
    return write_up
