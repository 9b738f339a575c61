"""
Attendance evaluation.

Live status is derived at query time from shifts and clock entries. Daily
outcomes that managers act on (late, no-call/no-show, excused, ...) are
persisted as ``Attendance`` records, which write-ups link to.
"""
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, List, Dict, Any

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..db import atomic
from ..errors import NotFoundError, ValidationError
from ..models.models import Attendance, Personnel, Shift, TimeEntry, User
from .permissions import ensure_permission, ATTENDANCE_WRITE
from .personnel import get_personnel
from .time_entries import PUNCH_ORDER, EntryType, clock_status
from .time_rules import (
    ArrivalStatus,
    combine_date_time,
    ensure_utc,
    evaluate_arrival,
    local_date_str,
    parse_date,
    parse_hhmm,
    utc_now,
)
from .write_ups import (
    SEVERITY_LABELS,
    WRITABLE_ATTENDANCE,
    count_recent_attendance_write_ups,
    has_linked_write_up,
    severity_for_count,
)

logger = structlog.get_logger(__name__)


class AttendanceStatus(str, Enum):
    present = "present"
    late = "late"
    absent = "absent"
    excused = "excused"
    no_call_no_show = "no_call_no_show"


class LiveStatus(str, Enum):
    on_time = "on_time"
    grace_period = "grace_period"
    late = "late"
    no_call_no_show = "no_call_no_show"
    not_clocked_in = "not_clocked_in"


LIVE_STATUS_LABELS = {
    LiveStatus.on_time: "On Time",
    LiveStatus.grace_period: "Grace Period",
    LiveStatus.late: "Late",
    LiveStatus.no_call_no_show: "No Call / No Show",
    LiveStatus.not_clocked_in: "Not Clocked In",
}

_FROM_ARRIVAL = {
    ArrivalStatus.on_time: LiveStatus.on_time,
    ArrivalStatus.grace_period: LiveStatus.grace_period,
    ArrivalStatus.late: LiveStatus.late,
}

ISSUE_LOOKBACK_DAYS = 30


def no_show_cutoff(date: str, shift: Shift) -> datetime:
    """
    Instant after which a missing clock-in is a no-call/no-show: shift end
    (next day for overnight shifts) or end of day, plus the configured cutoff.
    """
    if shift.end_time:
        cutoff = combine_date_time(date, shift.end_time)
        if parse_hhmm(shift.end_time) <= parse_hhmm(shift.start_time):
            cutoff += timedelta(days=1)
    else:
        cutoff = combine_date_time(date, "23:59")
    return cutoff + timedelta(minutes=settings.attendance_no_show_cutoff_min)


def _scheduled_today(db: Session, date: str) -> Dict[uuid.UUID, tuple]:
    """Earliest shift per scheduled person: {personnel_id: (person, shift)}."""
    scheduled: Dict[uuid.UUID, tuple] = {}
    for shift in db.query(Shift).filter(Shift.date == date).order_by(Shift.start_time.asc()).all():
        for person in shift.personnel:
            if person.id not in scheduled:
                scheduled[person.id] = (person, shift)
    return scheduled


def get_today_live(db: Session, now: Optional[datetime] = None, date: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Live arrival board for everyone scheduled on ``date`` (default today).

    Each row compares the scheduled start with the earliest clock-in and
    carries the person's current clock state.
    """
    ts = ensure_utc(now) if now else utc_now()
    day = date or local_date_str(ts)
    parse_date(day)
    scheduled = _scheduled_today(db, day)
    if not scheduled:
        return []

    entries_by_person: Dict[uuid.UUID, List[TimeEntry]] = {}
    rows = (
        db.query(TimeEntry)
        .filter(TimeEntry.date == day, TimeEntry.personnel_id.in_(list(scheduled)))
        .order_by(TimeEntry.timestamp.asc(), TimeEntry.created_at.asc(), PUNCH_ORDER)
        .all()
    )
    for entry in rows:
        entries_by_person.setdefault(entry.personnel_id, []).append(entry)

    board = []
    for personnel_id, (person, shift) in scheduled.items():
        entries = entries_by_person.get(personnel_id, [])
        first_in = next((e for e in entries if e.type == EntryType.clock_in.value), None)
        minutes_late = 0
        actual_start = None
        if first_in is not None:
            actual_start = ensure_utc(first_in.timestamp)
            arrival, minutes_late = evaluate_arrival(combine_date_time(day, shift.start_time), actual_start)
            status = _FROM_ARRIVAL[arrival]
        elif ts > no_show_cutoff(day, shift):
            status = LiveStatus.no_call_no_show
        else:
            status = LiveStatus.not_clocked_in
        board.append({
            "personnel_id": person.id,
            "personnel_name": person.full_name,
            "department": person.department,
            "position": person.position,
            "shift_id": shift.id,
            "shift_name": shift.name,
            "scheduled_start": shift.start_time,
            "scheduled_end": shift.end_time,
            "actual_start": actual_start,
            "status": status.value,
            "status_label": LIVE_STATUS_LABELS[status],
            "minutes_late": minutes_late,
            "clock_status": clock_status(entries).value,
        })
    return sorted(board, key=lambda r: (r["scheduled_start"], r["personnel_name"]))


def mark_no_shows(db: Session, actor: User, date: Optional[str] = None, now: Optional[datetime] = None) -> List[Attendance]:
    """
    Persist no-call/no-show records for scheduled people with no clock-in
    once their cutoff has passed. Existing records are left alone, so calling
    this again creates nothing new.
    """
    ensure_permission(actor, ATTENDANCE_WRITE)
    ts = ensure_utc(now) if now else utc_now()
    day = date or local_date_str(ts)
    board = [r for r in get_today_live(db, ts, day) if r["status"] == LiveStatus.no_call_no_show.value]
    if not board:
        return []

    existing = {
        a.personnel_id
        for a in db.query(Attendance.personnel_id).filter(
            Attendance.date == day,
            Attendance.personnel_id.in_([r["personnel_id"] for r in board]),
        )
    }
    created = []
    with atomic(db):
        for row in board:
            if row["personnel_id"] in existing:
                continue
            record = Attendance(
                personnel_id=row["personnel_id"],
                date=day,
                status=AttendanceStatus.no_call_no_show.value,
                scheduled_start=row["scheduled_start"],
                scheduled_end=row["scheduled_end"],
                created_at=ts,
                updated_at=ts,
            )
            db.add(record)
            created.append(record)
    if created:
        logger.info("no_shows_marked", date=day, count=len(created))
    return created


def get_attendance(db: Session, attendance_id: uuid.UUID) -> Attendance:
    record = db.query(Attendance).filter(Attendance.id == attendance_id).first()
    if not record:
        raise NotFoundError("Attendance record not found")
    return record


def upsert_attendance(
    db: Session,
    actor: User,
    personnel_id: uuid.UUID,
    date: str,
    status: str,
    scheduled_start: Optional[str] = None,
    scheduled_end: Optional[str] = None,
    actual_start: Optional[str] = None,
    actual_end: Optional[str] = None,
    minutes_late: Optional[int] = None,
    hours_worked: Optional[float] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Attendance:
    """Create or overwrite the (person, date) attendance record."""
    ensure_permission(actor, ATTENDANCE_WRITE)
    try:
        status_value = AttendanceStatus(status).value
    except ValueError:
        raise ValidationError(f"Invalid attendance status: {status}")
    parse_date(date)
    for value in (scheduled_start, scheduled_end, actual_start, actual_end):
        if value:
            parse_hhmm(value)
    if minutes_late is not None and minutes_late < 0:
        raise ValidationError("Minutes late cannot be negative")
    person = get_personnel(db, personnel_id)
    ts = ensure_utc(now) if now else utc_now()

    fields = {
        "status": status_value,
        "scheduled_start": scheduled_start,
        "scheduled_end": scheduled_end,
        "actual_start": actual_start,
        "actual_end": actual_end,
        "minutes_late": minutes_late,
        "hours_worked": hours_worked,
        "notes": notes,
        "updated_at": ts,
    }
    with atomic(db):
        record = db.query(Attendance).filter(
            Attendance.personnel_id == person.id,
            Attendance.date == date,
        ).first()
        if record:
            for key, value in fields.items():
                setattr(record, key, value)
        else:
            record = Attendance(personnel_id=person.id, date=date, created_at=ts, **fields)
            db.add(record)
    return record


def get_attendance_summary(db: Session, personnel_id: uuid.UUID, start_date: str, end_date: str) -> Dict[str, Any]:
    parse_date(start_date)
    parse_date(end_date)
    records = db.query(Attendance).filter(
        Attendance.personnel_id == personnel_id,
        Attendance.date >= start_date,
        Attendance.date <= end_date,
    ).all()
    summary = {s.value: 0 for s in AttendanceStatus}
    for record in records:
        summary[record.status] = summary.get(record.status, 0) + 1
    summary["total_days"] = len(records)
    summary["total_hours"] = round(sum(r.hours_worked or 0 for r in records), 2)
    return summary


def get_issues(
    db: Session,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """
    Late and no-call/no-show records with the write-up each would get next.
    Defaults to the last ISSUE_LOOKBACK_DAYS days.
    """
    ts = ensure_utc(now) if now else utc_now()
    end = end_date or local_date_str(ts)
    start = start_date or (parse_date(end) - timedelta(days=ISSUE_LOOKBACK_DAYS)).strftime("%Y-%m-%d")
    parse_date(start)
    parse_date(end)

    rows = (
        db.query(Attendance, Personnel)
        .join(Personnel, Personnel.id == Attendance.personnel_id)
        .filter(
            Attendance.status.in_(WRITABLE_ATTENDANCE),
            Attendance.date >= start,
            Attendance.date <= end,
        )
        .order_by(Attendance.date.desc())
        .all()
    )
    counts: Dict[uuid.UUID, int] = {}
    issues = []
    for record, person in rows:
        if person.id not in counts:
            counts[person.id] = count_recent_attendance_write_ups(db, person.id, ts)
        severity = severity_for_count(counts[person.id])
        issues.append({
            "attendance_id": record.id,
            "personnel_id": person.id,
            "personnel_name": person.full_name,
            "department": person.department,
            "date": record.date,
            "status": record.status,
            "scheduled_start": record.scheduled_start,
            "actual_start": record.actual_start,
            "minutes_late": record.minutes_late,
            "has_linked_write_up": has_linked_write_up(db, record.id),
            "write_ups_in_window": counts[person.id],
            "recommended_severity": severity.value,
            "recommended_severity_label": SEVERITY_LABELS[severity],
        })
    return issues


def check_late_pattern(db: Session, personnel_id: uuid.UUID, now: Optional[datetime] = None) -> Dict[str, Any]:
    """More than one late clock-in inside the pattern window flags a pattern."""
    ts = ensure_utc(now) if now else utc_now()
    since = (parse_date(local_date_str(ts)) - timedelta(days=settings.late_pattern_window_days)).strftime("%Y-%m-%d")
    late_count = db.query(TimeEntry).filter(
        TimeEntry.personnel_id == personnel_id,
        TimeEntry.type == EntryType.clock_in.value,
        TimeEntry.is_late == True,  # noqa: E712
        TimeEntry.date >= since,
    ).count()
    return {
        "personnel_id": personnel_id,
        "since": since,
        "late_count": late_count,
        "has_pattern": late_count > 1,
    }
