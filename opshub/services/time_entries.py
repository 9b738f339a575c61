"""
Time entry store: clock actions, manager edits and the live views built from
raw entries.

Entries are grouped by local business date. A person's clock state for a day
is decided by the type of their latest entry.
"""
import math
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple

import structlog
from sqlalchemy import case
from sqlalchemy.orm import Session

from ..config import settings
from ..db import atomic
from ..errors import NotFoundError, ValidationError, InvalidStateError, PermissionDeniedError, require_reason
from ..models.models import TimeEntry, Attendance, Personnel, User
from .audit import create_audit_log, compute_diff
from .permissions import ensure_permission, is_admin, TIMECLOCK_WRITE
from .personnel import get_personnel, scheduled_shift_for
from .time_rules import (
    ArrivalStatus,
    combine_date_time,
    ensure_utc,
    evaluate_arrival,
    format_hhmm,
    local_date_str,
    local_day_bounds,
    minutes_between,
    parse_date,
    utc_now,
)

logger = structlog.get_logger(__name__)


class EntryType(str, Enum):
    clock_in = "clock_in"
    clock_out = "clock_out"
    break_start = "break_start"
    break_end = "break_end"


class EntrySource(str, Enum):
    admin = "admin"
    mobile = "mobile"
    kiosk = "kiosk"


class ClockStatus(str, Enum):
    not_clocked_in = "not_clocked_in"
    clocked_in = "clocked_in"
    on_break = "on_break"
    clocked_out = "clocked_out"


_STATUS_AFTER = {
    EntryType.clock_in: ClockStatus.clocked_in,
    EntryType.break_start: ClockStatus.on_break,
    EntryType.break_end: ClockStatus.clocked_in,
    EntryType.clock_out: ClockStatus.clocked_out,
}

# Entries sharing a timestamp (a forced clock-out closing a break) sort in punch order
_PUNCH_RANK = {
    EntryType.clock_in.value: 0,
    EntryType.break_start.value: 1,
    EntryType.break_end.value: 2,
    EntryType.clock_out.value: 3,
}
PUNCH_ORDER = case(_PUNCH_RANK, value=TimeEntry.type, else_=len(_PUNCH_RANK))


def entry_sort_key(entry: TimeEntry):
    return (ensure_utc(entry.timestamp), ensure_utc(entry.created_at), _PUNCH_RANK.get(entry.type, len(_PUNCH_RANK)))


def _parse_type(value) -> EntryType:
    try:
        return EntryType(value)
    except ValueError:
        raise ValidationError(f"Invalid entry type: {value}")


def _parse_source(value) -> EntrySource:
    try:
        return EntrySource(value)
    except ValueError:
        raise ValidationError(f"Invalid entry source: {value}")


def clock_status(entries: List[TimeEntry]) -> ClockStatus:
    """State after the latest entry; entries must be sorted oldest first."""
    if not entries:
        return ClockStatus.not_clocked_in
    return _STATUS_AFTER[EntryType(entries[-1].type)]


def day_entries(db: Session, personnel_id: uuid.UUID, date: str) -> List[TimeEntry]:
    return (
        db.query(TimeEntry)
        .filter(TimeEntry.personnel_id == personnel_id, TimeEntry.date == date)
        .order_by(TimeEntry.timestamp.asc(), TimeEntry.created_at.asc(), PUNCH_ORDER)
        .all()
    )


def _open_session(db: Session, personnel_id: uuid.UUID, ts: datetime) -> Tuple[str, List[TimeEntry]]:
    """
    Business date and entries of the session a clock action belongs to.

    Today's entries win; with none today, a shift still open from the
    previous day (worked past midnight) is continued.
    """
    today = local_date_str(ts)
    entries = day_entries(db, personnel_id, today)
    if entries:
        return today, entries
    yesterday = (parse_date(today) - timedelta(days=1)).strftime("%Y-%m-%d")
    previous = day_entries(db, personnel_id, yesterday)
    if clock_status(previous) in (ClockStatus.clocked_in, ClockStatus.on_break):
        return yesterday, previous
    return today, entries


def summarize_entries(entries: List[TimeEntry], now: datetime, day_end: Optional[datetime] = None) -> Dict[str, Any]:
    """
    First clock-in, last clock-out, paired break minutes and worked hours.

    A day without a clock-out is counted up to ``now`` (capped at ``day_end``)
    and reported as incomplete.
    """
    clock_in = None
    clock_out = None
    break_minutes = 0.0
    break_start = None
    for entry in entries:
        ts = ensure_utc(entry.timestamp)
        if entry.type == EntryType.clock_in.value and clock_in is None:
            clock_in = ts
        elif entry.type == EntryType.clock_out.value:
            clock_out = ts
        elif entry.type == EntryType.break_start.value:
            break_start = ts
        elif entry.type == EntryType.break_end.value and break_start is not None:
            break_minutes += minutes_between(break_start, ts)
            break_start = None

    status = clock_status(entries)
    open_until = ensure_utc(now)
    if day_end is not None and open_until > day_end:
        open_until = day_end
    if break_start is not None and status == ClockStatus.on_break:
        break_minutes += max(0.0, minutes_between(break_start, open_until))

    total_minutes = 0.0
    if clock_in is not None and clock_out is not None and status == ClockStatus.clocked_out:
        total_minutes = minutes_between(clock_in, clock_out) - break_minutes
    elif clock_in is not None:
        total_minutes = minutes_between(clock_in, open_until) - break_minutes

    return {
        "status": status.value,
        "clock_in": clock_in,
        "clock_out": clock_out,
        "break_minutes": int(round(break_minutes)),
        "total_hours": round(max(0.0, total_minutes) / 60, 2),
        "is_complete": status == ClockStatus.clocked_out,
    }


def entry_dict(entry: TimeEntry, person: Optional[Personnel] = None) -> Dict[str, Any]:
    data = {c.name: getattr(entry, c.name) for c in TimeEntry.__table__.columns}
    data["timestamp"] = ensure_utc(entry.timestamp)
    if person is not None:
        data["personnel_name"] = person.full_name
        data["department"] = person.department
        data["position"] = person.position
    return data


# ---------- CLOCK ACTIONS ----------

def _record_arrival(
    db: Session,
    person: Personnel,
    date: str,
    ts: datetime,
    scheduled_start: Optional[str],
    scheduled_end: Optional[str],
    is_late: bool,
    minutes_late: int,
) -> None:
    """Create the day's attendance record from the first clock-in, if none exists yet."""
    existing = db.query(Attendance).filter(
        Attendance.personnel_id == person.id,
        Attendance.date == date,
    ).first()
    if existing:
        if not existing.actual_start:
            existing.actual_start = format_hhmm(ts)
            existing.updated_at = ts
        return
    db.add(Attendance(
        personnel_id=person.id,
        date=date,
        status="late" if is_late else "present",
        scheduled_start=scheduled_start,
        scheduled_end=scheduled_end,
        actual_start=format_hhmm(ts),
        minutes_late=minutes_late if is_late else None,
        created_at=ts,
        updated_at=ts,
    ))


def clock_in(
    db: Session,
    actor: User,
    personnel_id: uuid.UUID,
    source: str = EntrySource.kiosk.value,
    location_id: Optional[uuid.UUID] = None,
    notes: Optional[str] = None,
    bypass_schedule_check: bool = False,
    now: Optional[datetime] = None,
) -> TimeEntry:
    """
    Clock a person in.

    The first clock-in of the day is compared to the scheduled shift start:
    early clock-ins are refused when BLOCK_EARLY_CLOCK_IN is on, and anything
    past the on-time window plus grace is flagged late.
    """
    ensure_permission(actor, TIMECLOCK_WRITE)
    if bypass_schedule_check and not is_admin(actor):
        raise PermissionDeniedError("Only an admin can bypass the schedule check")
    src = _parse_source(source)
    person = get_personnel(db, personnel_id)
    ts = ensure_utc(now) if now else utc_now()
    today = local_date_str(ts)

    session_date, session = _open_session(db, person.id, ts)
    if clock_status(session) in (ClockStatus.clocked_in, ClockStatus.on_break):
        raise InvalidStateError(
            "Already clocked in. Please clock out first."
            if session_date == today
            else f"Still clocked in from {session_date}. Please clock out first."
        )
    entries = session if session_date == today else []
    first_of_day = not any(e.type == EntryType.clock_in.value for e in entries)

    shift = None
    minutes_late = 0
    is_late = False
    if first_of_day and not bypass_schedule_check:
        shift = scheduled_shift_for(db, person.id, today)
    if shift:
        scheduled = combine_date_time(today, shift.start_time)
        if ts < scheduled and settings.block_early_clock_in:
            minutes_early = math.ceil(minutes_between(ts, scheduled))
            raise InvalidStateError(
                f"Cannot clock in yet. Your shift starts at {shift.start_time}. "
                f"Please wait {minutes_early} minute{'' if minutes_early == 1 else 's'}."
            )
        arrival, minutes_late = evaluate_arrival(scheduled, ts)
        is_late = arrival == ArrivalStatus.late

    with atomic(db):
        entry = TimeEntry(
            personnel_id=person.id,
            date=today,
            type=EntryType.clock_in.value,
            timestamp=ts,
            source=src.value,
            location_id=location_id,
            notes=notes,
            scheduled_start=shift.start_time if shift else None,
            minutes_late=minutes_late if minutes_late > 0 else None,
            is_late=is_late,
            created_at=ts,
        )
        db.add(entry)
        if first_of_day:
            _record_arrival(
                db, person, today, ts,
                shift.start_time if shift else None,
                shift.end_time if shift else None,
                is_late, minutes_late,
            )

    if is_late:
        # Managers see late arrivals on the live board; no push alerts
        logger.warning(
            "late_clock_in",
            personnel_id=str(person.id),
            personnel_name=person.full_name,
            scheduled_start=shift.start_time,
            minutes_late=minutes_late,
        )
    logger.info("clock_in", personnel_id=str(person.id), entry_id=str(entry.id), source=src.value)
    return entry


def _add_punch(
    db: Session,
    actor: User,
    personnel_id: uuid.UUID,
    entry_type: EntryType,
    allowed_from: Tuple[ClockStatus, ...],
    error: Dict[ClockStatus, str],
    source: str,
    notes: Optional[str],
    now: Optional[datetime],
) -> TimeEntry:
    ensure_permission(actor, TIMECLOCK_WRITE)
    src = _parse_source(source)
    person = get_personnel(db, personnel_id)
    ts = ensure_utc(now) if now else utc_now()
    date, entries = _open_session(db, person.id, ts)
    current = clock_status(entries)
    if current not in allowed_from:
        raise InvalidStateError(error[current])

    with atomic(db):
        entry = TimeEntry(
            personnel_id=person.id,
            date=date,
            type=entry_type.value,
            timestamp=ts,
            source=src.value,
            notes=notes,
            created_at=ts,
        )
        db.add(entry)
    logger.info(entry_type.value, personnel_id=str(person.id), entry_id=str(entry.id), source=src.value)
    return entry


def clock_out(db: Session, actor: User, personnel_id: uuid.UUID, source: str = EntrySource.kiosk.value,
              notes: Optional[str] = None, now: Optional[datetime] = None) -> TimeEntry:
    return _add_punch(
        db, actor, personnel_id, EntryType.clock_out,
        (ClockStatus.clocked_in,),
        {
            ClockStatus.not_clocked_in: "Not clocked in. Please clock in first.",
            ClockStatus.clocked_out: "Already clocked out.",
            ClockStatus.on_break: "Currently on break. Please end break first.",
        },
        source, notes, now,
    )


def start_break(db: Session, actor: User, personnel_id: uuid.UUID, source: str = EntrySource.kiosk.value,
                notes: Optional[str] = None, now: Optional[datetime] = None) -> TimeEntry:
    return _add_punch(
        db, actor, personnel_id, EntryType.break_start,
        (ClockStatus.clocked_in,),
        {
            ClockStatus.not_clocked_in: "Not clocked in. Please clock in first.",
            ClockStatus.clocked_out: "Cannot start break. Must be clocked in and not already on break.",
            ClockStatus.on_break: "Cannot start break. Must be clocked in and not already on break.",
        },
        source, notes, now,
    )


def end_break(db: Session, actor: User, personnel_id: uuid.UUID, source: str = EntrySource.kiosk.value,
              notes: Optional[str] = None, now: Optional[datetime] = None) -> TimeEntry:
    return _add_punch(
        db, actor, personnel_id, EntryType.break_end,
        (ClockStatus.on_break,),
        {
            ClockStatus.not_clocked_in: "Not clocked in.",
            ClockStatus.clocked_out: "Not currently on break.",
            ClockStatus.clocked_in: "Not currently on break.",
        },
        source, notes, now,
    )


# ---------- MANAGER CHANGES ----------

def get_entry(db: Session, entry_id: uuid.UUID) -> TimeEntry:
    entry = db.query(TimeEntry).filter(TimeEntry.id == entry_id).first()
    if not entry:
        raise NotFoundError("Time entry not found")
    return entry


def _entry_state(entry: TimeEntry) -> Dict[str, Any]:
    return {
        "type": entry.type,
        "timestamp": ensure_utc(entry.timestamp).isoformat(),
        "date": entry.date,
    }


def insert_admin_entry(
    db: Session,
    actor: User,
    personnel_id: uuid.UUID,
    date: str,
    entry_type: EntryType,
    timestamp: datetime,
    reason: str,
    notes: Optional[str],
    ts: datetime,
) -> TimeEntry:
    """Add a manager-sourced entry inside the caller's transaction."""
    entry = TimeEntry(
        personnel_id=personnel_id,
        date=date,
        type=entry_type.value,
        timestamp=ensure_utc(timestamp),
        source=EntrySource.admin.value,
        notes=notes,
        edited_by=actor.id,
        edited_at=ts,
        edit_reason=reason,
        created_at=ts,
    )
    db.add(entry)
    db.flush()
    create_audit_log(
        db,
        entity_type="time_entry",
        entity_id=entry.id,
        action="CREATE",
        actor=actor,
        changes_json={"after": _entry_state(entry)},
        context={"personnel_id": personnel_id, "reason": reason},
        now=ts,
    )
    return entry


def add_missed_entry(
    db: Session,
    actor: User,
    personnel_id: uuid.UUID,
    date: str,
    entry_type: str,
    timestamp: datetime,
    reason: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TimeEntry:
    """Manager adds a punch the employee missed. A reason is mandatory."""
    ensure_permission(actor, TIMECLOCK_WRITE)
    text = require_reason(reason)
    etype = _parse_type(entry_type)
    parse_date(date)
    person = get_personnel(db, personnel_id)
    ts = ensure_utc(now) if now else utc_now()
    with atomic(db):
        entry = insert_admin_entry(
            db, actor, person.id, date, etype, timestamp, text,
            notes or f"Added by manager: {text}", ts,
        )
    logger.info("time_entry_added", entry_id=str(entry.id), personnel_id=str(person.id), type=etype.value)
    return entry


def apply_edit(db: Session, actor: User, entry: TimeEntry, new_timestamp: datetime, reason: str, ts: datetime) -> None:
    """
    Move an entry to a new time inside the caller's transaction.

    The entry keeps its id; the first pre-edit value is kept in
    ``original_timestamp`` across repeated edits.
    """
    before = _entry_state(entry)
    entry.original_timestamp = entry.original_timestamp or entry.timestamp
    entry.timestamp = ensure_utc(new_timestamp)
    entry.edited_by = actor.id
    entry.edited_at = ts
    entry.edit_reason = reason
    db.flush()
    create_audit_log(
        db,
        entity_type="time_entry",
        entity_id=entry.id,
        action="UPDATE",
        actor=actor,
        changes_json=compute_diff(before, _entry_state(entry)),
        context={"personnel_id": entry.personnel_id, "reason": reason},
        now=ts,
    )


def edit_entry(
    db: Session,
    actor: User,
    entry_id: uuid.UUID,
    new_timestamp: datetime,
    reason: str,
    now: Optional[datetime] = None,
) -> TimeEntry:
    ensure_permission(actor, TIMECLOCK_WRITE)
    text = require_reason(reason)
    entry = get_entry(db, entry_id)
    ts = ensure_utc(now) if now else utc_now()
    with atomic(db):
        apply_edit(db, actor, entry, new_timestamp, text, ts)
    logger.info("time_entry_edited", entry_id=str(entry.id))
    return entry


def remove_entry(db: Session, actor: User, entry: TimeEntry, reason: Optional[str], ts: datetime) -> None:
    create_audit_log(
        db,
        entity_type="time_entry",
        entity_id=entry.id,
        action="DELETE",
        actor=actor,
        changes_json={"before": _entry_state(entry)},
        context={"personnel_id": entry.personnel_id, "reason": reason},
        now=ts,
    )
    db.delete(entry)
    db.flush()


def delete_entry(
    db: Session,
    actor: User,
    entry_id: uuid.UUID,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> None:
    ensure_permission(actor, TIMECLOCK_WRITE)
    entry = get_entry(db, entry_id)
    ts = ensure_utc(now) if now else utc_now()
    with atomic(db):
        remove_entry(db, actor, entry, (reason or "").strip() or None, ts)
    logger.info("time_entry_deleted", entry_id=str(entry_id))


def force_clock_out(
    db: Session,
    actor: User,
    personnel_id: uuid.UUID,
    timestamp: Optional[datetime] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TimeEntry:
    """
    Manager clocks out someone who forgot. An open break is closed at the
    same instant first.
    """
    ensure_permission(actor, TIMECLOCK_WRITE)
    person = get_personnel(db, personnel_id)
    ts = ensure_utc(now) if now else utc_now()
    out_at = ensure_utc(timestamp) if timestamp else ts
    date, entries = _open_session(db, person.id, out_at)
    current = clock_status(entries)
    if current not in (ClockStatus.clocked_in, ClockStatus.on_break):
        raise InvalidStateError(f"{person.full_name} is not clocked in")
    if out_at < ensure_utc(entries[-1].timestamp):
        raise ValidationError("Clock-out time is before the last recorded entry")

    reason = "Force clock out"
    with atomic(db):
        if current == ClockStatus.on_break:
            insert_admin_entry(db, actor, person.id, date, EntryType.break_end, out_at, reason,
                               "Break closed by force clock out", ts)
        entry = insert_admin_entry(db, actor, person.id, date, EntryType.clock_out, out_at, reason,
                                   notes or "Force clocked out by manager", ts)
        create_audit_log(
            db,
            entity_type="time_entry",
            entity_id=entry.id,
            action="FORCE_CLOCK_OUT",
            actor=actor,
            context={"personnel_id": person.id, "was_on_break": current == ClockStatus.on_break},
            now=ts,
        )
    logger.info("force_clock_out", personnel_id=str(person.id), entry_id=str(entry.id))
    return entry


# ---------- QUERIES ----------

def get_current_status(db: Session, personnel_id: uuid.UUID, now: Optional[datetime] = None) -> Dict[str, Any]:
    person = get_personnel(db, personnel_id)
    ts = ensure_utc(now) if now else utc_now()
    date, entries = _open_session(db, person.id, ts)
    summary = summarize_entries(entries, ts)
    return {
        "personnel_id": person.id,
        "date": date,
        "status": summary["status"],
        "hours_worked": summary["total_hours"] if entries else 0.0,
        "entries": [entry_dict(e) for e in entries],
        "last_entry": entry_dict(entries[-1]) if entries else None,
    }


def _group_by_personnel(entries: List[TimeEntry]) -> Dict[uuid.UUID, List[TimeEntry]]:
    grouped: Dict[uuid.UUID, List[TimeEntry]] = {}
    for entry in entries:
        grouped.setdefault(entry.personnel_id, []).append(entry)
    for items in grouped.values():
        items.sort(key=entry_sort_key)
    return grouped


def get_active_clocks(db: Session, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Everyone currently working or on break, earliest clock-in first."""
    ts = ensure_utc(now) if now else utc_now()
    today = local_date_str(ts)
    yesterday = (parse_date(today) - timedelta(days=1)).strftime("%Y-%m-%d")
    rows = db.query(TimeEntry).filter(TimeEntry.date.in_([yesterday, today])).all()

    by_day: Dict[Tuple[uuid.UUID, str], List[TimeEntry]] = {}
    for entry in rows:
        by_day.setdefault((entry.personnel_id, entry.date), []).append(entry)

    active = []
    for personnel_id in {pid for pid, _ in by_day}:
        entries = by_day.get((personnel_id, today))
        if not entries:
            entries = by_day.get((personnel_id, yesterday), [])
        entries.sort(key=entry_sort_key)
        status = clock_status(entries)
        if status not in (ClockStatus.clocked_in, ClockStatus.on_break):
            continue
        person = db.query(Personnel).filter(Personnel.id == personnel_id).first()
        if not person:
            continue
        summary = summarize_entries(entries, ts)
        if summary["clock_in"] is None:
            continue
        active.append({
            "personnel_id": person.id,
            "personnel_name": person.full_name,
            "position": person.position,
            "department": person.department,
            "clock_in_time": summary["clock_in"],
            "status": "on_break" if status == ClockStatus.on_break else "working",
            "hours_worked": summary["total_hours"],
        })
    return sorted(active, key=lambda a: a["clock_in_time"])


def get_entries_by_date(db: Session, date: str) -> List[Dict[str, Any]]:
    parse_date(date)
    rows = (
        db.query(TimeEntry, Personnel)
        .join(Personnel, Personnel.id == TimeEntry.personnel_id)
        .filter(TimeEntry.date == date)
        .order_by(TimeEntry.timestamp.asc(), TimeEntry.created_at.asc(), PUNCH_ORDER)
        .all()
    )
    return [entry_dict(entry, person) for entry, person in rows]


def get_entries_by_personnel(db: Session, personnel_id: uuid.UUID, start_date: str, end_date: str) -> List[TimeEntry]:
    parse_date(start_date)
    parse_date(end_date)
    return (
        db.query(TimeEntry)
        .filter(
            TimeEntry.personnel_id == personnel_id,
            TimeEntry.date >= start_date,
            TimeEntry.date <= end_date,
        )
        .order_by(TimeEntry.date.asc(), TimeEntry.timestamp.asc(), TimeEntry.created_at.asc(), PUNCH_ORDER)
        .all()
    )


def get_daily_summary(db: Session, date: str, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Per-person totals for a business date, sorted by name."""
    parse_date(date)
    ts = ensure_utc(now) if now else utc_now()
    # An unclosed day is never counted past the end of the following day
    _, next_start = local_day_bounds(date)
    day_end = next_start + timedelta(days=1)

    rows = db.query(TimeEntry).filter(TimeEntry.date == date).all()
    summaries = []
    for personnel_id, entries in _group_by_personnel(rows).items():
        person = db.query(Personnel).filter(Personnel.id == personnel_id).first()
        if not person:
            continue
        summary = summarize_entries(entries, ts, day_end=day_end)
        summaries.append({
            "personnel_id": person.id,
            "personnel_name": person.full_name,
            "department": person.department,
            "position": person.position,
            "clock_in": summary["clock_in"],
            "clock_out": summary["clock_out"],
            "break_minutes": summary["break_minutes"],
            "total_hours": summary["total_hours"],
            "is_complete": summary["is_complete"],
            "entries": [entry_dict(e) for e in entries],
        })
    return sorted(summaries, key=lambda s: s["personnel_name"])
