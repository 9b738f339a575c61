"""
Time correction requests: submitted by employees, reviewed once by a manager.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

import structlog
from sqlalchemy.orm import Session

from ..db import atomic
from ..errors import NotFoundError, ValidationError, InvalidStateError, AlreadyReviewedError, require_reason
from ..models.models import TimeCorrection, TimeEntry, Personnel, User
from .audit import create_audit_log
from .permissions import ensure_permission, TIMECLOCK_READ, TIMECLOCK_WRITE
from .personnel import get_personnel
from .time_entries import EntryType, apply_edit, insert_admin_entry, remove_entry
from .time_rules import ensure_utc, parse_date, utc_now

logger = structlog.get_logger(__name__)


class CorrectionType(str, Enum):
    edit = "edit"
    add_missed = "add_missed"
    delete = "delete"


class CorrectionStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    denied = "denied"


def get_correction(db: Session, correction_id: uuid.UUID) -> TimeCorrection:
    correction = db.query(TimeCorrection).filter(TimeCorrection.id == correction_id).first()
    if not correction:
        raise NotFoundError("Correction not found")
    return correction


def _entry_for(db: Session, entry_id: Optional[uuid.UUID], personnel_id: uuid.UUID) -> TimeEntry:
    if entry_id is None:
        raise ValidationError("A time entry is required for this request")
    entry = db.query(TimeEntry).filter(TimeEntry.id == entry_id).first()
    if not entry:
        raise NotFoundError("Time entry not found")
    if entry.personnel_id != personnel_id:
        raise ValidationError("Time entry belongs to someone else")
    return entry


def request_correction(
    db: Session,
    actor: User,
    personnel_id: uuid.UUID,
    request_type: str,
    date: str,
    reason: str,
    time_entry_id: Optional[uuid.UUID] = None,
    requested_timestamp: Optional[datetime] = None,
    requested_type: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TimeCorrection:
    """
    File a correction request.

    ``edit`` needs the entry and the corrected time, ``delete`` needs the
    entry, ``add_missed`` needs the punch type and time.
    """
    ensure_permission(actor, TIMECLOCK_READ)
    text = require_reason(reason)
    try:
        kind = CorrectionType(request_type)
    except ValueError:
        raise ValidationError(f"Invalid request type: {request_type}")
    parse_date(date)
    person = get_personnel(db, personnel_id)

    current_timestamp = None
    if kind in (CorrectionType.edit, CorrectionType.delete):
        entry = _entry_for(db, time_entry_id, person.id)
        current_timestamp = entry.timestamp
    if kind in (CorrectionType.edit, CorrectionType.add_missed) and requested_timestamp is None:
        raise ValidationError("A requested time is required")
    if kind == CorrectionType.add_missed:
        try:
            requested_type = EntryType(requested_type).value
        except ValueError:
            raise ValidationError(f"Invalid entry type: {requested_type}")

    ts = ensure_utc(now) if now else utc_now()
    with atomic(db):
        correction = TimeCorrection(
            personnel_id=person.id,
            time_entry_id=time_entry_id if kind != CorrectionType.add_missed else None,
            date=date,
            request_type=kind.value,
            current_timestamp=current_timestamp,
            requested_timestamp=ensure_utc(requested_timestamp) if requested_timestamp else None,
            requested_type=requested_type if kind == CorrectionType.add_missed else None,
            reason=text,
            status=CorrectionStatus.pending.value,
            requested_at=ts,
        )
        db.add(correction)
    logger.info("correction_requested", correction_id=str(correction.id), personnel_id=str(person.id), type=kind.value)
    return correction


def _apply(db: Session, actor: User, correction: TimeCorrection, ts: datetime) -> None:
    kind = CorrectionType(correction.request_type)
    if kind == CorrectionType.add_missed:
        insert_admin_entry(
            db, actor, correction.personnel_id, correction.date,
            EntryType(correction.requested_type), correction.requested_timestamp,
            correction.reason, f"Approved missed punch: {correction.reason}", ts,
        )
        return

    entry = db.query(TimeEntry).filter(TimeEntry.id == correction.time_entry_id).first()
    if entry is None:
        raise InvalidStateError("The time entry for this correction no longer exists")
    if kind == CorrectionType.edit:
        apply_edit(db, actor, entry, correction.requested_timestamp, f"Approved correction: {correction.reason}", ts)
    else:
        remove_entry(db, actor, entry, f"Approved correction: {correction.reason}", ts)


def review_correction(
    db: Session,
    actor: User,
    correction_id: uuid.UUID,
    status: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TimeCorrection:
    """
    Approve or deny a pending correction. Approval applies the change in the
    same transaction. A correction is reviewed exactly once; later calls fail
    with ``AlreadyReviewedError`` and change nothing.
    """
    ensure_permission(actor, TIMECLOCK_WRITE)
    try:
        decision = CorrectionStatus(status)
    except ValueError:
        raise ValidationError(f"Invalid review status: {status}")
    if decision == CorrectionStatus.pending:
        raise ValidationError("Review status must be approved or denied")
    correction = get_correction(db, correction_id)
    if correction.status != CorrectionStatus.pending.value:
        raise AlreadyReviewedError("Correction already reviewed")

    ts = ensure_utc(now) if now else utc_now()
    with atomic(db):
        updated = (
            db.query(TimeCorrection)
            .filter(
                TimeCorrection.id == correction.id,
                TimeCorrection.status == CorrectionStatus.pending.value,
            )
            .update({
                "status": decision.value,
                "reviewed_by": actor.id,
                "reviewed_at": ts,
                "review_notes": notes,
            }, synchronize_session=False)
        )
        if updated != 1:
            raise AlreadyReviewedError("Correction already reviewed")
        db.refresh(correction)
        if decision == CorrectionStatus.approved:
            _apply(db, actor, correction, ts)
        create_audit_log(
            db,
            entity_type="time_correction",
            entity_id=correction.id,
            action="APPROVE" if decision == CorrectionStatus.approved else "DENY",
            actor=actor,
            changes_json={"status": {"before": CorrectionStatus.pending.value, "after": decision.value}},
            context={"personnel_id": correction.personnel_id, "request_type": correction.request_type, "notes": notes},
            now=ts,
        )
    logger.info("correction_reviewed", correction_id=str(correction.id), status=decision.value)
    return correction


def _with_names(db: Session, query) -> List[Dict[str, Any]]:
    results = []
    for correction, person in query.all():
        data = {c.name: getattr(correction, c.name) for c in TimeCorrection.__table__.columns}
        data["personnel_name"] = person.full_name
        data["department"] = person.department
        results.append(data)
    return results


def get_pending_corrections(db: Session) -> List[Dict[str, Any]]:
    """Oldest request first."""
    query = (
        db.query(TimeCorrection, Personnel)
        .join(Personnel, Personnel.id == TimeCorrection.personnel_id)
        .filter(TimeCorrection.status == CorrectionStatus.pending.value)
        .order_by(TimeCorrection.requested_at.asc())
    )
    return _with_names(db, query)


def get_corrections(
    db: Session,
    status: Optional[str] = None,
    personnel_id: Optional[uuid.UUID] = None,
) -> List[Dict[str, Any]]:
    query = db.query(TimeCorrection, Personnel).join(Personnel, Personnel.id == TimeCorrection.personnel_id)
    if status:
        try:
            query = query.filter(TimeCorrection.status == CorrectionStatus(status).value)
        except ValueError:
            raise ValidationError(f"Invalid correction status: {status}")
    if personnel_id:
        query = query.filter(TimeCorrection.personnel_id == personnel_id)
    return _with_names(db, query.order_by(TimeCorrection.requested_at.desc()))
