"""
Generic audit trail for time entries, corrections, write-ups and equipment
deletes.

Rows are added to the caller's session and flushed, never committed here:
they survive only if the surrounding transaction does. Each row carries a
SHA256 hash over its canonical JSON so later tampering can be detected with
``verify_integrity``.
"""
import hashlib
import json
import uuid
from datetime import datetime
from typing import Optional, Dict, Any, List
from sqlalchemy.orm import Session

from ..models.models import AuditLog, User
from ..config import settings
from .time_rules import ensure_utc, utc_now


def actor_role(user: Optional[User]) -> Optional[str]:
    """Alphabetically first role name, recorded as the actor's role."""
    if user is None:
        return None
    names = sorted(r.name for r in user.roles)
    return names[0] if names else None


def _jsonable(value: Optional[Dict[str, Any]]):
    # JSON columns need plain types (UUIDs and datetimes become strings)
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


def _integrity_hash(entry: AuditLog, secret: str) -> str:
    canonical = {
        "entity_type": entry.entity_type,
        "entity_id": str(entry.entity_id),
        "action": entry.action,
        "actor_id": str(entry.actor_id) if entry.actor_id else None,
        "actor_role": entry.actor_role,
        "source": entry.source,
        "timestamp_utc": ensure_utc(entry.timestamp_utc).isoformat(),
        "changes": entry.changes_json,
        "context": entry.context,
    }
    canonical = {k: v for k, v in canonical.items() if v is not None}
    payload = json.dumps(canonical, sort_keys=True, default=str)
    return hashlib.sha256(f"{payload}:{secret}".encode()).hexdigest()


def create_audit_log(
    db: Session,
    entity_type: str,
    entity_id,
    action: str,
    actor: Optional[User] = None,
    source: Optional[str] = None,
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
    now: Optional[datetime] = None,
) -> AuditLog:
    """
    Append an audit entry.

    Args:
        entity_type: time_entry|time_correction|equipment|write_up
        action: CREATE|UPDATE|DELETE|APPROVE|DENY|FORCE_CLOCK_OUT
        actor: user who performed the action (None for system jobs)
        changes_json: before/after values, see ``compute_diff``
        context: extra facts (personnel id, reason, snapshot of deleted rows)
    """
    entry = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id if isinstance(entity_id, uuid.UUID) else uuid.UUID(str(entity_id)),
        action=action,
        actor_id=actor.id if actor is not None else None,
        actor_role=actor_role(actor),
        source=source or ("api" if actor is not None else "system"),
        changes_json=_jsonable(changes_json),
        timestamp_utc=ensure_utc(now) if now else utc_now(),
        context=_jsonable(context),
    )
    entry.integrity_hash = _integrity_hash(entry, settings.jwt_secret)
    db.add(entry)
    db.flush()
    return entry


def verify_integrity(entry: AuditLog, secret: Optional[str] = None) -> bool:
    """True when the stored hash still matches the row's content."""
    return entry.integrity_hash == _integrity_hash(entry, secret or settings.jwt_secret)


def get_audit_logs(
    db: Session,
    entity_type: Optional[str] = None,
    entity_id=None,
    limit: int = 100,
    offset: int = 0,
) -> List[AuditLog]:
    """Newest first."""
    query = db.query(AuditLog)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id:
        query = query.filter(AuditLog.entity_id == entity_id)
    return query.order_by(AuditLog.timestamp_utc.desc()).limit(limit).offset(offset).all()


def compute_diff(before: Dict, after: Dict) -> Dict:
    """{field: {"before": old, "after": new}} for every field that changed."""
    return {
        key: {"before": before.get(key), "after": after.get(key)}
        for key in set(before) | set(after)
        if before.get(key) != after.get(key)
    }
