import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Column,
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Table,
    Integer,
    Float,
    Numeric,
    JSON,
    UniqueConstraint,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


# Association table for many-to-many User<->Role
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", UUID(as_uuid=True), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    UniqueConstraint("user_id", "role_id", name="uq_user_role"),
)

# Association table for many-to-many Shift<->Personnel
shift_personnel = Table(
    "shift_personnel",
    Base.metadata,
    Column("shift_id", UUID(as_uuid=True), ForeignKey("shifts.id", ondelete="CASCADE"), primary_key=True),
    Column("personnel_id", UUID(as_uuid=True), ForeignKey("personnel.id", ondelete="CASCADE"), primary_key=True),
    UniqueConstraint("shift_id", "personnel_id", name="uq_shift_personnel"),
)


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)  # super_admin|admin|manager|viewer
    description: Mapped[Optional[str]] = mapped_column(String(255))
    permissions: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)

    users = relationship("User", secondary=user_roles, back_populates="roles")


class User(Base):
    """Console user (managers, admins). Employees on the floor are Personnel."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    permissions_override: Mapped[Optional[dict]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    roles = relationship("Role", secondary=user_roles, back_populates="users")


class Location(Base):
    __tablename__ = "locations"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    address: Mapped[Optional[str]] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class Personnel(Base):
    """Employees who clock in, get scheduled and sign for equipment"""
    __tablename__ = "personnel"

    id: Mapped[uuid.UUID] = uuid_pk()
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    position: Mapped[Optional[str]] = mapped_column(String(255))
    department: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    location_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("locations.id", ondelete="SET NULL"))
    status: Mapped[str] = mapped_column(String(50), default="active", index=True)  # active|on_leave|terminated
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Shift(Base):
    """Scheduled shift for a date; source of scheduled start times"""
    __tablename__ = "shifts"

    id: Mapped[uuid.UUID] = uuid_pk()
    date: Mapped[str] = mapped_column(String(10), nullable=False, index=True)  # YYYY-MM-DD (local)
    name: Mapped[Optional[str]] = mapped_column(String(100))  # Morning|Evening|...
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)  # HH:MM (local)
    end_time: Mapped[Optional[str]] = mapped_column(String(5))  # HH:MM (local)
    department: Mapped[Optional[str]] = mapped_column(String(255))
    position: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    personnel = relationship("Personnel", secondary=shift_personnel)


# ---------- EQUIPMENT ----------

class Equipment(Base):
    """Scanners, pickers, vehicles and computers"""
    __tablename__ = "equipment"

    id: Mapped[uuid.UUID] = uuid_pk()
    equipment_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # scanner|picker|vehicle|computer
    number: Mapped[str] = mapped_column(String(100), nullable=False, index=True)  # Unit number, VIN or asset tag
    serial_number: Mapped[Optional[str]] = mapped_column(String(255))
    pin: Mapped[Optional[str]] = mapped_column(String(50))
    model: Mapped[Optional[str]] = mapped_column(String(255))
    location_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("locations.id", ondelete="SET NULL"), index=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # see services.equipment_registry
    assigned_to: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("personnel.id", ondelete="SET NULL"), index=True)
    assigned_person_name: Mapped[Optional[str]] = mapped_column(String(255))  # Name snapshot at assignment
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    purchase_date: Mapped[Optional[str]] = mapped_column(String(10))
    last_maintenance_date: Mapped[Optional[str]] = mapped_column(String(10))
    condition_notes: Mapped[Optional[str]] = mapped_column(Text)
    retired_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    retired_reason: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))

    # Relationships
    agreements = relationship("EquipmentAgreement", back_populates="equipment", cascade="all, delete-orphan", passive_deletes=True, order_by="EquipmentAgreement.signed_at.desc()")
    condition_checks = relationship("EquipmentConditionCheck", back_populates="equipment", cascade="all, delete-orphan", passive_deletes=True, order_by="EquipmentConditionCheck.checked_at.desc()")
    history = relationship("EquipmentHistory", back_populates="equipment", cascade="all, delete-orphan", passive_deletes=True, order_by="EquipmentHistory.created_at.desc()")

    __table_args__ = (
        Index('idx_equipment_type_status', 'equipment_type', 'status'),
        UniqueConstraint('equipment_type', 'location_id', 'number', name='uq_equipment_type_location_number'),
    )


class EquipmentAgreement(Base):
    """Signed responsibility agreement; one per assignment leg, never edited"""
    __tablename__ = "equipment_agreements"

    id: Mapped[uuid.UUID] = uuid_pk()
    equipment_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment.id", ondelete="CASCADE"), nullable=False, index=True)
    equipment_type: Mapped[str] = mapped_column(String(50), nullable=False)
    equipment_number: Mapped[str] = mapped_column(String(100), nullable=False)  # Snapshot at signing
    serial_number: Mapped[Optional[str]] = mapped_column(String(255))  # Snapshot at signing
    personnel_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("personnel.id", ondelete="CASCADE"), nullable=False, index=True)
    personnel_name: Mapped[str] = mapped_column(String(255), nullable=False)
    equipment_value: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    agreement_text: Mapped[str] = mapped_column(Text, nullable=False)
    signature_data: Mapped[str] = mapped_column(Text, nullable=False)  # Base64 data URL
    signed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    witnessed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    witnessed_by_name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    equipment = relationship("Equipment", back_populates="agreements")


class EquipmentConditionCheck(Base):
    """Condition checklist performed on return and before reassignment"""
    __tablename__ = "equipment_condition_checks"

    id: Mapped[uuid.UUID] = uuid_pk()
    equipment_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment.id", ondelete="CASCADE"), nullable=False, index=True)
    equipment_type: Mapped[str] = mapped_column(String(50), nullable=False)
    returned_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("personnel.id", ondelete="SET NULL"), index=True)
    returned_by_name: Mapped[Optional[str]] = mapped_column(String(255))
    checked_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    checked_by_name: Mapped[str] = mapped_column(String(255), nullable=False)
    checklist: Mapped[dict] = mapped_column(JSON, nullable=False)  # {physical_condition: bool, screen_functional: bool, ...}
    overall_condition: Mapped[str] = mapped_column(String(20), nullable=False)  # excellent|good|fair|poor|damaged
    damage_notes: Mapped[Optional[str]] = mapped_column(Text)
    repair_required: Mapped[bool] = mapped_column(Boolean, default=False)
    ready_for_reassignment: Mapped[bool] = mapped_column(Boolean, default=True)
    deduction_required: Mapped[bool] = mapped_column(Boolean, default=False)
    deduction_amount: Mapped[Optional[float]] = mapped_column(Numeric(10, 2))
    sign_off_signature: Mapped[Optional[str]] = mapped_column(Text)  # Manager sign-off (reassignment)
    checked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    equipment = relationship("Equipment", back_populates="condition_checks")


class EquipmentHistory(Base):
    """Append-only audit trail of equipment state changes"""
    __tablename__ = "equipment_history"

    id: Mapped[uuid.UUID] = uuid_pk()
    equipment_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment.id", ondelete="CASCADE"), nullable=False, index=True)
    equipment_type: Mapped[str] = mapped_column(String(50), nullable=False)
    transaction_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)  # Groups rows of one lifecycle operation
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # assigned|unassigned|status_change|condition_check
    previous_status: Mapped[Optional[str]] = mapped_column(String(50))
    new_status: Mapped[Optional[str]] = mapped_column(String(50))
    previous_assignee_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    previous_assignee_name: Mapped[Optional[str]] = mapped_column(String(255))
    new_assignee_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    new_assignee_name: Mapped[Optional[str]] = mapped_column(String(255))
    condition_check_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("equipment_condition_checks.id", ondelete="SET NULL"))
    performed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    performed_by_name: Mapped[str] = mapped_column(String(255), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    sequence: Mapped[int] = mapped_column(Integer, default=0)  # Order within a transaction

    equipment = relationship("Equipment", back_populates="history")

    __table_args__ = (
        Index('idx_equipment_history_equipment_created', 'equipment_id', 'created_at'),
    )


# ---------- TIME CLOCK ----------

class TimeEntry(Base):
    """Raw clock events (clock in/out, breaks)"""
    __tablename__ = "time_entries"

    id: Mapped[uuid.UUID] = uuid_pk()
    personnel_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("personnel.id", ondelete="CASCADE"), nullable=False, index=True)
    date: Mapped[str] = mapped_column(String(10), nullable=False, index=True)  # YYYY-MM-DD (local)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # clock_in|clock_out|break_start|break_end
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    source: Mapped[str] = mapped_column(String(20), default="kiosk")  # admin|mobile|kiosk
    location_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("locations.id", ondelete="SET NULL"))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    # Edit tracking
    edited_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    edited_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    original_timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))  # Value before first edit
    edit_reason: Mapped[Optional[str]] = mapped_column(Text)
    # Late tracking (clock_in only)
    scheduled_start: Mapped[Optional[str]] = mapped_column(String(5))
    minutes_late: Mapped[Optional[int]] = mapped_column(Integer)
    is_late: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    __table_args__ = (
        Index('idx_time_entries_personnel_date', 'personnel_id', 'date'),
    )


class TimeCorrection(Base):
    """Employee-submitted correction request, reviewed once by a manager"""
    __tablename__ = "time_corrections"

    id: Mapped[uuid.UUID] = uuid_pk()
    personnel_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("personnel.id", ondelete="CASCADE"), nullable=False, index=True)
    time_entry_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("time_entries.id", ondelete="SET NULL"))
    date: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    request_type: Mapped[str] = mapped_column(String(20), nullable=False)  # edit|add_missed|delete
    current_timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    requested_timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    requested_type: Mapped[Optional[str]] = mapped_column(String(20))
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # pending|approved|denied
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    review_notes: Mapped[Optional[str]] = mapped_column(Text)


# ---------- ATTENDANCE ----------

class Attendance(Base):
    """Per-person daily attendance outcome; write-ups link here"""
    __tablename__ = "attendance"

    id: Mapped[uuid.UUID] = uuid_pk()
    personnel_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("personnel.id", ondelete="CASCADE"), nullable=False, index=True)
    date: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False)  # present|late|absent|excused|no_call_no_show
    scheduled_start: Mapped[Optional[str]] = mapped_column(String(5))
    scheduled_end: Mapped[Optional[str]] = mapped_column(String(5))
    actual_start: Mapped[Optional[str]] = mapped_column(String(5))
    actual_end: Mapped[Optional[str]] = mapped_column(String(5))
    minutes_late: Mapped[Optional[int]] = mapped_column(Integer)
    hours_worked: Mapped[Optional[float]] = mapped_column(Float)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint('personnel_id', 'date', name='uq_attendance_personnel_date'),
    )


class WriteUp(Base):
    """Disciplinary record"""
    __tablename__ = "write_ups"

    id: Mapped[uuid.UUID] = uuid_pk()
    personnel_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("personnel.id", ondelete="CASCADE"), nullable=False, index=True)
    attendance_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("attendance.id", ondelete="SET NULL"), unique=True)
    date: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False)  # attendance|behavior|safety|performance|policy_violation
    severity: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # verbal_warning|written_warning|final_warning|suspension
    description: Mapped[str] = mapped_column(Text, nullable=False)
    action_taken: Mapped[Optional[str]] = mapped_column(Text)
    follow_up_required: Mapped[bool] = mapped_column(Boolean, default=False)
    follow_up_date: Mapped[Optional[str]] = mapped_column(String(10))
    follow_up_notes: Mapped[Optional[str]] = mapped_column(Text)
    issued_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    issued_by_name: Mapped[Optional[str]] = mapped_column(String(255))
    acknowledged_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (
        Index('idx_write_ups_personnel_category_created', 'personnel_id', 'category', 'created_at'),
    )


class AuditLog(Base):
    """Append-only audit log for time clock and destructive equipment actions"""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # time_entry|time_correction|equipment|write_up
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # CREATE|UPDATE|DELETE|APPROVE|DENY|FORCE_CLOCK_OUT
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    actor_role: Mapped[Optional[str]] = mapped_column(String(50))
    source: Mapped[Optional[str]] = mapped_column(String(50))  # api|system
    changes_json: Mapped[Optional[dict]] = mapped_column(JSON)  # Before/after diff
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)
    context: Mapped[Optional[dict]] = mapped_column(JSON)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
        Index('idx_audit_actor', 'actor_id', 'timestamp_utc'),
    )
