import uuid

import pytest

from conftest import DAY, at
from opshub.errors import AlreadyReviewedError, NotFoundError, ValidationError
from opshub.models.models import AuditLog, TimeCorrection, TimeEntry
from opshub.services.corrections import (
    get_correction,
    get_corrections,
    get_pending_corrections,
    request_correction,
    review_correction,
)
from opshub.services.time_entries import clock_in, day_entries


@pytest.fixture()
def late_punch(db, kiosk, alice):
    return clock_in(db, kiosk, alice.id, now=at("09:10"))


def _edit_request(db, user, person, entry, hhmm="08:58"):
    return request_correction(
        db, user, person.id, "edit", DAY, "Badge reader was down",
        time_entry_id=entry.id, requested_timestamp=at(hhmm), now=at("12:00"),
    )


def test_request_snapshots_current_time(db, viewer, alice, late_punch):
    correction = _edit_request(db, viewer, alice, late_punch)
    assert correction.status == "pending"
    assert correction.current_timestamp.replace(tzinfo=None) == at("09:10").replace(tzinfo=None)
    pending = get_pending_corrections(db)
    assert [c["personnel_name"] for c in pending] == ["Alice Ng"]


def test_request_validation(db, viewer, alice, bob, late_punch):
    with pytest.raises(ValidationError):
        request_correction(db, viewer, alice.id, "edit", DAY, "  ", time_entry_id=late_punch.id,
                           requested_timestamp=at("09:00"))
    with pytest.raises(ValidationError):
        request_correction(db, viewer, alice.id, "edit", DAY, "Wrong time", time_entry_id=late_punch.id)
    with pytest.raises(ValidationError):
        request_correction(db, viewer, alice.id, "delete", DAY, "Duplicate")
    with pytest.raises(ValidationError):
        request_correction(db, viewer, bob.id, "delete", DAY, "Not mine", time_entry_id=late_punch.id)
    with pytest.raises(ValidationError):
        request_correction(db, viewer, alice.id, "add_missed", DAY, "Forgot", requested_type="nap",
                           requested_timestamp=at("12:00"))
    with pytest.raises(ValidationError):
        request_correction(db, viewer, alice.id, "swap", DAY, "Because")
    assert db.query(TimeCorrection).count() == 0


def test_approve_edit_keeps_entry_id(db, viewer, manager, alice, late_punch):
    entry_id = late_punch.id
    correction = _edit_request(db, viewer, alice, late_punch)
    reviewed = review_correction(db, manager, correction.id, "approved", notes="Checked camera", now=at("13:00"))

    assert reviewed.status == "approved"
    assert reviewed.reviewed_by == manager.id
    entry = db.query(TimeEntry).one()
    assert entry.id == entry_id
    assert entry.timestamp.replace(tzinfo=None) == at("08:58").replace(tzinfo=None)
    assert entry.original_timestamp.replace(tzinfo=None) == at("09:10").replace(tzinfo=None)
    assert entry.edit_reason == "Approved correction: Badge reader was down"
    actions = {log.action for log in db.query(AuditLog).all()}
    assert {"UPDATE", "APPROVE"} <= actions


def test_deny_changes_nothing_but_status(db, viewer, manager, alice, late_punch):
    correction = _edit_request(db, viewer, alice, late_punch)
    reviewed = review_correction(db, manager, correction.id, "denied", notes="No evidence")
    assert reviewed.status == "denied"
    entry = db.query(TimeEntry).one()
    assert entry.original_timestamp is None
    assert db.query(AuditLog).filter(AuditLog.action == "DENY").count() == 1
    assert get_pending_corrections(db) == []


@pytest.mark.parametrize("first, second", [("approved", "denied"), ("denied", "approved"), ("approved", "approved")])
def test_review_is_one_shot(db, viewer, manager, alice, late_punch, first, second):
    correction = _edit_request(db, viewer, alice, late_punch)
    review_correction(db, manager, correction.id, first)
    with pytest.raises(AlreadyReviewedError):
        review_correction(db, manager, correction.id, second)
    db.refresh(correction)
    assert correction.status == first
    assert db.query(AuditLog).filter(AuditLog.entity_id == correction.id).count() == 1


def test_racing_review_loses_to_committed_one(db, other_db, viewer, manager, alice, late_punch):
    correction = _edit_request(db, viewer, alice, late_punch)
    stale = get_correction(other_db, correction.id)
    assert stale.status == "pending"
    review_correction(db, manager, correction.id, "approved", now=at("13:00"))

    with pytest.raises(AlreadyReviewedError):
        review_correction(other_db, manager, correction.id, "denied", now=at("13:00"))
    db.refresh(correction)
    assert correction.status == "approved"
    assert db.query(AuditLog).filter(AuditLog.entity_id == correction.id, AuditLog.action == "DENY").count() == 0


def test_review_rejects_pending_and_unknown(db, viewer, manager, alice, late_punch):
    correction = _edit_request(db, viewer, alice, late_punch)
    with pytest.raises(ValidationError):
        review_correction(db, manager, correction.id, "pending")
    with pytest.raises(ValidationError):
        review_correction(db, manager, correction.id, "maybe")
    with pytest.raises(NotFoundError):
        review_correction(db, manager, uuid.uuid4(), "approved")


def test_viewer_cannot_review(db, viewer, alice, late_punch):
    from opshub.errors import PermissionDeniedError

    correction = _edit_request(db, viewer, alice, late_punch)
    with pytest.raises(PermissionDeniedError):
        review_correction(db, viewer, correction.id, "approved")
    db.refresh(correction)
    assert correction.status == "pending"


def test_approve_missed_punch_adds_entry(db, viewer, manager, alice, late_punch):
    correction = request_correction(
        db, viewer, alice.id, "add_missed", DAY, "Forgot to punch out",
        requested_timestamp=at("17:00"), requested_type="clock_out",
    )
    review_correction(db, manager, correction.id, "approved")
    entries = day_entries(db, alice.id, DAY)
    assert [e.type for e in entries] == ["clock_in", "clock_out"]
    assert entries[1].source == "admin"


def test_approve_delete_removes_entry(db, viewer, manager, alice, late_punch):
    entry_id = late_punch.id
    correction = request_correction(db, viewer, alice.id, "delete", DAY, "Punched twice", time_entry_id=entry_id)
    review_correction(db, manager, correction.id, "approved")
    assert db.query(TimeEntry).count() == 0
    assert db.query(AuditLog).filter(AuditLog.entity_id == entry_id, AuditLog.action == "DELETE").count() == 1


def test_approve_after_entry_vanished_rolls_back(db, viewer, manager, alice, late_punch):
    from opshub.errors import InvalidStateError
    from opshub.services.time_entries import delete_entry

    correction = _edit_request(db, viewer, alice, late_punch)
    delete_entry(db, manager, late_punch.id, reason="Bad punch")
    with pytest.raises(InvalidStateError):
        review_correction(db, manager, correction.id, "approved")
    db.refresh(correction)
    assert correction.status == "pending"


def test_list_corrections_by_status(db, viewer, manager, alice, late_punch):
    first = _edit_request(db, viewer, alice, late_punch)
    _edit_request(db, viewer, alice, late_punch, hhmm="09:00")
    review_correction(db, manager, first.id, "denied")
    assert len(get_corrections(db)) == 2
    assert [c["id"] for c in get_corrections(db, status="denied")] == [first.id]
    assert len(get_corrections(db, status="pending", personnel_id=alice.id)) == 1
