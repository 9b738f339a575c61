from conftest import at, auth_headers
from opshub.auth.security import create_access_token, verify_password
from opshub.services.audit import compute_diff, get_audit_logs, verify_integrity
from opshub.services.time_entries import clock_in, delete_entry, edit_entry


def test_compute_diff_keeps_changed_fields_only():
    before = {"timestamp": "09:10", "type": "clock_in", "notes": None}
    after = {"timestamp": "09:00", "type": "clock_in", "edit_reason": "Late badge"}
    assert compute_diff(before, after) == {
        "timestamp": {"before": "09:10", "after": "09:00"},
        "edit_reason": {"before": None, "after": "Late badge"},
    }


def test_audit_entries_are_listed_newest_first(db, kiosk, manager, alice):
    entry = clock_in(db, kiosk, alice.id, now=at("09:10"))
    entry_id = entry.id
    edit_entry(db, manager, entry_id, at("09:00"), "Badge reader was down", now=at("10:00"))
    delete_entry(db, manager, entry_id, reason="Duplicate", now=at("11:00"))

    logs = get_audit_logs(db, entity_type="time_entry", entity_id=entry_id)
    assert [log.action for log in logs] == ["DELETE", "UPDATE"]
    assert logs[0].actor_role == "manager"
    assert logs[0].source == "api"
    assert get_audit_logs(db, entity_type="write_up") == []


def test_integrity_hash_detects_tampering(db, kiosk, manager, alice):
    entry = clock_in(db, kiosk, alice.id, now=at("09:10"))
    edit_entry(db, manager, entry.id, at("09:00"), "Badge reader was down", now=at("10:00"))
    log = get_audit_logs(db, entity_id=entry.id)[0]
    assert verify_integrity(log)
    assert not verify_integrity(log, secret="another-secret")
    log.context = {"reason": "Edited later"}
    assert not verify_integrity(log)


def test_password_hashes_verify(manager):
    assert verify_password("password", manager.password_hash)
    assert not verify_password("hunter2", manager.password_hash)


def test_expired_token_is_rejected(client, manager):
    token = create_access_token(manager.id, roles=["manager"], ttl_seconds=-60)
    response = client.get("/equipment", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Token expired"
    assert client.get("/equipment", headers=auth_headers(manager)).status_code == 200


def test_request_id_is_echoed(client, manager):
    response = client.get("/equipment", headers={**auth_headers(manager), "X-Request-ID": "abc-123"})
    assert response.headers["X-Request-ID"] == "abc-123"
