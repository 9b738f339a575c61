from datetime import timedelta, datetime

from conftest import ALL_GOOD, SIGNATURE, auth_headers


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_requires_token(client):
    assert client.get("/equipment").status_code == 401


def test_viewer_cannot_write(client, viewer, location):
    response = client.post(
        "/equipment/scanner",
        json={"number": "7", "location_id": str(location.id)},
        headers=auth_headers(viewer),
    )
    assert response.status_code == 403


def test_scanner_round_trip(client, manager, alice, location):
    headers = auth_headers(manager)
    created = client.post(
        "/equipment/scanner",
        json={"number": "12", "serial_number": "SN-0012", "location_id": str(location.id)},
        headers=headers,
    )
    assert created.status_code == 201
    equipment_id = created.json()["id"]
    assert created.json()["status"] == "available"

    duplicate = client.post("/equipment/scanner", json={"number": "12", "location_id": str(location.id)}, headers=headers)
    assert duplicate.status_code == 400
    assert duplicate.json()["error"] == "validation"

    agreement = client.post(
        f"/equipment/{equipment_id}/assign",
        json={"personnel_id": str(alice.id), "signature_data": SIGNATURE},
        headers=headers,
    )
    assert agreement.status_code == 201
    assert agreement.json()["equipment_value"] == 100.0

    pdf = client.get(f"/equipment/agreements/{agreement.json()['id']}/pdf", headers=headers)
    assert pdf.status_code == 200
    assert pdf.headers["content-type"] == "application/pdf"
    assert pdf.content.startswith(b"%PDF")

    detail = client.get(f"/equipment/{equipment_id}", headers=headers).json()
    assert detail["status"] == "assigned"
    assert detail["display_name"] == "Scanner #12"
    assert detail["assigned_person_name"] == "Alice Ng"
    assert len(detail["agreements"]) == 1

    returned = client.post(
        f"/equipment/{equipment_id}/return",
        json={"checklist": ALL_GOOD, "overall_condition": "good"},
        headers=headers,
    )
    assert returned.status_code == 201
    again = client.post(
        f"/equipment/{equipment_id}/return",
        json={"checklist": ALL_GOOD, "overall_condition": "good"},
        headers=headers,
    )
    assert again.status_code == 409
    assert again.json()["error"] == "invalid_state"

    history = client.get(f"/equipment/{equipment_id}/history", headers=headers).json()
    assert [h["action"] for h in history][:2] == ["unassigned", "assigned"]


def test_return_rejects_unknown_condition(client, manager, scanner):
    response = client.post(
        f"/equipment/{scanner.id}/return",
        json={"checklist": ALL_GOOD, "overall_condition": "mint"},
        headers=auth_headers(manager),
    )
    assert response.status_code == 422


def test_unknown_equipment_is_404(client, manager):
    response = client.get("/equipment/00000000-0000-0000-0000-000000000000", headers=auth_headers(manager))
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_clock_and_correction_flow(client, kiosk, viewer, manager, alice):
    clocked = client.post("/time-clock/clock-in", json={"personnel_id": str(alice.id)}, headers=auth_headers(kiosk))
    assert clocked.status_code == 201
    entry = clocked.json()
    assert entry["type"] == "clock_in"

    status = client.get(f"/time-clock/status/{alice.id}", headers=auth_headers(viewer)).json()
    assert status["status"] == "clocked_in"

    punched_at = datetime.fromisoformat(entry["timestamp"])
    requested = client.post(
        "/time-clock/corrections",
        json={
            "personnel_id": str(alice.id),
            "request_type": "edit",
            "date": entry["date"],
            "reason": "Badge reader was slow",
            "time_entry_id": entry["id"],
            "requested_timestamp": (punched_at - timedelta(minutes=5)).isoformat(),
        },
        headers=auth_headers(viewer),
    )
    assert requested.status_code == 201
    correction_id = requested.json()["id"]

    pending = client.get("/time-clock/corrections/pending", headers=auth_headers(manager)).json()
    assert [c["id"] for c in pending] == [correction_id]

    forbidden = client.post(
        f"/time-clock/corrections/{correction_id}/review",
        json={"status": "approved"},
        headers=auth_headers(viewer),
    )
    assert forbidden.status_code == 403

    reviewed = client.post(
        f"/time-clock/corrections/{correction_id}/review",
        json={"status": "approved", "notes": "OK"},
        headers=auth_headers(manager),
    )
    assert reviewed.status_code == 200
    assert reviewed.json()["status"] == "approved"

    again = client.post(
        f"/time-clock/corrections/{correction_id}/review",
        json={"status": "denied"},
        headers=auth_headers(manager),
    )
    assert again.status_code == 409
    assert again.json()["error"] == "already_reviewed"


def test_attendance_write_up_via_api(client, manager, alice):
    headers = auth_headers(manager)
    record = client.put(
        "/attendance",
        json={"personnel_id": str(alice.id), "date": "2026-06-10", "status": "late", "minutes_late": 12},
        headers=headers,
    )
    assert record.status_code == 200
    attendance_id = record.json()["id"]

    first = client.post(f"/attendance/{attendance_id}/write-up", headers=headers)
    assert first.status_code == 201
    assert first.json()["severity"] == "verbal_warning"

    second = client.post(f"/attendance/{attendance_id}/write-up", json={"action_taken": "Talked"}, headers=headers)
    assert second.status_code == 409
    assert second.json()["error"] == "already_linked"
