import pytest
from fastapi.testclient import TestClient

from clinic_backend import api_main, config
from clinic_backend.errors import UnknownReasonError

DAY = "2026-10-20"


@pytest.fixture
def client():
    with TestClient(api_main.app) as c:
        yield c


@pytest.fixture
def admin():
    return {"Authorization": f"Bearer {config.ADMIN_API_KEY}"}


@pytest.fixture
def doctor(client, admin):
    r = client.post("/api/doctors", json={"name": "Dr. Api", "doctor_type": "General"}, headers=admin)
    assert r.status_code == 201
    doctor_id = r.json()["doctor_id"]
    r = client.put(
        f"/api/doctors/{doctor_id}/windows/{DAY}",
        json={
            "start_time": "11:00",
            "break_start": "13:15",
            "break_end": "14:30",
            "end_time": "16:30",
            "max_appointments": 3,
        },
        headers=admin,
    )
    assert r.status_code == 200
    return doctor_id


def book(client, doctor_id, identity, reason="New Patient"):
    return client.post(
        "/api/visits",
        json={
            "doctor_id": doctor_id,
            "appointment_date": DAY,
            "patient_identity": identity,
            "reason": reason,
            "name": "Test Patient",
            "phone": "0123",
        },
    )


def test_seeded_doctors_listed(client):
    names = [d["name"] for d in client.get("/api/doctors").json()]
    assert "Dr. Sadia Hossain" in names


def test_admin_key_required(client):
    r = client.post("/api/doctors", json={"name": "Dr. Nobody"})
    assert r.status_code == 401
    r = client.post("/api/doctors", json={"name": "Dr. Nobody"}, headers={"Authorization": "Bearer wrong"})
    assert r.status_code == 401


def test_book_and_schedule(client, doctor):
    r1 = book(client, doctor, "1001", "New Patient")
    r2 = book(client, doctor, "1002", "Follow Up")
    assert r1.status_code == 201
    assert r1.json()["serial"] == 1
    assert r1.json()["scheduled_at"] == f"{DAY}T11:00:00"
    assert r2.json()["scheduled_at"] == f"{DAY}T11:10:00"

    schedule = client.get(f"/api/doctors/{doctor}/schedule/{DAY}").json()
    assert [v["serial"] for v in schedule["visits"]] == [1, 2]
    assert schedule["visits"][1]["reason"] == "Follow Up"
    assert schedule["now_serving"] in (1, 2, 3)


def test_client_cannot_choose_serial(client, doctor):
    r = client.post(
        "/api/visits",
        json={
            "doctor_id": doctor,
            "appointment_date": DAY,
            "patient_identity": "1001",
            "reason": "New Patient",
            "serial": 7,
            "scheduled_at": f"{DAY}T09:00:00",
        },
    )
    assert r.json()["serial"] == 1
    assert r.json()["scheduled_at"] == f"{DAY}T11:00:00"


def test_cancel_reschedules(client, doctor):
    v1 = book(client, doctor, "1001", "New Patient").json()
    v2 = book(client, doctor, "1002", "Follow Up").json()
    v3 = book(client, doctor, "1003", "Report Show").json()

    r = client.post(f"/api/visits/{v2['id']}/cancel", json={"outcome": "Absent"})
    assert r.status_code == 200
    assert r.json()["assignments"] == [
        {"visit_id": v1["id"], "serial": 1, "scheduled_at": f"{DAY}T11:00:00"},
        {"visit_id": v3["id"], "serial": 2, "scheduled_at": f"{DAY}T11:10:00"},
    ]
    assert client.get(f"/api/visits/{v2['id']}").json()["status"] == "Absent"

    again = client.post(f"/api/visits/{v2['id']}/cancel")
    assert again.status_code == 409
    assert again.json()["code"] == "visit_not_scheduled"


def test_complete(client, doctor):
    v1 = book(client, doctor, "1001").json()
    book(client, doctor, "1002")
    r = client.post(f"/api/visits/{v1['id']}/complete")
    assert r.status_code == 200
    assert [a["serial"] for a in r.json()["assignments"]] == [1]


def test_capacity_and_duplicate_errors(client, doctor):
    assert book(client, doctor, "1001").status_code == 201

    dup = book(client, doctor, "1001")
    assert dup.status_code == 409
    assert dup.json()["code"] == "duplicate_identity"

    book(client, doctor, "1002")
    book(client, doctor, "1003")
    full = book(client, doctor, "1004")
    assert full.status_code == 409
    assert full.json()["code"] == "capacity_exceeded"


def test_no_window(client, admin):
    doctor_id = client.post("/api/doctors", json={"name": "Dr. Empty"}, headers=admin).json()["doctor_id"]
    r = book(client, doctor_id, "1001")
    assert r.status_code == 404
    assert r.json()["code"] == "no_window"
    assert client.get(f"/api/doctors/{doctor_id}/windows/{DAY}").status_code == 404


def test_unknown_visit(client):
    r = client.post("/api/visits/missing/cancel")
    assert r.status_code == 404
    assert r.json()["code"] == "not_found"


def test_invalid_window(client, doctor, admin):
    r = client.put(
        f"/api/doctors/{doctor}/windows/{DAY}",
        json={"start_time": "14:00", "break_start": "13:15", "break_end": "14:30", "end_time": "16:30"},
        headers=admin,
    )
    assert r.status_code == 422
    assert r.json()["code"] == "invalid_window"
    assert client.get(f"/api/doctors/{doctor}/windows/{DAY}").json()["start_time"] == "11:00:00"


def test_edit_window_moves_booked_visits(client, doctor, admin):
    book(client, doctor, "1001", "Report Show")
    book(client, doctor, "1002", "Follow Up")
    r = client.put(
        f"/api/doctors/{doctor}/windows/{DAY}",
        json={"start_time": "09:00", "break_start": "13:15", "break_end": "14:30", "end_time": "16:30"},
        headers=admin,
    )
    assert [a["scheduled_at"] for a in r.json()["assignments"]] == [f"{DAY}T09:00:00", f"{DAY}T09:12:00"]
    assert client.get(f"/api/doctors/{doctor}/windows/{DAY}").json()["max_appointments"] == 3


def test_explicit_reschedule(client, doctor, admin):
    book(client, doctor, "1001")
    first = client.post(f"/api/doctors/{doctor}/schedule/{DAY}/reschedule", headers=admin).json()
    second = client.post(f"/api/doctors/{doctor}/schedule/{DAY}/reschedule", headers=admin).json()
    assert first == second


def test_unknown_reason_is_generic_error(client, doctor, monkeypatch):
    def boom(*args, **kwargs):
        raise UnknownReasonError("Checkup")

    monkeypatch.setattr(api_main, "book_visit", boom)
    r = book(client, doctor, "1001")
    assert r.status_code == 500
    assert r.json() == {"detail": "Internal error", "code": "internal_error"}


def test_bad_reason_rejected_by_validation(client, doctor):
    assert book(client, doctor, "1001", "Checkup").status_code == 422


def test_notifications_outbox(client, doctor, admin):
    book(client, doctor, "1001")
    pending = client.get("/api/notifications/pending").json()
    assert [n["kind"] for n in pending] == ["Booked"]
    r = client.post(f"/api/notifications/{pending[0]['id']}/sent", headers=admin)
    assert r.json() == {"ok": True}
    assert client.get("/api/notifications/pending").json() == []
