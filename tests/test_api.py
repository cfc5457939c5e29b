import httpx
import pytest
from fastapi.testclient import TestClient

from frontdesk.api import build_manager, create_app
from frontdesk.services import AppointmentManager, SupabaseStore


@pytest.fixture
def client(settings, manager):
    with TestClient(create_app(settings=settings, manager=manager)) as client:
        yield client


def _book(client, **overrides):
    payload = {"patient_id": "p1", "visit_date": "2026-01-15", "visit_time": "10:00", "staff_id": "s1"}
    payload.update(overrides)
    return client.post("/api/appointments", json=payload)


def test_health_and_config(client):
    assert client.get("/api/health").json() == {"status": "ok", "store": True}
    config = client.get("/api/config").json()
    assert config["business_utc_offset_minutes"] == 540
    assert config["demo_date"] is None
    assert config["today"] == "2026-01-15"


def test_wall_clock_booking_is_stored_in_utc(client):
    response = _book(client, duration=60)
    assert response.status_code == 201
    body = response.json()
    assert body["start_at"] == "2026-01-15T01:00:00+00:00"
    assert body["end_at"] == "2026-01-15T02:00:00+00:00"
    assert body["status"] == "scheduled"
    assert body["is_memo_resolved"] is True


def test_conflict_is_409_with_conflicting_id(client):
    first = _book(client).json()
    response = _book(client, patient_id="p2", visit_time="10:30", duration=30)
    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "conflict"
    assert body["conflicting_appointment_id"] == first["id"]

    assert _book(client, patient_id="p2", visit_time="11:00", duration=30).status_code == 201


def test_validation_errors_are_422(client):
    response = _book(client, duration=10)
    assert response.status_code == 422
    assert response.json()["field"] == "duration"

    response = client.post("/api/appointments", json={"patient_id": "p1"})
    assert response.status_code == 422
    assert response.json()["field"] == "start_at"

    response = _book(client, visit_time="7pm")
    assert response.json()["field"] == "visit_time"


def test_iso_start_is_accepted(client):
    response = _book(client, visit_date=None, visit_time=None, start_at="2026-01-15T12:00:00+09:00")
    assert response.status_code == 201
    assert response.json()["start_at"] == "2026-01-15T03:00:00+00:00"


def test_list_by_day_and_range(client):
    _book(client, visit_date="2026-01-15", visit_time="00:00")
    _book(client, visit_date="2026-01-16", visit_time="00:00")

    day = client.get("/api/appointments", params={"date": "2026-01-15"}).json()
    assert [a["start_at"] for a in day] == ["2026-01-14T15:00:00+00:00"]

    today = client.get("/api/appointments").json()
    assert len(today) == 1

    both = client.get("/api/appointments", params={"start": "2026-01-15", "end": "2026-01-16", "staff_id": "s1"}).json()
    assert len(both) == 2

    assert client.get("/api/appointments", params={"start": "2026-01-15"}).status_code == 422


def test_status_lifecycle_over_http(client):
    appointment = _book(client).json()
    url = f"/api/appointments/{appointment['id']}/status"

    assert client.post(url, json={"status": "completed"}).json()["status"] == "completed"
    response = client.post(url, json={"status": "cancelled"})
    assert response.status_code == 409
    assert response.json()["error"] == "invalid_transition"


def test_reschedule_keeps_staff_unless_given(client):
    appointment = _book(client).json()
    url = f"/api/appointments/{appointment['id']}/schedule"

    moved = client.patch(url, json={"visit_date": "2026-01-15", "visit_time": "10:30"}).json()
    assert moved["start_at"] == "2026-01-15T01:30:00+00:00"
    assert moved["staff_id"] == "s1"

    unassigned = client.patch(url, json={"visit_date": "2026-01-15", "visit_time": "10:30", "staff_id": None}).json()
    assert unassigned["staff_id"] is None


def test_memo_endpoints(client):
    appointment = _book(client).json()
    base = f"/api/appointments/{appointment['id']}"

    noted = client.patch(f"{base}/memos", json={"admin_memo": "call before visit"}).json()
    assert noted["is_memo_resolved"] is False
    resolved = client.post(f"{base}/admin-memo", json={"resolved": True, "operator_id": "op1"}).json()
    assert resolved["is_memo_resolved"] is True
    assert resolved["admin_memo_resolved_by"] == "op1"


def test_cancel_future_for_patient(client):
    _book(client)
    _book(client, visit_date="2026-01-20")
    response = client.post("/api/patients/p1/cancel-future", json={})
    assert response.status_code == 200
    assert {a["status"] for a in response.json()["cancelled"]} == {"cancelled"}
    assert len(response.json()["cancelled"]) == 2


def test_unknown_appointment_is_404(client):
    response = client.get("/api/appointments/missing")
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_build_manager_uses_settings(settings):
    manager = build_manager(settings)
    assert manager.default_duration == 60
    assert manager.zone.offset.total_seconds() == 9 * 3600


def test_garbled_store_response_is_502(settings, clock, zone):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>gateway</html>"))
    store = SupabaseStore("https://example.supabase.co", "secret", transport=transport)
    app = create_app(settings=settings, manager=AppointmentManager(store, clock=clock, zone=zone))
    with TestClient(app) as client:
        response = client.get("/api/appointments/a1")
    assert response.status_code == 502
    assert response.json()["error"] == "store_error"
