import pytest
import respx
from fastapi.testclient import TestClient

from clinic_scheduler.api import app, get_client
from clinic_scheduler.client import AppointmentClient
from clinic_scheduler.context import ClinicContext
from clinic_scheduler.http import ApiSession

BASE = "http://clinic.test"
KEY = "facade-secret"


@pytest.fixture
def api(monkeypatch):
    monkeypatch.setenv("CLINIC_FACADE_KEY", KEY)
    ctx = ClinicContext(user_id="pat-1", clinic_id="clinic-1")
    app.dependency_overrides[get_client] = lambda: AppointmentClient(session=ApiSession(base_url=f"{BASE}/api", token="t"), context=ctx)
    yield TestClient(app)
    app.dependency_overrides.clear()


def headers(role="Admin"):
    return {"Authorization": f"Bearer {KEY}", "X-User-Role": role}


def test_rejects_missing_key(api):
    resp = api.get("/appointments", headers={"X-User-Role": "Admin"})
    assert resp.status_code == 401


def test_unknown_role_is_forbidden(api):
    resp = api.get("/appointments", headers=headers("Janitor"))
    assert resp.status_code == 403


def test_patient_listing_is_scoped_to_self(api, fixture_json):
    with respx.mock(base_url=BASE) as m:
        route = m.get("/api/appointments").respond(200, json=fixture_json("appointments_list.json"))
        resp = api.get("/appointments", params={"patient_id": "pat-2"}, headers=headers("Patient"))
        assert route.calls.last.request.url.params["patientId"] == "pat-1"
    assert resp.status_code == 200
    assert resp.json()[0]["_id"] == "appt-1"
    assert resp.json()[0]["startTime"].startswith("2030-05-14T09:00:00")


def test_anonymous_patient_cannot_list(api):
    session = ApiSession(base_url=f"{BASE}/api", token="t")
    app.dependency_overrides[get_client] = lambda: AppointmentClient(session=session, context=ClinicContext(clinic_id="clinic-1"))
    with respx.mock(base_url=BASE, assert_all_called=False) as m:
        route = m.route()
        resp = api.get("/appointments", headers=headers("Patient"))
        assert not route.called
    assert resp.status_code == 403
    assert "X-User-Id" in resp.json()["message"]


def test_list_not_found_is_empty(api):
    with respx.mock(base_url=BASE) as m:
        m.get("/api/appointments").respond(404)
        resp = api.get("/appointments", headers=headers())
    assert resp.json() == []


def test_missing_appointment_is_404(api):
    with respx.mock(base_url=BASE) as m:
        m.get("/api/appointments/nope").respond(404, json={"message": "Appointment not found"})
        resp = api.get("/appointments/nope", headers=headers())
    assert resp.status_code == 404
    assert resp.json() == {"message": "Appointment not found"}


def test_receptionist_cannot_complete(api, fixture_json):
    with respx.mock(base_url=BASE, assert_all_called=False) as m:
        m.get("/api/appointments/appt-1").respond(200, json=fixture_json("appointments_list.json")[0])
        put = m.put("/api/appointments/appt-1")
        resp = api.put("/appointments/appt-1/status", json={"status": "Completed"}, headers=headers("Receptionist"))
        assert not put.called
    assert resp.status_code == 403
    assert "Receptionist cannot mark an appointment as Completed" in resp.json()["message"]


def test_permissions_endpoint(api, fixture_json):
    with respx.mock(base_url=BASE) as m:
        m.get("/api/appointments/appt-3").respond(200, json=fixture_json("appointments_list.json")[2])
        resp = api.get("/appointments/appt-3/permissions", headers=headers("Doctor"))
    body = resp.json()
    assert all(not b["enabled"] for b in body["status"])
    assert body["reschedule"] == "A Completed appointment cannot be rescheduled"
    assert body["editMedicalNotes"] is True


def test_booking_outside_hours_is_rejected(api):
    draft = {
        "patientId": "pat-1",
        "doctorId": "doc-7",
        "startTime": "2030-05-14T07:30:00Z",
        "endTime": "2030-05-14T08:00:00Z",
        "serviceType": "Consultation",
    }
    resp = api.post("/appointments", json=draft, headers=headers("Receptionist"))
    assert resp.status_code == 400
    assert resp.json()["fields"] == ["startTime"]


def test_booking_conflict_is_409(api, fixture_json):
    draft = {
        "patientId": "pat-1",
        "doctorId": "doc-7",
        "startTime": "2030-05-14T09:00:00Z",
        "endTime": "2030-05-14T09:30:00Z",
        "serviceType": "Consultation",
    }
    with respx.mock(base_url=BASE, assert_all_called=False) as m:
        m.get("/api/appointments/check-conflicts").respond(200, json=[fixture_json("appointment_get.json")])
        resp = api.post("/appointments", json=draft, headers=headers("Receptionist"))
    assert resp.status_code == 409
    assert resp.json()["conflicts"][0]["_id"] == "appt-123"


def test_admin_deletes(api, fixture_json):
    with respx.mock(base_url=BASE) as m:
        m.get("/api/appointments/appt-1").respond(200, json=fixture_json("appointments_list.json")[0])
        delete = m.delete("/api/appointments/appt-1").respond(200, json={"message": "deleted"})
        resp = api.delete("/appointments/appt-1", headers=headers("Admin"))
        assert delete.called
    assert resp.status_code == 204
