import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest
import respx

from clinic_scheduler.details import AppointmentDetails
from clinic_scheduler.errors import AuthError, ServerError, ValidationError
from clinic_scheduler.models import Appointment, AppointmentStatus, Role

BASE = "http://clinic.test"
NOW = datetime(2030, 5, 1, 12, tzinfo=timezone.utc)


@pytest.fixture
def scheduled(fixture_json):
    return Appointment.model_validate(fixture_json("appointments_list.json")[0])


def test_status_buttons_explain_disabled_states(client, scheduled):
    details = AppointmentDetails(client, scheduled, Role.DOCTOR)
    buttons = {b.status: b for b in details.status_buttons()}
    assert buttons[AppointmentStatus.COMPLETED].enabled
    assert buttons[AppointmentStatus.SCHEDULED].current
    assert not buttons[AppointmentStatus.SCHEDULED].enabled
    assert buttons[AppointmentStatus.CANCELLED].disabled_reason == "Doctor cannot mark an appointment as Cancelled"
    assert buttons[AppointmentStatus.NO_SHOW].disabled_reason == "Doctor cannot mark an appointment as No Show"


def test_patient_sees_every_status_disabled(client, scheduled):
    details = AppointmentDetails(client, scheduled, "Patient")
    assert not any(b.enabled for b in details.status_buttons())


@pytest.mark.asyncio
async def test_completed_override(client, scheduled, fixture_json):
    completed = {**fixture_json("appointments_list.json")[0], "status": "Completed"}
    cancelled = {**completed, "status": "Cancelled"}

    with respx.mock(base_url=BASE) as m:
        route = m.put("/api/appointments/appt-1")
        route.respond(200, json=completed)
        doctor_view = AppointmentDetails(client, scheduled, Role.DOCTOR)
        after = await doctor_view.set_status(AppointmentStatus.COMPLETED)
        assert after.status is AppointmentStatus.COMPLETED
        assert json.loads(route.calls.last.request.content) == {"status": "Completed"}

        receptionist_view = AppointmentDetails(client, after, Role.RECEPTIONIST)
        with pytest.raises(AuthError) as exc:
            await receptionist_view.set_status("Cancelled")
        assert "Only an Admin" in exc.value.message
        assert route.call_count == 1

        route.respond(200, json=cancelled)
        admin_view = AppointmentDetails(client, after, Role.ADMIN)
        result = await admin_view.set_status("Cancelled")
        assert result.status is AppointmentStatus.CANCELLED
        assert route.call_count == 2


@pytest.mark.parametrize("role", list(Role))
@pytest.mark.asyncio
async def test_cancelled_appointments_cannot_be_rescheduled(client, fixture_json, role):
    appt = Appointment.model_validate({**fixture_json("appointments_list.json")[0], "status": "Cancelled"})
    details = AppointmentDetails(client, appt, role)
    assert details.reschedule_disabled_reason
    with pytest.raises(AuthError):
        await details.reschedule("2030-05-20", "10:00", "Patient asked", now=NOW)


@pytest.mark.asyncio
async def test_reschedule_shows_pending_entry_and_rolls_back_on_failure(client, scheduled):
    details = AppointmentDetails(client, scheduled, Role.RECEPTIONIST)
    seen = []

    def fail(request):
        seen.append([e.pending for e in details.history])
        return httpx.Response(500, json={"message": "calendar service down"})

    with respx.mock(base_url=BASE) as m:
        m.put("/api/appointments/appt-1/reschedule").mock(side_effect=fail)
        with pytest.raises(ServerError):
            await details.reschedule("2030-05-20", "10:00", "Doctor on leave", now=NOW)

    assert seen == [[True]]
    assert details.history == []
    assert not details.busy


@pytest.mark.asyncio
async def test_cancelled_reschedule_drops_pending_entry(scheduled):
    gate = asyncio.Event()

    class SlowClient:
        async def reschedule(self, appt_id, start, end, reason):
            await gate.wait()

    details = AppointmentDetails(SlowClient(), scheduled, Role.ADMIN, actor="user-9")
    task = asyncio.ensure_future(details.reschedule("2030-05-20", "10:00", "Doctor on leave", now=NOW))
    await asyncio.sleep(0)
    assert [e.pending for e in details.history] == [True]

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert details.history == []
    assert not details.busy


@pytest.mark.asyncio
async def test_reschedule_success_keeps_duration_and_confirms_entry(client, scheduled, fixture_json):
    details = AppointmentDetails(client, scheduled, Role.ADMIN, actor="user-9")
    moved = {**fixture_json("appointments_list.json")[0], "startTime": "2030-05-20T10:00:00.000Z", "endTime": "2030-05-20T10:30:00.000Z"}

    with respx.mock(base_url=BASE) as m:
        route = m.put("/api/appointments/appt-1/reschedule").respond(200, json={"appointment": moved})
        updated = await details.reschedule("2030-05-20", "10:00", "Doctor on leave", now=NOW)
        body = json.loads(route.calls.last.request.content)

    assert body == {"startTime": "2030-05-20T10:00:00.000Z", "endTime": "2030-05-20T10:30:00.000Z", "reason": "Doctor on leave"}
    assert updated.start_time == datetime(2030, 5, 20, 10, tzinfo=timezone.utc)
    assert len(details.history) == 1
    entry = details.history[0]
    assert not entry.pending
    assert entry.previous_start_time == scheduled.start_time
    assert entry.rescheduled_by == "user-9"


@pytest.mark.asyncio
async def test_reschedule_adopts_server_history(client, scheduled, fixture_json):
    details = AppointmentDetails(client, scheduled, Role.ADMIN)
    with respx.mock(base_url=BASE) as m:
        m.put("/api/appointments/appt-1/reschedule").respond(200, json=fixture_json("appointment_get.json"))
        await details.reschedule("2030-05-14", "09:00", "Moved", now=NOW)
    assert [e.reason for e in details.history] == ["Doctor unavailable"]


@pytest.mark.asyncio
async def test_reschedule_rejects_past_and_bad_input(client, scheduled):
    details = AppointmentDetails(client, scheduled, Role.ADMIN)
    with pytest.raises(ValidationError):
        await details.reschedule("2030-04-20", "10:00", "Too late", now=NOW)
    with pytest.raises(ValidationError):
        await details.reschedule("2030-05-20", "25:00", "Bad time", now=NOW)
    with pytest.raises(ValidationError):
        await details.reschedule("2030-05-20", "10:00", "  ", now=NOW)
    assert details.history == []


@pytest.mark.asyncio
async def test_medical_notes_are_doctor_and_admin_only(client, scheduled, fixture_json):
    with pytest.raises(AuthError):
        await AppointmentDetails(client, scheduled, Role.RECEPTIONIST).save_medical_notes(diagnosis="Eczema")

    with respx.mock(base_url=BASE) as m:
        route = m.put("/api/appointments/appt-1").respond(200, json=fixture_json("appointments_list.json")[0])
        await AppointmentDetails(client, scheduled, Role.DOCTOR).save_medical_notes(
            diagnosis="Eczema", symptoms=["itching"], vital_signs={"heartRate": 70}
        )
        body = json.loads(route.calls.last.request.content)
    assert body == {"diagnosis": "Eczema", "symptoms": ["itching"], "vitalSigns": {"heartRate": 70.0}}


@pytest.mark.asyncio
async def test_reminder_and_delete_permissions(client, scheduled):
    with pytest.raises(AuthError):
        await AppointmentDetails(client, scheduled, Role.DOCTOR).send_reminder()
    with pytest.raises(AuthError):
        await AppointmentDetails(client, scheduled, Role.NURSE).delete()

    with respx.mock(base_url=BASE) as m:
        reminder = m.post("/api/appointments/appt-1/reminder").respond(200, json={"sent": True})
        delete = m.delete("/api/appointments/appt-1").respond(200, json={"message": "deleted"})
        details = AppointmentDetails(client, scheduled, Role.RECEPTIONIST)
        assert await details.send_reminder() == {"sent": True}
        await details.delete()
        assert reminder.called and delete.called
