import os
from datetime import date, datetime
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from . import config, permissions
from .booking import book_appointment, validate_slot
from .client import AppointmentClient
from .context import ClinicContext
from .details import AppointmentDetails
from .errors import AuthError, ClinicAPIError, ConflictError, NotFoundError, ValidationError
from .logging import configure_logging
from .models import AppointmentStatus, Role

configure_logging()


class StatusRequest(BaseModel):
    status: AppointmentStatus


class RescheduleRequest(BaseModel):
    start_time: datetime = Field(alias="startTime")
    end_time: datetime = Field(alias="endTime")
    reason: str = ""

    model_config = {
        "populate_by_name": True
    }


# shared facade key; the acting user travels in the X-User-* headers
auth_scheme = HTTPBearer(auto_error=False)

app = FastAPI(title="Clinic Scheduling Service")

_STATUS_FOR_ERROR = (
    (ValidationError, 400),
    (AuthError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
)


@app.exception_handler(ClinicAPIError)
async def clinic_error_handler(request: Request, exc: ClinicAPIError):
    status = next((code for kind, code in _STATUS_FOR_ERROR if isinstance(exc, kind)), 502)
    content: dict[str, Any] = {"message": exc.message}
    if isinstance(exc, ValidationError) and exc.fields:
        content["fields"] = exc.fields
    if isinstance(exc, ConflictError) and exc.conflicts:
        content["conflicts"] = [c.to_wire() if hasattr(c, "to_wire") else c for c in exc.conflicts]
    return JSONResponse(status_code=status, content=content)


def verify_key(credentials: HTTPAuthorizationCredentials = Depends(auth_scheme)):
    """Reject callers that do not present the facade key."""
    key = os.getenv("CLINIC_FACADE_KEY", config.FACADE_KEY)
    if credentials is None or credentials.scheme.lower() != "bearer" or credentials.credentials != key:
        raise HTTPException(status_code=401, detail="Invalid API key")


def acting_role(x_user_role: str = Header(..., alias="X-User-Role")) -> Role:
    try:
        return Role(x_user_role)
    except ValueError:
        raise HTTPException(status_code=403, detail=f"Unknown role {x_user_role!r}")


def get_client(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    x_clinic_id: Optional[str] = Header(None, alias="X-Clinic-Id"),
    role: Role = Depends(acting_role),
) -> AppointmentClient:
    return AppointmentClient(context=ClinicContext(user_id=x_user_id, role=role, clinic_id=x_clinic_id))


@app.get("/appointments", dependencies=[Depends(verify_key)])
async def list_appointments(
    doctor_id: Optional[str] = Query(None),
    patient_id: Optional[str] = Query(None),
    status: Optional[list[AppointmentStatus]] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    limit: Optional[int] = Query(None),
    role: Role = Depends(acting_role),
    client: AppointmentClient = Depends(get_client),
):
    # patients only ever see their own appointments
    if role is Role.PATIENT:
        if not client.context.user_id:
            raise AuthError("Cannot list appointments: a patient must identify themselves with X-User-Id")
        patient_id = client.context.user_id
    appts = await client.list_appointments(
        doctor_id=doctor_id,
        patient_id=patient_id,
        status=status,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
    )
    return [a.to_wire() for a in appts]


@app.get("/appointments/{appt_id}", dependencies=[Depends(verify_key)])
async def get_appointment(appt_id: str, client: AppointmentClient = Depends(get_client)):
    appt = await client.get_by_id(appt_id)
    return appt.to_wire()


@app.get("/appointments/{appt_id}/permissions", dependencies=[Depends(verify_key)])
async def appointment_permissions(
    appt_id: str,
    role: Role = Depends(acting_role),
    client: AppointmentClient = Depends(get_client),
):
    """Enabled/disabled state of every action for the acting role."""
    appt = await client.get_by_id(appt_id)
    details = AppointmentDetails(client, appt, role)
    return {
        "status": [b.model_dump(mode="json") for b in details.status_buttons()],
        "reschedule": details.reschedule_disabled_reason,
        "delete": details.delete_disabled_reason,
        "sendReminder": permissions.can_send_reminder(role),
        "editMedicalNotes": permissions.can_edit_medical_notes(role),
    }


@app.post("/appointments", dependencies=[Depends(verify_key)], status_code=201)
async def book(
    draft: dict[str, Any] = Body(...),
    role: Role = Depends(acting_role),
    client: AppointmentClient = Depends(get_client),
):
    result = await book_appointment(client, draft, role=role)
    return {"appointment": result.appointment.to_wire(), "warnings": result.warnings}


@app.put("/appointments/{appt_id}/status", dependencies=[Depends(verify_key)])
async def set_status(
    appt_id: str,
    req: StatusRequest,
    role: Role = Depends(acting_role),
    client: AppointmentClient = Depends(get_client),
):
    details = AppointmentDetails(client, await client.get_by_id(appt_id), role)
    appt = await details.set_status(req.status)
    return appt.to_wire()


@app.put("/appointments/{appt_id}/reschedule", dependencies=[Depends(verify_key)])
async def reschedule(
    appt_id: str,
    req: RescheduleRequest,
    role: Role = Depends(acting_role),
    client: AppointmentClient = Depends(get_client),
):
    current = await client.get_by_id(appt_id)
    denied = permissions.reschedule_denial_reason(role, current.status)
    if denied:
        raise AuthError(f"Cannot reschedule: {denied}")
    slot = validate_slot(req.start_time, req.end_time)
    appt = await client.reschedule(appt_id, slot.start, slot.end, req.reason)
    return appt.to_wire()


@app.delete("/appointments/{appt_id}", dependencies=[Depends(verify_key)], status_code=204)
async def delete_appointment(
    appt_id: str,
    role: Role = Depends(acting_role),
    client: AppointmentClient = Depends(get_client),
):
    details = AppointmentDetails(client, await client.get_by_id(appt_id), role)
    await details.delete()
    return None


@app.get("/availability", dependencies=[Depends(verify_key)])
async def available_slots(
    doctor_id: str = Query(...),
    day: date = Query(..., alias="date", description="YYYY-MM-DD"),
    client: AppointmentClient = Depends(get_client),
):
    """Open slots for a doctor on a given day."""
    slots = await client.get_available_slots(doctor_id, day)
    return [s.model_dump(mode="json") for s in slots]
