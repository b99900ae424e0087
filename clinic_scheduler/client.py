"""Async client for the clinic appointments API.

Every call is a fresh request; nothing is cached. Identifiers are normalized
with :func:`normalize_id` and dates are exchanged as ISO-8601 strings on the
wire and aware datetimes in memory.
"""
from __future__ import annotations
import asyncio
import json
import re
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable

import pydantic
import structlog

from .context import ClinicContext
from .errors import NotFoundError, ServerError, ValidationError
from .http import ApiSession
from .models import Appointment, AppointmentStats, AppointmentStatus, AvailabilitySlot
from .normalize import normalize_id, parse_instant, to_wire
from .timeutils import clinic_tz, start_of_day, utcnow

logger = structlog.get_logger(__name__)

REQUIRED_FIELDS = ("patientId", "doctorId", "startTime", "endTime", "serviceType", "clinicId")
_ID_FIELDS = ("patientId", "doctorId", "clinicId")
_DATE_FIELDS = ("startTime", "endTime")
_DEFAULT_REASON = "Medical appointment"

_snake = re.compile(r"_([a-z])")


def _camel(key: str) -> str:
    if key.startswith("_"):
        return key
    return _snake.sub(lambda m: m.group(1).upper(), key)


def _wire_dict(data: Any) -> dict[str, Any]:
    """Accept a model or a dict with snake_case or camelCase keys; return camelCase."""
    if isinstance(data, pydantic.BaseModel):
        data = data.model_dump(by_alias=True, exclude_none=True, mode="json")
    if not isinstance(data, dict):
        raise ValidationError("Appointment data must be a mapping", fields=[])
    return {_camel(k): v for k, v in data.items()}


def _status_value(status: Any) -> str:
    return status.value if isinstance(status, AppointmentStatus) else str(status)


def _unwrap(payload: Any, *keys: str) -> Any:
    if isinstance(payload, dict):
        for key in keys:
            if key in payload:
                return payload[key]
    return payload


def _to_appointment(payload: Any) -> Appointment:
    try:
        return Appointment.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise ServerError("Backend returned a malformed appointment", details=str(exc)) from exc


def _to_appointments(payload: Any) -> list[Appointment]:
    items = _unwrap(payload, "appointments", "data")
    if items is None:
        return []
    if not isinstance(items, list):
        raise ServerError("Backend returned a malformed appointment list")
    return [_to_appointment(item) for item in items]


class AppointmentClient:
    """Appointment CRUD, queries and workflow calls.

    Mutations of the same appointment with the same payload share one
    in-flight request, so a double click issues a single write.
    """

    def __init__(self, session: ApiSession | None = None, context: ClinicContext | None = None):
        self.session = session or ApiSession()
        self.context = context or ClinicContext()
        self._inflight: dict[tuple[str, str, str], asyncio.Task] = {}

    async def _once(self, op: str, key: str | None, body: Any, call: Callable[[], Awaitable[Any]]) -> Any:
        fingerprint = (op, key or "", json.dumps(body, sort_keys=True, default=str))
        task = self._inflight.get(fingerprint)
        if task is None:
            task = asyncio.ensure_future(call())
            self._inflight[fingerprint] = task
            task.add_done_callback(lambda _t: self._inflight.pop(fingerprint, None))
        else:
            logger.debug("joining in-flight request", op=op, appointment_id=key)
        return await task

    @staticmethod
    def _require_id(appt_id: Any) -> str:
        value = normalize_id(appt_id)
        if not value:
            raise ValidationError("An appointment ID is required", fields=["id"])
        return value

    def _query(
        self,
        clinic_id: Any = None,
        doctor_id: Any = None,
        patient_id: Any = None,
        start_date: Any = None,
        end_date: Any = None,
        status: Any = None,
        limit: int | None = None,
        sort: str | None = None,
        page: int | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {}
        resolved = self.context.resolve_clinic_id(clinic_id)
        if resolved:
            params["clinicId"] = resolved
        else:
            logger.warning("no clinic id for appointment query")
        if normalize_id(doctor_id):
            params["doctorId"] = normalize_id(doctor_id)
        if normalize_id(patient_id):
            params["patientId"] = normalize_id(patient_id)
        if start_date is not None:
            params["startDate"] = to_wire(start_date, "startDate")
        if end_date is not None:
            params["endDate"] = to_wire(end_date, "endDate")
        if status is not None:
            if isinstance(status, (list, tuple, set, frozenset)):
                params["status[]"] = [_status_value(s) for s in status]
            else:
                params["status"] = _status_value(status)
        if limit is not None:
            params["limit"] = limit
        if sort:
            params["sort"] = sort
        if page is not None:
            params["page"] = page
        return params

    # -- queries ----------------------------------------------------------

    async def list_appointments(self, **filters: Any) -> list[Appointment]:
        """Appointments matching ``filters``; a 404 from the backend means none."""
        params = self._query(**filters)
        try:
            payload = await self.session.request("GET", "/appointments", "list appointments", params=params)
        except NotFoundError:
            logger.info("no appointments found", **{k: v for k, v in params.items() if k != "status[]"})
            return []
        return _to_appointments(payload)

    async def get_by_id(self, appt_id: Any) -> Appointment:
        appt_id = self._require_id(appt_id)
        payload = await self.session.request("GET", f"/appointments/{appt_id}", "view this appointment")
        return _to_appointment(_unwrap(payload, "appointment"))

    async def get_today(self, **filters: Any) -> list[Appointment]:
        start = start_of_day(utcnow(), clinic_tz())
        end = start + timedelta(days=1) - timedelta(milliseconds=1)
        # caller filters override the presets
        return await self.list_appointments(**{"start_date": start, "end_date": end, "sort": "startTime", **filters})

    async def get_upcoming(self, limit: int = 5, **filters: Any) -> list[Appointment]:
        query = {
            "start_date": start_of_day(utcnow(), clinic_tz()),
            "status": [AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED],
            "limit": limit,
            "sort": "startTime",
        }
        return await self.list_appointments(**{**query, **filters})

    async def get_past(self, limit: int = 10, **filters: Any) -> list[Appointment]:
        return await self.list_appointments(**{"end_date": utcnow(), "limit": limit, "sort": "-startTime", **filters})

    async def get_by_doctor(self, doctor_id: Any, **filters: Any) -> list[Appointment]:
        return await self.list_appointments(doctor_id=doctor_id, **filters)

    async def get_by_patient(self, patient_id: Any, **filters: Any) -> list[Appointment]:
        return await self.list_appointments(patient_id=patient_id, **filters)

    async def get_stats(self, start_date: Any = None, end_date: Any = None, clinic_id: Any = None) -> AppointmentStats:
        params = self._query(clinic_id=clinic_id, start_date=start_date, end_date=end_date)
        payload = await self.session.request("GET", "/appointments/stats", "view appointment statistics", params=params)
        try:
            return AppointmentStats.model_validate(payload or {})
        except pydantic.ValidationError as exc:
            raise ServerError("Backend returned malformed appointment statistics", details=str(exc)) from exc

    async def get_available_slots(self, doctor_id: Any, day: date | datetime | str) -> list[AvailabilitySlot]:
        doctor = normalize_id(doctor_id)
        if not doctor:
            raise ValidationError("A doctor is required to look up available slots", fields=["doctorId"])
        if isinstance(day, datetime):
            day = day.astimezone(clinic_tz()).date()
        params = {"doctorId": doctor, "date": day.isoformat() if isinstance(day, date) else str(day)}
        payload = await self.session.request("GET", "/appointments/available-slots", "view available slots", params=params)
        slots = _unwrap(payload, "availableSlots") or []
        if not isinstance(slots, list) or not all(isinstance(s, dict) for s in slots):
            raise ServerError("Backend returned a malformed slot list")
        try:
            return [
                AvailabilitySlot(start=s.get("start", s.get("startTime")), end=s.get("end", s.get("endTime")))
                for s in slots
            ]
        except pydantic.ValidationError as exc:
            raise ServerError("Backend returned a malformed slot list", details=str(exc)) from exc

    async def check_conflicts(
        self,
        doctor_id: Any,
        start_time: Any,
        end_time: Any,
        clinic_id: Any = None,
        exclude_id: Any = None,
    ) -> list[Appointment]:
        """Appointments overlapping the range for this doctor; empty when the slot is free."""
        params = self._query(clinic_id=clinic_id, doctor_id=doctor_id)
        params["startTime"] = to_wire(start_time, "startTime")
        params["endTime"] = to_wire(end_time, "endTime")
        if normalize_id(exclude_id):
            params["excludeId"] = normalize_id(exclude_id)
        payload = await self.session.request("GET", "/appointments/check-conflicts", "check appointment conflicts", params=params)
        if isinstance(payload, dict) and "conflicts" not in payload:
            if not payload.get("hasConflict"):
                return []
            return [_to_appointment(_unwrap(payload, "conflictingAppointment", "appointment"))]
        return _to_appointments(_unwrap(payload, "conflicts"))

    # -- mutations --------------------------------------------------------

    def prepare_draft(self, data: Any) -> dict[str, Any]:
        """Validate and normalize a booking draft into the request body for ``POST /appointments``."""
        body = _wire_dict(data)
        body.pop("_id", None)
        body["clinicId"] = self.context.resolve_clinic_id(body.get("clinicId"))
        for key in ("patientId", "doctorId"):
            body[key] = normalize_id(body.get(key))
        if isinstance(body.get("serviceType"), dict):
            body["serviceType"] = normalize_id(body["serviceType"])

        missing = [f for f in REQUIRED_FIELDS if body.get(f) in (None, "")]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", fields=missing)

        if not body.get("reason"):
            body["reason"] = body.get("notes") or body.get("serviceType") or _DEFAULT_REASON

        start = parse_instant(body["startTime"], "startTime")
        end = parse_instant(body["endTime"], "endTime")
        if end <= start:
            raise ValidationError("End time must be after start time", fields=["endTime"])
        if start < utcnow():
            logger.warning("appointment starts in the past", start_time=to_wire(start), patient_id=body["patientId"])
        body["startTime"], body["endTime"] = to_wire(start), to_wire(end)
        return {k: v for k, v in body.items() if v is not None}

    async def create(self, data: Any) -> Appointment:
        body = self.prepare_draft(data)

        async def call():
            return await self.session.request("POST", "/appointments", "create appointments", json=body)

        payload = await self._once("create", None, body, call)
        created = _to_appointment(_unwrap(payload, "appointment"))
        logger.info("appointment created", appointment_id=created.id, doctor_id=body["doctorId"])
        return created

    async def update(self, appt_id: Any, partial: Any) -> Appointment:
        appt_id = self._require_id(appt_id)
        body = _wire_dict(partial)
        body.pop("_id", None)
        for key in _ID_FIELDS:
            if key in body:
                body[key] = normalize_id(body[key])
        for key in _DATE_FIELDS:
            if body.get(key) is not None:
                body[key] = to_wire(body[key], key)
        if "status" in body:
            body["status"] = _status_value(body["status"])

        async def call():
            return await self.session.request("PUT", f"/appointments/{appt_id}", "update this appointment", json=body)

        payload = await self._once("update", appt_id, body, call)
        return _to_appointment(_unwrap(payload, "appointment"))

    async def update_status(self, appt_id: Any, status: Any) -> Appointment:
        return await self.update(appt_id, {"status": _status_value(status)})

    async def delete(self, appt_id: Any) -> Any:
        appt_id = self._require_id(appt_id)

        async def call():
            return await self.session.request("DELETE", f"/appointments/{appt_id}", "delete this appointment")

        result = await self._once("delete", appt_id, None, call)
        logger.info("appointment deleted", appointment_id=appt_id)
        return result

    async def reschedule(self, appt_id: Any, start_time: Any, end_time: Any, reason: str | None = None) -> Appointment:
        appt_id = self._require_id(appt_id)
        start = parse_instant(start_time, "startTime")
        end = parse_instant(end_time, "endTime")
        if end <= start:
            raise ValidationError("End time must be after start time", fields=["endTime"])
        if start < utcnow():
            logger.warning("rescheduling into the past", appointment_id=appt_id, start_time=to_wire(start))
        body = {"startTime": to_wire(start), "endTime": to_wire(end), "reason": reason or ""}

        async def call():
            return await self.session.request(
                "PUT", f"/appointments/{appt_id}/reschedule", "reschedule this appointment", json=body
            )

        payload = await self._once("reschedule", appt_id, body, call)
        return _to_appointment(_unwrap(payload, "appointment"))

    async def check_in(self, appt_id: Any) -> Appointment:
        appt_id = self._require_id(appt_id)
        payload = await self._once(
            "checkin", appt_id, None,
            lambda: self.session.request("PUT", f"/appointments/{appt_id}/checkin", "check in patients"),
        )
        return _to_appointment(_unwrap(payload, "appointment"))

    async def check_out(self, appt_id: Any) -> Appointment:
        appt_id = self._require_id(appt_id)
        payload = await self._once(
            "checkout", appt_id, None,
            lambda: self.session.request("PUT", f"/appointments/{appt_id}/checkout", "check out patients"),
        )
        return _to_appointment(_unwrap(payload, "appointment"))

    async def send_reminder(self, appt_id: Any) -> Any:
        appt_id = self._require_id(appt_id)
        return await self._once(
            "reminder", appt_id, None,
            lambda: self.session.request("POST", f"/appointments/{appt_id}/reminder", "send reminders for this appointment"),
        )
