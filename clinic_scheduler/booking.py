"""Booking flow: local slot validation, conflict check, then create."""
from __future__ import annotations
from datetime import datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

import structlog
from pydantic import BaseModel, Field

from . import config, permissions
from .client import AppointmentClient
from .errors import AuthError, ClinicAPIError, ConflictError, ValidationError
from .models import Appointment, Role
from .normalize import parse_instant
from .timeutils import format_range, utcnow, within_business_hours

logger = structlog.get_logger(__name__)


class SlotSelection(BaseModel):
    start: datetime
    end: datetime


class BookingResult(BaseModel):
    appointment: Appointment
    warnings: list[str] = Field(default_factory=list)


def validate_slot(start: Any, end: Any = None, now: datetime | None = None, tz: ZoneInfo | None = None) -> SlotSelection:
    """Check a requested slot without touching the network.

    A zero-length selection (a click rather than a drag) becomes a default
    length slot. Past starts and slots outside business hours are rejected.
    """
    start_dt = parse_instant(start, "startTime")
    end_dt = parse_instant(end, "endTime") if end is not None else start_dt
    if end_dt == start_dt:
        end_dt = start_dt + timedelta(minutes=config.DEFAULT_SLOT_MINUTES)
    if end_dt < start_dt:
        raise ValidationError("End time must be after start time", fields=["endTime"])
    if start_dt < (now or utcnow()):
        raise ValidationError("Cannot create appointments in the past", fields=["startTime"])
    if not within_business_hours(start_dt, end_dt, tz):
        raise ValidationError(
            f"Appointments can only be booked between {config.BUSINESS_HOURS_START:02d}:00 "
            f"and {config.BUSINESS_HOURS_END:02d}:00",
            fields=["startTime"],
        )
    return SlotSelection(start=start_dt, end=end_dt)


async def book_appointment(
    client: AppointmentClient,
    draft: Any,
    role: Role | str | None = None,
    now: datetime | None = None,
) -> BookingResult:
    """Book ``draft`` after local validation and a conflict check.

    A failing conflict check only produces a warning; a reported conflict
    raises :class:`ConflictError` and nothing is created.
    """
    acting = permissions.parse_role(role) if role is not None else None
    if role is not None and acting is None:
        raise AuthError(f"Cannot create appointments: unknown role {role!r}")
    body = client.prepare_draft(draft)
    if acting is Role.PATIENT:
        if not client.context.user_id:
            raise ValidationError("Patients can only book for themselves; no patient in session", fields=["patientId"])
        body["patientId"] = client.context.user_id

    slot = validate_slot(body["startTime"], body["endTime"], now=now)
    warnings: list[str] = []

    try:
        conflicts = await client.check_conflicts(body["doctorId"], slot.start, slot.end, clinic_id=body["clinicId"])
    except ClinicAPIError as exc:
        logger.warning("conflict check failed, booking anyway", doctor_id=body["doctorId"], error=exc.message)
        warnings.append(f"Could not check for conflicts: {exc.message}")
    else:
        if conflicts:
            raise ConflictError(
                f"The doctor is already booked at {format_range(slot.start, slot.end)}",
                conflicts=conflicts,
            )

    appointment = await client.create(body)
    return BookingResult(appointment=appointment, warnings=warnings)
