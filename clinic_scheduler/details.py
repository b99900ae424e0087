"""Single-appointment view: status buttons, reschedule, medical notes."""
from __future__ import annotations
from datetime import date, datetime, time, timedelta
from typing import Any
from zoneinfo import ZoneInfo

import structlog
from pydantic import BaseModel

from . import config, permissions
from .booking import validate_slot
from .client import AppointmentClient
from .errors import AuthError, ClinicAPIError, ValidationError
from .models import Appointment, AppointmentStatus, RescheduleEntry, Role, VitalSigns
from .timeutils import clinic_tz, utcnow

logger = structlog.get_logger(__name__)

TABS = ("details", "medical_notes", "history", "actions")


class StatusButton(BaseModel):
    status: AppointmentStatus
    current: bool
    enabled: bool
    disabled_reason: str | None = None


def _combine(day: date | str, at: time | str, tz: ZoneInfo) -> datetime:
    try:
        if isinstance(day, str):
            day = date.fromisoformat(day)
        if isinstance(at, str):
            at = time.fromisoformat(at)
    except ValueError as exc:
        raise ValidationError(f"Invalid date or time: {exc}", fields=["startTime"]) from exc
    return datetime.combine(day, at, tzinfo=tz)


class AppointmentDetails:
    """State behind the details modal for one appointment.

    Disabled actions stay visible with the reason they are disabled. The
    reschedule history shows a pending entry while the server call is in
    flight; it is dropped again if the call fails.
    """

    def __init__(self, client: AppointmentClient, appointment: Appointment, role: Role | str, actor: str | None = None):
        self.client = client
        self.appointment = appointment
        self.role = Role(role)
        self.actor = actor or client.context.user_id or self.role.value
        self.tab = "details"
        self.history: list[RescheduleEntry] = list(appointment.reschedule_history)
        self.busy = False

    def select_tab(self, tab: str) -> None:
        if tab not in TABS:
            raise ValueError(f"unknown tab {tab!r}")
        self.tab = tab

    def status_buttons(self) -> list[StatusButton]:
        current = self.appointment.status
        buttons = []
        for status in AppointmentStatus:
            reason = permissions.transition_denial_reason(self.role, current, status)
            buttons.append(StatusButton(status=status, current=status is current, enabled=reason is None, disabled_reason=reason))
        return buttons

    @property
    def reschedule_disabled_reason(self) -> str | None:
        return permissions.reschedule_denial_reason(self.role, self.appointment.status)

    @property
    def delete_disabled_reason(self) -> str | None:
        return permissions.delete_denial_reason(self.role, self.appointment.status)

    async def set_status(self, status: AppointmentStatus | str) -> Appointment:
        target = AppointmentStatus(status)
        reason = permissions.transition_denial_reason(self.role, self.appointment.status, target)
        if reason:
            raise AuthError(f"Cannot change status to {target.value}: {reason}")
        self.busy = True
        try:
            self.appointment = await self.client.update_status(self.appointment.id, target)
        finally:
            self.busy = False
        return self.appointment

    async def reschedule(
        self,
        day: date | str,
        at: time | str,
        reason: str,
        now: datetime | None = None,
        tz: ZoneInfo | None = None,
    ) -> Appointment:
        denied = self.reschedule_disabled_reason
        if denied:
            raise AuthError(f"Cannot reschedule: {denied}")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to reschedule", fields=["reason"])

        start = _combine(day, at, tz or clinic_tz())
        length = self.appointment.duration or timedelta(minutes=config.DEFAULT_SLOT_MINUTES)
        slot = validate_slot(start, start + length, now=now, tz=tz)

        entry = RescheduleEntry(
            previous_start_time=self.appointment.start_time,
            previous_end_time=self.appointment.end_time,
            reason=reason,
            rescheduled_by=self.actor,
            rescheduled_at=now or utcnow(),
            pending=True,
        )
        self.history.append(entry)
        self.busy = True
        try:
            updated = await self.client.reschedule(self.appointment.id, slot.start, slot.end, reason)
        except BaseException as exc:
            # also covers cancellation at teardown
            self.history = [e for e in self.history if e is not entry]
            error = exc.message if isinstance(exc, ClinicAPIError) else type(exc).__name__
            logger.warning("reschedule failed, history entry rolled back", appointment_id=self.appointment.id, error=error)
            raise
        finally:
            self.busy = False

        self.appointment = updated
        if updated.reschedule_history:
            self.history = list(updated.reschedule_history)
        else:
            entry.pending = False
        return updated

    async def save_medical_notes(
        self,
        notes: str | None = None,
        chief_complaint: str | None = None,
        diagnosis: str | None = None,
        symptoms: list[str] | None = None,
        vital_signs: VitalSigns | dict[str, Any] | None = None,
        medical_history: Any = None,
    ) -> Appointment:
        if not permissions.can_edit_medical_notes(self.role):
            raise AuthError(f"Cannot edit medical notes: {self.role.value} may not edit medical notes")
        if isinstance(vital_signs, dict):
            vital_signs = VitalSigns.model_validate(vital_signs)
        partial: dict[str, Any] = {
            "notes": notes,
            "chiefComplaint": chief_complaint,
            "diagnosis": diagnosis,
            "symptoms": symptoms,
            "vitalSigns": vital_signs.to_wire() if vital_signs else None,
            "medicalHistory": medical_history,
        }
        partial = {k: v for k, v in partial.items() if v is not None}
        if not partial:
            raise ValidationError("Nothing to save", fields=[])
        self.appointment = await self.client.update(self.appointment.id, partial)
        return self.appointment

    async def send_reminder(self) -> Any:
        if not permissions.can_send_reminder(self.role):
            raise AuthError(f"Cannot send reminders: {self.role.value} may not send reminders")
        return await self.client.send_reminder(self.appointment.id)

    async def delete(self) -> Any:
        denied = self.delete_disabled_reason
        if denied:
            raise AuthError(f"Cannot delete: {denied}")
        return await self.client.delete(self.appointment.id)
