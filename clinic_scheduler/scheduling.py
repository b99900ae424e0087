"""Calendar and list views over the appointment client.

The views keep presentational state (visible range, filters, sort, per-row
action state) and never change appointments locally: every successful
mutation is followed by a re-fetch.
"""
from __future__ import annotations
import asyncio
from datetime import date, datetime
from typing import Any, Awaitable, Callable

import structlog
from pydantic import BaseModel

from . import permissions
from .booking import SlotSelection, validate_slot
from .client import AppointmentClient
from .errors import AuthError, ClinicAPIError
from .models import Appointment, AppointmentStatus, Role
from .normalize import normalize_id
from .timeutils import date_range_for_view, utcnow

logger = structlog.get_logger(__name__)

SORT_COLUMNS = ("date", "patient", "doctor", "service", "status")


class ActionState(BaseModel):
    """idle -> pending -> idle (refreshed) or idle with an error message."""
    pending: bool = False
    action: str | None = None
    message: str | None = None


class CalendarEvent(BaseModel):
    id: str | None
    title: str
    start: datetime | None
    end: datetime | None
    status: AppointmentStatus
    appointment: Appointment

    @classmethod
    def from_appointment(cls, appt: Appointment) -> "CalendarEvent":
        patient = appt.patient_name or "Patient"
        doctor = appt.doctor_name or "Doctor"
        return cls(
            id=appt.id,
            title=f"{patient} - {doctor} - {appt.service_type or ''}".rstrip(" -"),
            start=appt.start_time,
            end=appt.end_time,
            status=appt.status,
            appointment=appt,
        )


class _AppointmentSurface:
    """Row/event actions shared by the calendar and the list."""

    def __init__(self, client: AppointmentClient, role: Role | str):
        self.client = client
        self.role = Role(role)
        self.states: dict[str, ActionState] = {}
        self._tasks: set[asyncio.Task] = set()
        self.closed = False

    def state_for(self, appt_id: str) -> ActionState:
        return self.states.setdefault(appt_id, ActionState())

    async def refresh(self) -> None:
        raise NotImplementedError

    async def _track(self, coro: Awaitable[Any]) -> Any:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        try:
            return await task
        finally:
            self._tasks.discard(task)

    async def _run(self, appt: Appointment, action: str, call: Callable[[], Awaitable[Any]]) -> Any:
        state = self.state_for(appt.id)
        state.pending, state.action, state.message = True, action, None
        try:
            result = await self._track(call())
        except ClinicAPIError as exc:
            if not self.closed:
                state.pending, state.message = False, exc.message
            raise
        if self.closed:
            return result
        state.pending, state.message = False, None
        try:
            await self.refresh()
        except ClinicAPIError as exc:
            # the write went through; only the re-fetch failed
            logger.warning("refresh after mutation failed", action=action, appointment_id=appt.id, error=exc.message)
            if not self.closed:
                state.message = f"Saved, but the list could not be refreshed: {exc.message}"
        return result

    def _deny(self, appt: Appointment, action: str, reason: str | None) -> None:
        if reason is None:
            return
        state = self.state_for(appt.id)
        state.action, state.message = action, reason
        raise AuthError(f"Cannot {action}: {reason}")

    def row_actions(self, appt: Appointment) -> dict[str, str | None]:
        """Action name -> disabled reason (None means enabled)."""
        actions = {
            f"status:{s.value}": permissions.transition_denial_reason(self.role, appt.status, s)
            for s in AppointmentStatus
        }
        actions["reschedule"] = permissions.reschedule_denial_reason(self.role, appt.status)
        actions["delete"] = permissions.delete_denial_reason(self.role, appt.status)
        return actions

    async def change_status(self, appt: Appointment, status: AppointmentStatus | str) -> Appointment:
        target = AppointmentStatus(status)
        self._deny(appt, "change status", permissions.transition_denial_reason(self.role, appt.status, target))
        return await self._run(appt, "change status", lambda: self.client.update_status(appt.id, target))

    async def reschedule(self, appt: Appointment, start: Any, end: Any, reason: str | None = None, now: datetime | None = None) -> Appointment:
        self._deny(appt, "reschedule", permissions.reschedule_denial_reason(self.role, appt.status))
        slot = validate_slot(start, end, now=now)
        return await self._run(
            appt, "reschedule", lambda: self.client.reschedule(appt.id, slot.start, slot.end, reason)
        )

    async def delete(self, appt: Appointment) -> Any:
        self._deny(appt, "delete", permissions.delete_denial_reason(self.role, appt.status))
        return await self._run(appt, "delete", lambda: self.client.delete(appt.id))

    def close(self) -> None:
        """Cancel outstanding requests; no state is written afterwards."""
        self.closed = True
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()


class CalendarView(_AppointmentSurface):
    def __init__(
        self,
        client: AppointmentClient,
        role: Role | str,
        view: str = "week",
        anchor: date | datetime | None = None,
        doctor_id: Any = None,
        patient_id: Any = None,
        read_only: bool = False,
    ):
        super().__init__(client, role)
        self.view = view
        self.anchor = anchor or utcnow()
        self.doctor_id = doctor_id
        self.patient_id = patient_id
        self.read_only = read_only
        self.events: list[CalendarEvent] = []
        self.error: str | None = None

    def visible_range(self, now: datetime | None = None) -> tuple[datetime, datetime]:
        return date_range_for_view(self.anchor, self.view, now=now)

    def set_view(self, view: str, anchor: date | datetime | None = None) -> None:
        date_range_for_view(anchor or self.anchor, view)
        self.view = view
        if anchor is not None:
            self.anchor = anchor

    async def refresh(self) -> None:
        start, end = self.visible_range()
        filters = {"start_date": start, "end_date": end}
        try:
            if self.doctor_id:
                appts = await self._track(self.client.get_by_doctor(self.doctor_id, **filters))
            elif self.patient_id:
                appts = await self._track(self.client.get_by_patient(self.patient_id, **filters))
            else:
                appts = await self._track(self.client.list_appointments(**filters))
        except ClinicAPIError as exc:
            logger.error("failed to load calendar", view=self.view, error=exc.message)
            if not self.closed:
                self.error = exc.message
            raise
        if self.closed:
            return
        self.error = None
        self.events = [CalendarEvent.from_appointment(a) for a in appts]

    def select_slot(self, start: Any, end: Any = None, now: datetime | None = None) -> SlotSelection:
        """Turn a slot click/drag into a booking proposal; no request is made."""
        if self.read_only:
            raise AuthError("Cannot create appointments: this calendar is read-only")
        return validate_slot(start, end, now=now)

    async def move_event(
        self, event: CalendarEvent, start: Any, end: Any, reason: str | None = None, now: datetime | None = None
    ) -> Appointment:
        """Drag-and-drop reschedule."""
        return await self.reschedule(event.appointment, start, end, reason=reason or "Rescheduled from calendar", now=now)


class AppointmentListView(_AppointmentSurface):
    def __init__(self, client: AppointmentClient, role: Role | str, per_page: int = 10):
        super().__init__(client, role)
        self.appointments: list[Appointment] = []
        self.query: dict[str, Any] = {}
        self.doctor_filter: str | None = None
        self.status_filter: AppointmentStatus | None = None
        self.search = ""
        self.sort_column: str | None = None
        self.sort_direction: str | None = None
        self.page = 1
        self.per_page = per_page
        self.error: str | None = None

    async def load(self, **query: Any) -> list[Appointment]:
        self.query = query
        await self.refresh()
        return self.appointments

    async def refresh(self) -> None:
        try:
            appts = await self._track(self.client.list_appointments(**self.query))
        except ClinicAPIError as exc:
            if not self.closed:
                self.error = exc.message
            raise
        if self.closed:
            return
        self.error = None
        self.appointments = appts

    def filter_by(self, doctor_id: Any = None, status: AppointmentStatus | str | None = None, search: str = "") -> None:
        self.doctor_filter = normalize_id(doctor_id)
        self.status_filter = AppointmentStatus(status) if status else None
        self.search = search.strip().lower()
        self.page = 1

    def toggle_sort(self, column: str) -> None:
        """unsorted -> ascending -> descending -> unsorted"""
        if column not in SORT_COLUMNS:
            raise ValueError(f"cannot sort by {column!r}")
        if self.sort_column != column:
            self.sort_column, self.sort_direction = column, "asc"
        elif self.sort_direction == "asc":
            self.sort_direction = "desc"
        else:
            self.sort_column, self.sort_direction = None, None

    def sort_indicator(self, column: str) -> str:
        if self.sort_column != column:
            return "none"
        return self.sort_direction

    @staticmethod
    def _sort_value(appt: Appointment, column: str) -> Any:
        if column == "date":
            return appt.start_time
        if column == "patient":
            return (appt.patient_name or "").lower()
        if column == "doctor":
            return (appt.doctor_name or "").lower()
        if column == "service":
            return (appt.service_type or "").lower()
        return appt.status.value

    def _matches(self, appt: Appointment) -> bool:
        if self.doctor_filter and appt.doctor_id != self.doctor_filter:
            return False
        if self.status_filter and appt.status is not self.status_filter:
            return False
        if self.search:
            haystack = " ".join(filter(None, (appt.patient_name, appt.doctor_name, appt.service_type))).lower()
            if self.search not in haystack:
                return False
        return True

    def rows(self) -> list[Appointment]:
        rows = [a for a in self.appointments if self._matches(a)]
        if not self.sort_column:
            return rows
        column = self.sort_column
        present = [a for a in rows if self._sort_value(a, column) is not None]
        missing = [a for a in rows if self._sort_value(a, column) is None]
        present.sort(key=lambda a: self._sort_value(a, column), reverse=self.sort_direction == "desc")
        return present + missing

    @property
    def total_pages(self) -> int:
        count = len(self.rows())
        return max(1, -(-count // self.per_page))

    def page_rows(self) -> list[Appointment]:
        start = (self.page - 1) * self.per_page
        return self.rows()[start:start + self.per_page]
