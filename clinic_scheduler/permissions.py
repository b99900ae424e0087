"""Which role may do what to an appointment.

Every surface (calendar, list rows, details view, HTTP facade) asks these
functions; none of them carries its own copy of the rules.
"""
from __future__ import annotations
from typing import Any

from .models import CLOSED_STATUSES, AppointmentStatus, Role

S = AppointmentStatus

# target statuses each role may set, before the Completed override
_TRANSITION_TARGETS: dict[Role, frozenset[AppointmentStatus]] = {
    Role.ADMIN: frozenset(AppointmentStatus),
    Role.RECEPTIONIST: frozenset({S.SCHEDULED, S.CANCELLED, S.NO_SHOW}),
    Role.DOCTOR: frozenset({S.SCHEDULED, S.COMPLETED}),
    Role.NURSE: frozenset({S.SCHEDULED}),
    Role.PATIENT: frozenset(),
}

_RESCHEDULE_ROLES = frozenset({Role.ADMIN, Role.RECEPTIONIST, Role.DOCTOR})
_DELETE_ROLES = frozenset({Role.ADMIN, Role.RECEPTIONIST})
_REMINDER_ROLES = frozenset({Role.ADMIN, Role.RECEPTIONIST})
_NOTES_ROLES = frozenset({Role.ADMIN, Role.DOCTOR})


def parse_role(value: Any) -> Role | None:
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        return None


def _status(value: Any) -> AppointmentStatus | None:
    if isinstance(value, AppointmentStatus):
        return value
    try:
        return AppointmentStatus(value)
    except ValueError:
        return None


def transition_denial_reason(role: Any, from_status: Any, to_status: Any) -> str | None:
    """Return why ``role`` may not move an appointment to ``to_status``, or None if it may."""
    r, src, dst = parse_role(role), _status(from_status), _status(to_status)
    if r is None:
        return f"Unknown role {role!r} cannot change appointment status"
    if src is None or dst is None:
        return f"Unknown status {from_status if src is None else to_status!r}"
    if src == dst:
        return f"Appointment is already {dst.value}"
    if r is Role.PATIENT:
        return "Patients cannot change appointment status directly"
    if src is S.COMPLETED and r is not Role.ADMIN:
        return "Only an Admin can change a completed appointment"
    if dst not in _TRANSITION_TARGETS[r]:
        return f"{r.value} cannot mark an appointment as {dst.value}"
    return None


def can_transition(role: Any, from_status: Any, to_status: Any) -> bool:
    return transition_denial_reason(role, from_status, to_status) is None


def allowed_transitions(role: Any, from_status: Any) -> list[AppointmentStatus]:
    return [s for s in AppointmentStatus if can_transition(role, from_status, s)]


def reschedule_denial_reason(role: Any, status: Any) -> str | None:
    r, st = parse_role(role), _status(status)
    if r is None:
        return f"Unknown role {role!r} cannot reschedule appointments"
    if st is None:
        return f"Unknown status {status!r}"
    if r is Role.PATIENT:
        if st is S.SCHEDULED:
            return None
        return "Patients can only reschedule appointments that are still Scheduled"
    if r not in _RESCHEDULE_ROLES:
        return f"{r.value} cannot reschedule appointments"
    if st in CLOSED_STATUSES:
        return f"A {st.value} appointment cannot be rescheduled"
    return None


def can_reschedule(role: Any, status: Any) -> bool:
    return reschedule_denial_reason(role, status) is None


def delete_denial_reason(role: Any, status: Any) -> str | None:
    r, st = parse_role(role), _status(status)
    if r not in _DELETE_ROLES:
        return "Only Admin and Receptionist can delete appointments"
    if st is None:
        return f"Unknown status {status!r}"
    if st is S.COMPLETED:
        return "Completed appointments cannot be deleted"
    return None


def can_delete(role: Any, status: Any) -> bool:
    return delete_denial_reason(role, status) is None


def can_send_reminder(role: Any) -> bool:
    return parse_role(role) in _REMINDER_ROLES


def can_edit_medical_notes(role: Any) -> bool:
    return parse_role(role) in _NOTES_ROLES
