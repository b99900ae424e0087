"""Identifier and date normalization.

The backend embeds related documents inconsistently: ``patientId`` may be a
bare id or a populated patient object, dates arrive as ISO strings. Every
module that builds a request goes through these helpers.
"""
from __future__ import annotations
from datetime import date, datetime, time, timezone
from typing import Any

import structlog

from .errors import ValidationError

logger = structlog.get_logger(__name__)

_ID_KEYS = ("_id", "id", "value")
DATE_FIELDS = ("startTime", "endTime", "createdAt", "updatedAt")


def normalize_id(value: Any) -> str | None:
    """Return the scalar id for a bare id, a ``{_id|id|value: ...}`` mapping or an object with ``id``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, dict):
        for key in _ID_KEYS:
            if value.get(key) not in (None, ""):
                return normalize_id(value[key])
        return None
    inner = getattr(value, "id", None)
    if inner is not None:
        return normalize_id(inner)
    return None


def parse_instant(value: Any, field: str = "date") -> datetime:
    """Parse a wire or user supplied instant into an aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, time.min)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        # epoch milliseconds, as produced by Date.getTime()
        try:
            dt = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            raise ValidationError(f"Invalid {field}: {value!r}", fields=[field]) from exc
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValidationError(f"Invalid {field}: {value!r}", fields=[field]) from exc
    else:
        raise ValidationError(f"Invalid {field}: {value!r}", fields=[field])

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_wire(value: Any, field: str = "date") -> str:
    """Serialize an instant the way the backend does: UTC, milliseconds, ``Z`` suffix."""
    dt = parse_instant(value, field)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def hydrate_dates(payload: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of a wire dict with its date fields parsed; bad values become None."""
    out = dict(payload)
    for key in DATE_FIELDS:
        raw = out.get(key)
        if raw is None or isinstance(raw, datetime):
            continue
        try:
            out[key] = parse_instant(raw, key)
        except ValidationError:
            logger.warning("invalid appointment date", field=key, value=raw, appointment_id=normalize_id(out))
            out[key] = None
    return out


def _display_name(party: dict[str, Any]) -> str | None:
    if party.get("name"):
        return party["name"]
    if party.get("firstName") and party.get("lastName"):
        return f"{party['firstName']} {party['lastName']}"
    return party.get("fullName")


def extract_party(payload: dict[str, Any], role: str) -> dict[str, str | None]:
    """Pull display fields for ``patient`` or ``doctor`` out of embedded objects.

    Explicit ``patientName``/``doctorName`` keys win over the embedded ones.
    """
    name = payload.get(f"{role}Name")
    phone = payload.get("patientPhone") if role == "patient" else None
    specialization = payload.get("specialization") if role == "doctor" else None

    for key in (f"{role}Id", role):
        party = payload.get(key)
        if name or not isinstance(party, dict):
            continue
        name = _display_name(party)
        if role == "patient":
            phone = phone or party.get("phone") or party.get("phoneNumber")
        else:
            specialization = specialization or party.get("specialization")

    if role == "patient":
        return {"name": name, "phone": phone}
    return {"name": name, "specialization": specialization}
