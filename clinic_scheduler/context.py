from __future__ import annotations
from typing import Any

from pydantic import BaseModel, Field, field_validator

from . import config
from .models import Role
from .normalize import normalize_id


class ClinicContext(BaseModel):
    """Who is acting and for which clinic.

    Clinic id precedence: explicit argument > session user > session clinic >
    persisted default.
    """

    user_id: str | None = None
    role: Role | None = None
    user_clinic_id: str | None = None
    clinic_id: str | None = None
    default_clinic_id: str | None = Field(default_factory=lambda: config.DEFAULT_CLINIC_ID)

    @field_validator("user_id", "user_clinic_id", "clinic_id", "default_clinic_id", mode="before")
    @classmethod
    def _scalar_id(cls, v: Any) -> Any:
        return normalize_id(v)

    def resolve_clinic_id(self, explicit: Any = None) -> str | None:
        for candidate in (explicit, self.user_clinic_id, self.clinic_id, self.default_clinic_id):
            clinic_id = normalize_id(candidate)
            if clinic_id:
                return clinic_id
        return None

    @classmethod
    def for_user(cls, user: dict[str, Any], clinic: dict[str, Any] | None = None) -> "ClinicContext":
        """Build a context from the session's user (and optional clinic) documents."""
        return cls(
            user_id=normalize_id(user),
            role=user.get("role"),
            user_clinic_id=user.get("clinicId"),
            clinic_id=clinic,
        )
