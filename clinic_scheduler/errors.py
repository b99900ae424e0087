"""Error kinds surfaced by the client layer.

Transport exceptions from httpx never reach callers; they are translated into
one of the classes below with a human readable message.
"""
from __future__ import annotations
from typing import Any


class ClinicAPIError(Exception):
    """Base class for every error raised by the clinic client."""

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details

    def __str__(self) -> str:
        return self.message


class ValidationError(ClinicAPIError):
    """Input rejected before (or by) the backend. ``fields`` names the offending fields."""

    def __init__(self, message: str, fields: list[str] | None = None, status_code: int | None = None, details: Any = None):
        super().__init__(message, status_code=status_code, details=details)
        self.fields = list(fields or [])


class NotFoundError(ClinicAPIError):
    pass


class AuthError(ClinicAPIError):
    """401/403 from the backend, or an action the acting role may not perform."""


class ConflictError(ClinicAPIError):
    """The requested slot overlaps an existing appointment."""

    def __init__(self, message: str, conflicts: list | None = None, status_code: int | None = 409, details: Any = None):
        super().__init__(message, status_code=status_code, details=details)
        self.conflicts = list(conflicts or [])


class ServerError(ClinicAPIError):
    pass
