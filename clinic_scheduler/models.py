from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from .errors import ValidationError as ClinicValidationError
from .normalize import extract_party, hydrate_dates, normalize_id, parse_instant


class AppointmentStatus(str, Enum):
    SCHEDULED = "Scheduled"
    CONFIRMED = "Confirmed"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    NO_SHOW = "No Show"


class Role(str, Enum):
    ADMIN = "Admin"
    DOCTOR = "Doctor"
    RECEPTIONIST = "Receptionist"
    NURSE = "Nurse"
    PATIENT = "Patient"


# statuses after which an appointment can no longer be moved
CLOSED_STATUSES = frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW})


class _WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class VitalSigns(_WireModel):
    blood_pressure: str | None = Field(default=None, alias="bloodPressure")
    heart_rate: float | None = Field(default=None, alias="heartRate")
    temperature: float | None = None
    respiratory_rate: float | None = Field(default=None, alias="respiratoryRate")


class RescheduleEntry(_WireModel):
    previous_start_time: datetime | None = Field(default=None, alias="previousStartTime")
    previous_end_time: datetime | None = Field(default=None, alias="previousEndTime")
    reason: str | None = None
    rescheduled_by: str | None = Field(default=None, alias="rescheduledBy")
    rescheduled_at: datetime | None = Field(default=None, alias="rescheduledAt")
    # local only: set while the server has not confirmed the reschedule yet
    pending: bool = Field(default=False, exclude=True)

    @field_validator("previous_start_time", "previous_end_time", "rescheduled_at", mode="before")
    @classmethod
    def _instant(cls, v: Any) -> Any:
        if v is None:
            return None
        try:
            return parse_instant(v)
        except ClinicValidationError:
            return None

    @field_validator("rescheduled_by", mode="before")
    @classmethod
    def _actor(cls, v: Any) -> Any:
        return normalize_id(v) if isinstance(v, dict) else v


class Appointment(_WireModel):
    id: str | None = Field(default=None, validation_alias=AliasChoices("_id", "id"), serialization_alias="_id")
    patient_id: str | None = Field(default=None, alias="patientId")
    doctor_id: str | None = Field(default=None, alias="doctorId")
    clinic_id: str | None = Field(default=None, alias="clinicId")

    # display fields pulled out of populated party documents
    patient_name: str | None = Field(default=None, alias="patientName")
    patient_phone: str | None = Field(default=None, alias="patientPhone")
    doctor_name: str | None = Field(default=None, alias="doctorName")
    specialization: str | None = None

    start_time: datetime | None = Field(default=None, alias="startTime")
    end_time: datetime | None = Field(default=None, alias="endTime")
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    service_type: str | None = Field(default=None, alias="serviceType")
    reason: str | None = None
    notes: str | None = None

    chief_complaint: str | None = Field(default=None, alias="chiefComplaint")
    vital_signs: VitalSigns | None = Field(default=None, alias="vitalSigns")
    diagnosis: str | None = None
    symptoms: list[str] = Field(default_factory=list)
    medical_history: Any = Field(default=None, alias="medicalHistory")

    reschedule_history: list[RescheduleEntry] = Field(default_factory=list, alias="rescheduleHistory")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")
    created_by: str | None = Field(default=None, alias="createdBy")

    @model_validator(mode="before")
    @classmethod
    def _from_wire(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = hydrate_dates(data)
        patient = extract_party(data, "patient")
        doctor = extract_party(data, "doctor")
        for alias, name, value in (
            ("patientName", "patient_name", patient["name"]),
            ("patientPhone", "patient_phone", patient["phone"]),
            ("doctorName", "doctor_name", doctor["name"]),
            ("specialization", "specialization", doctor["specialization"]),
        ):
            if value is not None and data.get(alias) is None and data.get(name) is None:
                data[alias] = value
        return data

    @field_validator("start_time", "end_time", "created_at", "updated_at", mode="before")
    @classmethod
    def _instant(cls, v: Any) -> Any:
        if v is None:
            return None
        try:
            return parse_instant(v)
        except ClinicValidationError:
            return None

    @field_validator("patient_id", "doctor_id", "clinic_id", "created_by", mode="before")
    @classmethod
    def _scalar_id(cls, v: Any) -> Any:
        return normalize_id(v)

    @field_validator("service_type", mode="before")
    @classmethod
    def _service(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return v.get("name") or normalize_id(v)
        return v

    @field_validator("symptoms", mode="before")
    @classmethod
    def _symptoms(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @property
    def duration(self):
        if self.start_time and self.end_time:
            return self.end_time - self.start_time
        return None


class AvailabilitySlot(BaseModel):
    """A free slot offered for booking."""
    start: datetime
    end: datetime

    @field_validator("start", "end", mode="before")
    @classmethod
    def _instant(cls, v: Any) -> Any:
        try:
            return parse_instant(v)
        except ClinicValidationError as exc:
            raise ValueError(str(exc)) from exc


class AppointmentStats(_WireModel):
    model_config = {"populate_by_name": True, "extra": "allow"}

    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict, alias="byStatus")
    by_doctor: list[dict[str, Any]] | dict[str, Any] = Field(default_factory=list, alias="byDoctor")
    by_service: list[dict[str, Any]] | dict[str, Any] = Field(default_factory=list, alias="byService")
    daily: list[dict[str, Any]] = Field(default_factory=list, alias="dailyCounts")


class Clinic(_WireModel):
    model_config = {"populate_by_name": True, "extra": "allow"}

    id: str | None = Field(default=None, validation_alias=AliasChoices("_id", "id"), serialization_alias="_id")
    name: str | None = None
    status: str | None = None
    settings: dict[str, Any] = Field(default_factory=dict)
    subscription: dict[str, Any] = Field(default_factory=dict)


class StaffMember(_WireModel):
    model_config = {"populate_by_name": True, "extra": "allow"}

    id: str | None = Field(default=None, validation_alias=AliasChoices("_id", "id"), serialization_alias="_id")
    name: str | None = None
    email: str | None = None
    role: str | None = None
    clinic_id: str | None = Field(default=None, alias="clinicId")

    @field_validator("clinic_id", mode="before")
    @classmethod
    def _scalar_id(cls, v: Any) -> Any:
        return normalize_id(v)
