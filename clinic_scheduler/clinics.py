"""Clinic administration calls: settings, subscription, statistics, staff."""
from __future__ import annotations
from typing import Any

import structlog

from .context import ClinicContext
from .errors import ValidationError
from .http import ApiSession
from .models import Clinic, StaffMember
from .normalize import normalize_id

logger = structlog.get_logger(__name__)


class ClinicClient:
    def __init__(self, session: ApiSession | None = None, context: ClinicContext | None = None):
        self.session = session or ApiSession()
        self.context = context or ClinicContext()

    def _clinic(self, clinic_id: Any) -> str:
        resolved = self.context.resolve_clinic_id(clinic_id)
        if not resolved:
            raise ValidationError("A clinic ID is required", fields=["clinicId"])
        return resolved

    async def get(self, clinic_id: Any = None) -> Clinic:
        cid = self._clinic(clinic_id)
        return Clinic.model_validate(await self.session.request("GET", f"/clinics/{cid}", "view clinic details"))

    async def update_settings(self, clinic_id: Any, settings: dict[str, Any]) -> Clinic:
        """Saving settings also (re)activates the clinic and its subscription."""
        cid = self._clinic(clinic_id)
        body = {
            **settings,
            "status": "active",
            "subscription": {**(settings.get("subscription") or {}), "status": "active"},
        }
        payload = await self.session.request("PUT", f"/clinics/{cid}/settings", "update clinic settings", json=body)
        logger.info("clinic settings updated", clinic_id=cid)
        return Clinic.model_validate(payload)

    async def update_subscription(self, clinic_id: Any, subscription: dict[str, Any]) -> Clinic:
        cid = self._clinic(clinic_id)
        body = {**subscription, "status": "active"}
        payload = await self.session.request("PUT", f"/clinics/{cid}/subscription", "update the clinic subscription", json=body)
        return Clinic.model_validate(payload)

    async def update_statistics(self, clinic_id: Any, statistics: dict[str, Any]) -> Any:
        cid = self._clinic(clinic_id)
        return await self.session.request(
            "PUT", f"/clinics/{cid}/statistics", "update clinic statistics", json={"statistics": statistics}
        )

    async def get_statistics(self, clinic_id: Any = None) -> dict[str, Any]:
        cid = self._clinic(clinic_id)
        return await self.session.request("GET", f"/clinics/{cid}/stats", "view clinic statistics") or {}

    async def get_features(self, clinic_id: Any = None) -> Any:
        cid = self._clinic(clinic_id)
        return await self.session.request("GET", f"/clinics/{cid}/features", "view clinic features")

    async def check_feature(self, feature: str, clinic_id: Any = None) -> Any:
        cid = self._clinic(clinic_id)
        return await self.session.request("GET", f"/clinics/{cid}/features/{feature}", f"check access to {feature}")

    async def get_limits(self, clinic_id: Any = None) -> Any:
        cid = self._clinic(clinic_id)
        return await self.session.request("GET", f"/clinics/{cid}/limits", "view clinic resource limits")

    async def activate(self, clinic_id: Any = None) -> Clinic:
        cid = self._clinic(clinic_id)
        payload = await self.session.request("PUT", f"/clinics/{cid}/activate", "activate the clinic", json={})
        logger.info("clinic activated", clinic_id=cid)
        return Clinic.model_validate(payload)

    # -- staff --------------------------------------------------------------

    async def list_staff(self, clinic_id: Any = None) -> list[StaffMember]:
        cid = self._clinic(clinic_id)
        payload = await self.session.request("GET", f"/clinics/{cid}/staff", "view clinic staff")
        if isinstance(payload, dict):
            payload = payload.get("staff") or payload.get("data") or []
        return [StaffMember.model_validate(s) for s in payload or []]

    async def create_staff(self, clinic_id: Any, staff: dict[str, Any]) -> StaffMember:
        cid = self._clinic(clinic_id)
        payload = await self.session.request("POST", f"/clinics/{cid}/staff", "add staff members", json=staff)
        return StaffMember.model_validate(payload)

    async def update_staff(self, clinic_id: Any, staff_id: Any, staff: dict[str, Any]) -> StaffMember:
        cid, sid = self._clinic(clinic_id), normalize_id(staff_id)
        if not sid:
            raise ValidationError("A staff ID is required", fields=["staffId"])
        payload = await self.session.request("PUT", f"/clinics/{cid}/staff/{sid}", "update staff members", json=staff)
        return StaffMember.model_validate(payload)

    async def delete_staff(self, clinic_id: Any, staff_id: Any) -> Any:
        cid, sid = self._clinic(clinic_id), normalize_id(staff_id)
        if not sid:
            raise ValidationError("A staff ID is required", fields=["staffId"])
        return await self.session.request("DELETE", f"/clinics/{cid}/staff/{sid}", "remove staff members")
