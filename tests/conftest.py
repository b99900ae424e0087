import json
import pathlib

import pytest

from clinic_scheduler import config
from clinic_scheduler.client import AppointmentClient
from clinic_scheduler.context import ClinicContext
from clinic_scheduler.http import ApiSession

FIX = pathlib.Path(__file__).parent / "fixtures"
BASE = "http://clinic.test"


@pytest.fixture(autouse=True)
def _clinic_config(monkeypatch):
    # keep business hours and clinic fallbacks independent of the developer's .env
    monkeypatch.setattr(config, "TIMEZONE", "UTC")
    monkeypatch.setattr(config, "BUSINESS_HOURS_START", 8)
    monkeypatch.setattr(config, "BUSINESS_HOURS_END", 18)
    monkeypatch.setattr(config, "DEFAULT_CLINIC_ID", None)


@pytest.fixture
def fixture_json():
    def load(name):
        return json.loads((FIX / name).read_text())
    return load


@pytest.fixture
def session():
    return ApiSession(base_url=f"{BASE}/api", token="test-token", timeout=5)


@pytest.fixture
def client(session):
    return AppointmentClient(session=session, context=ClinicContext(user_id="user-9", clinic_id="clinic-1"))
