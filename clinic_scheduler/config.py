"""Environment-driven settings for the clinic API client.

Values are read once at import time; a local ``.env`` file is honoured.
"""
from __future__ import annotations
import os
from dotenv import load_dotenv

load_dotenv()

API_URL = os.getenv("CLINIC_API_URL", "http://localhost:5000/api").rstrip("/")
API_TOKEN = os.getenv("CLINIC_API_TOKEN")
API_TIMEOUT = float(os.getenv("CLINIC_API_TIMEOUT", "15"))

# last-resort clinic id when neither the caller nor the session provides one
DEFAULT_CLINIC_ID = os.getenv("CLINIC_DEFAULT_ID") or None

# business hours are evaluated in this zone
TIMEZONE = os.getenv("CLINIC_TIMEZONE", "UTC")
BUSINESS_HOURS_START = int(os.getenv("CLINIC_HOURS_START", "8"))
BUSINESS_HOURS_END = int(os.getenv("CLINIC_HOURS_END", "18"))
DEFAULT_SLOT_MINUTES = 30

LOG_LEVEL = os.getenv("CLINIC_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("CLINIC_LOG_JSON", "0") == "1"

FACADE_KEY = os.getenv("CLINIC_FACADE_KEY", "")
DASHBOARD_REFRESH_SECONDS = float(os.getenv("CLINIC_DASHBOARD_REFRESH", "60"))
