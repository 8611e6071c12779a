"""Environment-driven settings shared by the CharterDesk modules."""
from __future__ import annotations

import os

DB_PATH = os.environ.get("CHARTERDESK_DB", "charterdesk.db")
APP_URL = os.environ.get("CHARTERDESK_APP_URL", "http://localhost:8501").rstrip("/")
DEFAULT_TENANT_ID = os.environ.get("CHARTERDESK_TENANT_ID", "demo")
DEFAULT_CURRENCY = os.environ.get("CHARTERDESK_CURRENCY", "USD")
INVOICE_PREFIX = os.environ.get("CHARTERDESK_INVOICE_PREFIX", "AIQ-")
FALLBACK_CRUISE_KTS = float(os.environ.get("CHARTERDESK_CRUISE_KTS", "420"))
LINK_RATE_LIMIT_PER_MINUTE = int(os.environ.get("CHARTERDESK_LINK_RATE_LIMIT", "10"))

# Leg time added on top of cruise time for taxi, climb and descent.
TAXI_ALLOWANCE_HR = 0.3
IDEMPOTENCY_TTL_SECONDS = 60
UPCOMING_DEPARTURE_DAYS = 7

__all__ = [
    "APP_URL",
    "DB_PATH",
    "DEFAULT_CURRENCY",
    "DEFAULT_TENANT_ID",
    "FALLBACK_CRUISE_KTS",
    "IDEMPOTENCY_TTL_SECONDS",
    "INVOICE_PREFIX",
    "LINK_RATE_LIMIT_PER_MINUTE",
    "TAXI_ALLOWANCE_HR",
    "UPCOMING_DEPARTURE_DAYS",
]
