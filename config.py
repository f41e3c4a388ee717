"""
Central configuration — reads from .env file.

Every value is read once at import time. Tests override individual
attributes with monkeypatch.setattr(config, "X", ...), so code must read
config.X at call time rather than copying values into module globals.
"""
import os
from dotenv import load_dotenv

load_dotenv()

# ── Appraisal service ─────────────────────────────────────────────────────────
# Base URL of the backend, without a trailing slash, e.g. https://api.example.com
API_BASE_URL: str = os.getenv("API_BASE_URL", "http://localhost:8000").rstrip("/")

# Overall ceiling for a single request (including the whole stream), in seconds.
# Unset = no ceiling; an appraisal stream legitimately runs 10–30s or more.
_timeout_raw = os.getenv("REQUEST_TIMEOUT_SECS", "").strip()
REQUEST_TIMEOUT_SECS: float | None = float(_timeout_raw) if _timeout_raw else None

# ── Identity ──────────────────────────────────────────────────────────────────
# Web API key of the Firebase project used for anonymous sign-in.
FIREBASE_API_KEY: str | None = os.getenv("FIREBASE_API_KEY") or None

# ── Client behaviour ──────────────────────────────────────────────────────────
HISTORY_PAGE_SIZE: int = int(os.getenv("HISTORY_PAGE_SIZE", "10"))

# web | ios | android; leave blank to detect from CLIENT_USER_AGENT
PLATFORM: str | None = os.getenv("PLATFORM", "").strip().lower() or None
CLIENT_USER_AGENT: str | None = os.getenv("CLIENT_USER_AGENT") or None

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
