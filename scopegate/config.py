"""
Shared configuration for ScopeGate.
"""

from __future__ import annotations

import logging
import os
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("scopegate")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(env_name: str, default: float) -> float:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


# Database settings
DB_BACKEND = os.environ.get("DB_BACKEND", "postgres").strip().lower()
SQLITE_PATH = os.environ.get("SQLITE_PATH", "/data/scopegate.db")
DATABASE_URL = os.environ.get("DATABASE_URL")

# Scope enforcement. Only seeds the ScopePolicy built at startup.
AUTH_SCOPING_ENABLED = _get_bool("SCOPEGATE_AUTH_SCOPING", True)
SCOPING_DISABLED_REASON = os.environ.get("SCOPEGATE_SCOPING_DISABLED_REASON", "").strip()

# Request boundary
TRUSTED_IDENTITY_HEADERS = _get_bool("TRUSTED_IDENTITY_HEADERS", False)
REQUEST_TIMEOUT_SECONDS = _get_float("SCOPEGATE_REQUEST_TIMEOUT_SECONDS", 30.0)

# Request/input limits
DEFAULT_PAGE_SIZE = _get_int("SCOPEGATE_DEFAULT_PAGE_SIZE", 50)
MAX_PAGE_SIZE = _get_int("SCOPEGATE_MAX_PAGE_SIZE", 500)
MAX_RESOURCE_KEY_LENGTH = _get_int("SCOPEGATE_MAX_RESOURCE_KEY_LENGTH", 64)
MAX_RECORD_ID_LENGTH = _get_int("SCOPEGATE_MAX_RECORD_ID_LENGTH", 128)
MAX_SEARCH_LENGTH = _get_int("SCOPEGATE_MAX_SEARCH_LENGTH", 200)

# History reconstruction
HISTORY_LIMIT_DEFAULT = _get_int("HISTORY_LIMIT_DEFAULT", 200)
HISTORY_LIMIT_MAX = _get_int("HISTORY_LIMIT_MAX", 1000)
DISPLAY_TIMEZONE = os.environ.get("DISPLAY_TIMEZONE", "UTC").strip() or "UTC"


def validate_and_prepare_config() -> None:
    """Validate configuration and apply derived settings at startup."""
    global DATABASE_URL

    errors = []
    if DB_BACKEND not in {"postgres", "sqlite"}:
        errors.append("DB_BACKEND must be 'postgres' or 'sqlite'")

    if not DATABASE_URL:
        if DB_BACKEND == "sqlite":
            if not SQLITE_PATH:
                errors.append("SQLITE_PATH environment variable is required for sqlite")
            else:
                DATABASE_URL = f"sqlite:///{SQLITE_PATH}"
        else:
            errors.append("DATABASE_URL environment variable is required")
    else:
        url_lower = DATABASE_URL.lower()
        is_sqlite_url = url_lower.startswith("sqlite")
        if DB_BACKEND == "sqlite" and not is_sqlite_url:
            errors.append("DATABASE_URL must be a sqlite URL when DB_BACKEND=sqlite")
        if DB_BACKEND == "postgres" and is_sqlite_url:
            errors.append("DATABASE_URL must be a postgres URL when DB_BACKEND=postgres")

    if not AUTH_SCOPING_ENABLED and not SCOPING_DISABLED_REASON:
        errors.append(
            "SCOPEGATE_AUTH_SCOPING=false requires SCOPEGATE_SCOPING_DISABLED_REASON"
        )

    if DEFAULT_PAGE_SIZE < 1 or DEFAULT_PAGE_SIZE > MAX_PAGE_SIZE:
        errors.append("SCOPEGATE_DEFAULT_PAGE_SIZE must be between 1 and SCOPEGATE_MAX_PAGE_SIZE")

    if REQUEST_TIMEOUT_SECONDS <= 0:
        errors.append("SCOPEGATE_REQUEST_TIMEOUT_SECONDS must be positive")

    if HISTORY_LIMIT_DEFAULT < 1 or HISTORY_LIMIT_DEFAULT > HISTORY_LIMIT_MAX:
        errors.append("HISTORY_LIMIT_DEFAULT must be between 1 and HISTORY_LIMIT_MAX")

    try:
        ZoneInfo(DISPLAY_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        errors.append(f"DISPLAY_TIMEZONE is not a known timezone: {DISPLAY_TIMEZONE}")

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
