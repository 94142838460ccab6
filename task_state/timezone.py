"""Timezone helpers used when stamping task records and log entries."""

from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_TIMEZONE_NAME = "UTC"

_default_timezone: tzinfo = timezone.utc


def _coerce_timezone(name: str) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"Unknown timezone: {name}") from exc


def set_default_timezone(name: str) -> None:
    global _default_timezone
    _default_timezone = _coerce_timezone(name)


def get_default_timezone() -> tzinfo:
    return _default_timezone


def now() -> datetime:
    """Return the current time in the configured default timezone."""

    return datetime.now(_default_timezone)
