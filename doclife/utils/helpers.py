"""Shared utility functions for time handling and request parsing.

utcnow / as_utc:    every persisted timestamp is UTC; SQLite hands naive values back
days_until:         whole-day distance used by the alert engine and the expiring report
parse_bool:         query-string flags ("true", "1", "yes")
"""
import math
from datetime import datetime, timezone

SECONDS_PER_DAY = 86400


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Return *value* as an aware UTC datetime.

    SQLite drops tzinfo on the way back out, so naive values read from the
    database are taken to already be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


def days_until(target: datetime, now: datetime) -> int:
    """Whole days from *now* until *target*, rounded up.

    Negative once *target* has passed: one hour overdue is ``0``,
    a day and an hour overdue is ``-1``.
    """
    delta = as_utc(target) - as_utc(now)
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


def parse_bool(value, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")
