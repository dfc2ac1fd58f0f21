"""
Recurrence rules for scheduled tasks.

Task schedules are standard five-field cron expressions evaluated in UTC
(``"0 2 * * *"`` daily at 02:00, ``"0 */6 * * *"`` every six hours,
``"0 9 * * 1-5"`` weekdays at 09:00, ...).

Anything croniter rejects, or an empty expression, falls back to "one hour
from now". ``next_run`` always returns a time strictly after ``now``.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from croniter import croniter

from doclife.utils.helpers import as_utc, utcnow

DEFAULT_INTERVAL = timedelta(hours=1)


def is_supported(expression: str | None) -> bool:
    """True for a valid five-field cron expression."""
    if not expression or len(expression.split()) != 5:
        return False
    return croniter.is_valid(expression)


def next_run(expression: str | None, now: datetime) -> datetime:
    """First fire time of *expression* strictly after *now*."""
    now = as_utc(now)
    if not is_supported(expression):
        return now + DEFAULT_INTERVAL
    return as_utc(croniter(expression, now).get_next(datetime))


def interval_for(expression: str | None, start: datetime | None = None) -> timedelta:
    """
    Period between the two fire times following *start*.

    Used to spot runs stuck in RUNNING; irregular schedules (weekdays only,
    say) give the gap that actually follows *start*.
    """
    if not is_supported(expression):
        return DEFAULT_INTERVAL
    schedule = croniter(expression, as_utc(start) if start else utcnow())
    first = schedule.get_next(datetime)
    second = schedule.get_next(datetime)
    return second - first
