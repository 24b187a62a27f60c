"""Expansion of weekday patterns into concrete training dates.

Weekdays are indexed 0=Sunday .. 6=Saturday. Every generated date is
normalized to noon so that scheduled sessions do not drift across midnight
when rendered in another timezone.
"""

from __future__ import annotations

import datetime
from typing import Iterable

from errors import InputError

SESSION_TIME = datetime.time(12, 0)


def _as_date(value: datetime.date | datetime.datetime | str) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.date.fromisoformat(str(value)[:10])
    except ValueError as e:
        raise InputError("INVALID_DATE", str(e))


def weekday_index(day: datetime.date) -> int:
    """Return the Sunday based weekday index of ``day``."""
    return (day.weekday() + 1) % 7


def at_noon(day: datetime.date | datetime.datetime | str) -> datetime.datetime:
    return datetime.datetime.combine(_as_date(day), SESSION_TIME)


def generate_recurring_dates(
    start_date: datetime.date | datetime.datetime | str,
    end_date: datetime.date | datetime.datetime | str,
    weekdays: Iterable[int],
) -> list[datetime.datetime]:
    days = set(weekdays)
    invalid = [d for d in days if not isinstance(d, int) or not 0 <= d <= 6]
    if invalid:
        raise InputError("INVALID_WEEKDAY", f"weekdays out of range: {invalid}")
    start = _as_date(start_date)
    end = _as_date(end_date)
    if not days or start > end:
        return []
    dates = []
    current = start
    while current <= end:
        if weekday_index(current) in days:
            dates.append(at_noon(current))
        current += datetime.timedelta(days=1)
    return dates


def single_session_date(
    start_date: datetime.date | datetime.datetime | str,
) -> list[datetime.datetime]:
    return [at_noon(start_date)]


def schedule_dates(
    start_date: datetime.date | datetime.datetime | str,
    end_date: datetime.date | datetime.datetime | str | None = None,
    weekdays: Iterable[int] | None = None,
    recurring: bool = False,
) -> list[datetime.datetime]:
    """Dates for a one-off session or, when ``recurring``, a weekday series."""
    if not recurring:
        return single_session_date(start_date)
    if end_date is None or end_date == "":
        raise InputError("END_DATE_REQUIRED", "recurring schedules need an end date")
    return generate_recurring_dates(start_date, end_date, weekdays or ())
