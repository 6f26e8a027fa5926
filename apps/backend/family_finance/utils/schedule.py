from __future__ import annotations

import calendar
from datetime import date, timedelta

from ..models import Frequency, ReportFrequency


def add_months(value: date, months: int) -> date:
    """Shift by whole months, clamping the day to the target month's end."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def advance_date(value: date, frequency: Frequency | ReportFrequency | str) -> date | None:
    """Next occurrence after ``value`` for the given frequency; None for one-off."""
    freq = str(getattr(frequency, "value", frequency))
    if freq == "weekly":
        return value + timedelta(days=7)
    if freq == "biweekly":
        return value + timedelta(days=14)
    if freq == "monthly":
        return add_months(value, 1)
    if freq == "quarterly":
        return add_months(value, 3)
    if freq == "annual":
        return add_months(value, 12)
    return None


def month_bounds(value: date) -> tuple[date, date]:
    first = value.replace(day=1)
    last = value.replace(day=calendar.monthrange(value.year, value.month)[1])
    return first, last


def iter_months(start: date, end: date):
    """Yield the first day of every month touched by ``start``..``end``."""
    cursor = start.replace(day=1)
    while cursor <= end:
        yield cursor
        cursor = add_months(cursor, 1)
