from __future__ import annotations

import calendar
from datetime import date, datetime
from zoneinfo import ZoneInfo

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


def add_month(year: int, month: int, delta: int) -> tuple[int, int]:
    total = year * 12 + (month - 1) + delta
    new_year = total // 12
    new_month = total % 12 + 1
    return new_year, new_month


def clamp_day(year: int, month: int, day: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def compute_due_date(closing_date: date, due_day: int) -> date:
    """One calendar month after ``closing_date`` on ``due_day``.

    ``due_day`` past the end of that month falls on its last day
    (due_day=31 closing in May gives June 30th).
    """
    year, month = add_month(closing_date.year, closing_date.month, 1)
    return clamp_day(year, month, due_day)


def next_period_start(today: date) -> date:
    year, month = add_month(today.year, today.month, 1)
    return date(year, month, 1)


def next_month_label(today: date) -> str:
    """``"November 2025"`` for any day of October 2025."""
    year, month = add_month(today.year, today.month, 1)
    return f"{MONTH_NAMES[month - 1]} {year}"


def local_today(tz_name: str) -> date:
    try:
        zone = ZoneInfo(tz_name)
    except Exception:
        zone = ZoneInfo("UTC")
    return datetime.now(zone).date()
