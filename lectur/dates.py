"""Calendar helpers shared by the resolver, the cycle engine and the planner."""
from __future__ import annotations

import re
from datetime import date, datetime
from typing import Callable

from .constants import DEFAULT_CLASS_TIME, MONTHS, WEEKDAYS
from .errors import ValidationError

Clock = Callable[[], datetime]

_TIME_24H = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")
_TIME_12H = re.compile(r"(\d+):(\d+)\s*(AM|PM)", re.IGNORECASE)
_MONTH_LABEL = re.compile(r"^\s*([A-Za-z]+)\s+(\d{4})\s*$")


def system_clock() -> datetime:
    return datetime.now()


def weekday_name(day: date) -> str:
    return WEEKDAYS[day.isoweekday() % 7]


def iso_date(day: date) -> str:
    return day.isoformat()


def parse_iso_date(value: str | date) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError as e:
        raise ValidationError("Invalid date", field="date") from e


def is_valid_time(value: str | None) -> bool:
    return bool(value) and _TIME_24H.match(value.strip()) is not None


def parse_time(value: str) -> tuple[int, int]:
    """Split a 24-hour "HH:MM" string into (hours, minutes)."""
    m = _TIME_24H.match((value or "").strip())
    if m is None:
        raise ValueError(f"invalid time: {value!r}")
    return int(m.group(1)), int(m.group(2))


def format_time(hours: int, minutes: int) -> str:
    return f"{hours:02d}:{minutes:02d}"


def to_24_hour(time12h: str) -> str:
    """Convert "10:00 AM" or "2:30 PM" to "10:00" or "14:30".

    Strings that already look like 24-hour times are only zero-padded. Anything else
    becomes the default class time.
    """
    if is_valid_time(time12h):
        return format_time(*parse_time(time12h))
    m = _TIME_12H.search(time12h or "")
    if m is None:
        return DEFAULT_CLASS_TIME
    hours = int(m.group(1))
    minutes = int(m.group(2))
    period = m.group(3).upper()
    if period == "PM" and hours != 12:
        hours += 12
    if period == "AM" and hours == 12:
        hours = 0
    if hours > 23 or minutes > 59:
        return DEFAULT_CLASS_TIME
    return format_time(hours, minutes)


def month_label(day: date) -> str:
    """Human readable cycle label, e.g. "January 2025"."""
    return f"{MONTHS[day.month - 1]} {day.year}"


def parse_month_label(label: str) -> tuple[int, int] | None:
    """Return (year, month) for labels shaped like "January 2025", else None."""
    m = _MONTH_LABEL.match(label or "")
    if m is None:
        return None
    name = m.group(1).capitalize()
    for idx, month in enumerate(MONTHS, start=1):
        if name == month or (len(name) >= 3 and month.startswith(name)):
            return int(m.group(2)), idx
    return None
