from __future__ import annotations

import re
from typing import Any, Iterable

from .constants import DEFAULT_CLASSES_PER_CYCLE, WEEKDAYS
from .dates import format_time, is_valid_time, parse_time
from .errors import ValidationError
from .models import Student

_PHONE_NOISE = re.compile(r"[\s\-+().]")


def normalize_mobile_number(number: str | None) -> str | None:
    """Strip formatting from a phone number; None/blank means no number."""
    if number is None or not str(number).strip():
        return None
    cleaned = _PHONE_NOISE.sub("", str(number))
    if not cleaned.isdigit() or not 6 <= len(cleaned) <= 15:
        raise ValidationError(f"Invalid mobile number: {number}", field="mobile_number")
    return cleaned


def whatsapp_number(number: str) -> str:
    """Digits for a WhatsApp deep link, assuming Bangladeshi numbers without a country code."""
    cleaned = _PHONE_NOISE.sub("", number)
    if cleaned.startswith("880"):
        return cleaned
    if cleaned.startswith("0"):
        return f"880{cleaned[1:]}"
    return f"880{cleaned}"


def _as_int(value: Any, field: str, message: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(message, field=field)
    try:
        if isinstance(value, str):
            value = value.strip()
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(message, field=field) from None


def validate_schedule(weekdays: Iterable[str], times: dict[str, str]) -> tuple[list[str], dict[str, str]]:
    """Check a weekly schedule and return it in canonical form.

    Weekdays come back in Sunday..Saturday order and times are zero padded. Times for
    days that are not selected are dropped.
    """
    selected = list(dict.fromkeys(str(d).strip().capitalize() for d in weekdays))
    if not selected:
        raise ValidationError("Please select at least one weekday", field="weekdays")
    unknown = [d for d in selected if d not in WEEKDAYS]
    if unknown:
        raise ValidationError(f"Unknown weekday: {', '.join(unknown)}", field="weekdays")
    selected.sort(key=WEEKDAYS.index)

    missing = [d for d in selected if not is_valid_time(times.get(d))]
    if missing:
        raise ValidationError(f"Please set time for: {', '.join(missing)}", field="times")
    return selected, {d: format_time(*parse_time(times[d])) for d in selected}


def validate_cycle(classes_per_cycle: Any, initial_classes_completed: Any) -> tuple[int, int]:
    per_cycle = _as_int(
        classes_per_cycle,
        "classes_per_cycle",
        "Please enter a valid number of classes per cycle (minimum 1)",
    )
    if per_cycle < 1:
        raise ValidationError(
            "Please enter a valid number of classes per cycle (minimum 1)", field="classes_per_cycle"
        )
    initial = _as_int(
        initial_classes_completed,
        "initial_classes_completed",
        "Please enter a valid number of initial classes completed (minimum 0)",
    )
    if initial < 0:
        raise ValidationError(
            "Please enter a valid number of initial classes completed (minimum 0)",
            field="initial_classes_completed",
        )
    if initial > per_cycle:
        raise ValidationError(
            "Initial classes completed cannot exceed classes per cycle", field="initial_classes_completed"
        )
    return per_cycle, initial


def validate_amount(value: Any, field: str = "amount", allow_zero: bool = True) -> float:
    try:
        amount = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Please enter a valid {field.replace('_', ' ')}", field=field) from None
    if amount != amount or amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f"Please enter a valid {field.replace('_', ' ')}", field=field)
    return amount


def build_student(
    student_id: str,
    name: str,
    weekdays: Iterable[str],
    times: dict[str, str],
    classes_per_cycle: Any = DEFAULT_CLASSES_PER_CYCLE,
    initial_classes_completed: Any = 0,
    tuition_fee: Any = None,
    mobile_number: str | None = None,
    created_at: str = "",
) -> Student:
    """Validate form input and return a Student ready to be saved."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Please enter student name", field="name")
    days, clean_times = validate_schedule(weekdays, times or {})
    per_cycle, initial = validate_cycle(classes_per_cycle, initial_classes_completed)
    fee = None
    if tuition_fee is not None and str(tuition_fee).strip() != "":
        fee = validate_amount(tuition_fee, field="tuition_fee")
    return Student(
        id=student_id,
        name=name,
        weekdays=days,
        times=clean_times,
        classes_per_cycle=per_cycle,
        initial_classes_completed=initial,
        tuition_fee=fee,
        mobile_number=normalize_mobile_number(mobile_number),
        created_at=created_at,
    )
