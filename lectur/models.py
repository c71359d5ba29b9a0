from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from .constants import DEFAULT_CLASSES_PER_CYCLE, WEEKDAYS
from .dates import to_24_hour


def _safe_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _safe_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class FeeStatus(str, Enum):
    PAYMENT_DUE = "Payment Due"
    COMPLETED = "Completed"

    @classmethod
    def parse(cls, value: Any) -> "FeeStatus":
        for status in cls:
            if value == status.value or value == status.name:
                return status
        return cls.PAYMENT_DUE

    def toggled(self) -> "FeeStatus":
        if self is FeeStatus.COMPLETED:
            return FeeStatus.PAYMENT_DUE
        return FeeStatus.COMPLETED


@dataclass
class Student:
    id: str
    name: str
    weekdays: list[str] = field(default_factory=list)
    times: dict[str, str] = field(default_factory=dict)
    classes_per_cycle: int = DEFAULT_CLASSES_PER_CYCLE
    initial_classes_completed: int = 0
    tuition_fee: float | None = None
    mobile_number: str | None = None
    created_at: str = ""

    def time_for(self, weekday: str) -> str | None:
        """Weekly class time for the weekday, or None when the day is not scheduled."""
        if weekday not in self.weekdays:
            return None
        t = (self.times.get(weekday) or "").strip()
        return t or None

    def missing_times(self) -> list[str]:
        return [d for d in self.weekdays if not (self.times.get(d) or "").strip()]

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "Student":
        """Build the canonical Student from any stored shape.

        Older records carry a single 12-hour ``time`` string instead of the per-day
        ``times`` map; it is applied to every selected weekday.
        """
        raw_days = d.get("weekdays")
        if not isinstance(raw_days, (list, tuple)):
            raw_days = []
        weekdays = [str(w) for w in raw_days if str(w) in WEEKDAYS]
        raw_times = d.get("times")
        if isinstance(raw_times, dict):
            times = {str(k): str(v) for k, v in raw_times.items() if v}
        elif d.get("time"):
            legacy = to_24_hour(str(d["time"]))
            times = {day: legacy for day in weekdays}
        else:
            times = {}

        per_cycle = _safe_int(d.get("classesPerCycle"), DEFAULT_CLASSES_PER_CYCLE)
        if per_cycle < 1:
            per_cycle = DEFAULT_CLASSES_PER_CYCLE
        initial = _safe_int(d.get("initialClassesCompleted"), 0)
        initial = min(max(initial, 0), per_cycle)

        return Student(
            id=str(d.get("id", "")),
            name=str(d.get("name", "")),
            weekdays=weekdays,
            times=times,
            classes_per_cycle=per_cycle,
            initial_classes_completed=initial,
            tuition_fee=_safe_float(d.get("tuitionFee")),
            mobile_number=_optional_text(d.get("mobileNumber")),
            created_at=str(d.get("createdAt", "") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "weekdays": list(self.weekdays),
            "times": dict(self.times),
            "classesPerCycle": self.classes_per_cycle,
            "initialClassesCompleted": self.initial_classes_completed,
            "createdAt": self.created_at,
        }
        if self.tuition_fee is not None:
            data["tuitionFee"] = self.tuition_fee
        if self.mobile_number:
            data["mobileNumber"] = self.mobile_number
        return data


@dataclass
class ClassEntry:
    id: str
    student_id: str
    date: str
    created_at: str = ""
    topics: str | None = None
    remarks: str | None = None

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "ClassEntry":
        return ClassEntry(
            id=str(d.get("id", "")),
            student_id=str(d.get("studentId", "")),
            # Some records stored a full ISO timestamp; only the day matters.
            date=str(d.get("date", "") or "")[:10],
            created_at=str(d.get("createdAt", "") or ""),
            topics=_optional_text(d.get("topics")),
            remarks=_optional_text(d.get("remarks")),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "studentId": self.student_id,
            "date": self.date,
            "createdAt": self.created_at,
        }
        if self.topics:
            data["topics"] = self.topics
        if self.remarks:
            data["remarks"] = self.remarks
        return data


@dataclass
class OneTimeSchedule:
    """A date-specific addition, override or (with an empty time) removal."""

    id: str
    student_id: str
    date: str
    time: str = ""
    created_at: str = ""

    @property
    def is_removal(self) -> bool:
        return not self.time.strip()

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "OneTimeSchedule":
        return OneTimeSchedule(
            id=str(d.get("id", "")),
            student_id=str(d.get("studentId", "")),
            date=str(d.get("date", "") or "")[:10],
            time=str(d.get("time", "") or "").strip(),
            created_at=str(d.get("createdAt", "") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "studentId": self.student_id,
            "date": self.date,
            "time": self.time,
            "createdAt": self.created_at,
        }


@dataclass
class FeeEntry:
    id: str
    student_id: str
    student_name: str
    amount: float
    month: str
    date: str
    status: FeeStatus = FeeStatus.PAYMENT_DUE
    created_at: str = ""

    def with_status(self, status: FeeStatus) -> "FeeEntry":
        return replace(self, status=status)

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "FeeEntry":
        return FeeEntry(
            id=str(d.get("id", "")),
            student_id=str(d.get("studentId", "")),
            student_name=str(d.get("studentName", "") or ""),
            amount=_safe_float(d.get("amount")) or 0.0,
            month=str(d.get("month", "") or ""),
            date=str(d.get("date", "") or "")[:10],
            status=FeeStatus.parse(d.get("status")),
            created_at=str(d.get("createdAt", "") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "studentId": self.student_id,
            "studentName": self.student_name,
            "amount": self.amount,
            "month": self.month,
            "date": self.date,
            "status": self.status.value,
            "createdAt": self.created_at,
        }
