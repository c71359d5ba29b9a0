"""Shared fixtures for the test suite."""
from __future__ import annotations

from datetime import datetime

from lectur.models import Student


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class RecordingDispatcher:
    """Keeps scheduled reminders in a dict, like the OS notification queue would."""

    def __init__(self, fail_for: set[str] | None = None):
        self.scheduled: dict[str, tuple[datetime, str, str]] = {}
        self.cancelled: list[str] = []
        self.fail_for = fail_for or set()

    async def cancel(self, identifier_prefix: str) -> None:
        self.cancelled.append(identifier_prefix)
        for key in [k for k in self.scheduled if k.startswith(identifier_prefix)]:
            del self.scheduled[key]

    async def schedule(self, identifier: str, fire_at: datetime, title: str, body: str) -> None:
        if any(identifier.startswith(f"student-{sid}-") for sid in self.fail_for):
            raise RuntimeError(f"dispatcher rejected {identifier}")
        self.scheduled[identifier] = (fire_at, title, body)


def make_student(
    student_id: str,
    name: str = "",
    times: dict[str, str] | None = None,
    classes_per_cycle: int = 12,
    initial: int = 0,
    tuition_fee: float | None = None,
) -> Student:
    times = times or {}
    return Student(
        id=student_id,
        name=name or student_id.title(),
        weekdays=list(times),
        times=dict(times),
        classes_per_cycle=classes_per_cycle,
        initial_classes_completed=initial,
        tuition_fee=tuition_fee,
        created_at="2025-01-01T09:00:00",
    )
