"""Merging weekly schedules with one-time additions, overrides and removals."""
from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Iterable

from .dates import Clock, format_time, is_valid_time, iso_date, parse_iso_date, parse_time, system_clock, weekday_name
from .errors import NotFoundError, ValidationError
from .logger import now_ts
from .models import ClassEntry, OneTimeSchedule, Student
from .settings_store import Settings
from .storage import EntityStore, new_id

log = logging.getLogger(__name__)


class Origin(str, Enum):
    WEEKLY = "weekly"
    ONE_TIME = "one_time"


@dataclass(frozen=True)
class ScheduledClass:
    student: Student
    time: str
    origin: Origin

    @property
    def is_one_time(self) -> bool:
        return self.origin is Origin.ONE_TIME


def resolve(day: date | str, students: Iterable[Student], schedules: Iterable[OneTimeSchedule]) -> list[ScheduledClass]:
    """Classes held on ``day``.

    Weekly classes come first in roster order, then one-time additions in the order
    the schedules are given. A one-time record with an empty time cancels the weekly
    class; one with a time replaces the weekly time in place or adds the student.
    """
    day = parse_iso_date(day)
    weekday = weekday_name(day)
    day_str = iso_date(day)
    roster = list(students)
    by_id = {s.id: s for s in roster}

    result: list[ScheduledClass] = []
    for student in roster:
        t = student.time_for(weekday)
        if t:
            result.append(ScheduledClass(student, t, Origin.WEEKLY))

    for schedule in schedules:
        if schedule.date != day_str:
            continue
        student = by_id.get(schedule.student_id)
        if student is None:
            continue
        weekly_idx = next(
            (i for i, c in enumerate(result) if c.student.id == student.id and c.origin is Origin.WEEKLY),
            None,
        )
        if schedule.is_removal:
            if weekly_idx is not None:
                del result[weekly_idx]
            continue
        if weekly_idx is not None:
            result[weekly_idx] = ScheduledClass(student, schedule.time, Origin.ONE_TIME)
        elif not any(c.student.id == student.id for c in result):
            result.append(ScheduledClass(student, schedule.time, Origin.ONE_TIME))
    return result


def month_days(year: int, month: int) -> list[date]:
    _, days = calendar.monthrange(year, month)
    return [date(year, month, d) for d in range(1, days + 1)]


def month_calendar(
    year: int, month: int, students: Iterable[Student], schedules: Iterable[OneTimeSchedule]
) -> dict[date, list[ScheduledClass]]:
    roster = list(students)
    prefix = f"{year:04d}-{month:02d}-"
    in_month = [s for s in schedules if s.date.startswith(prefix)]
    return {day: resolve(day, roster, in_month) for day in month_days(year, month)}


def days_with_classes(cal: dict[date, list[ScheduledClass]]) -> list[date]:
    return [day for day, classes in cal.items() if classes]


@dataclass
class DayView:
    day: date
    classes: list[ScheduledClass] = field(default_factory=list)
    entries: list[ClassEntry] = field(default_factory=list)
    one_time: list[OneTimeSchedule] = field(default_factory=list)

    def completed(self, student_id: str) -> bool:
        return any(e.student_id == student_id for e in self.entries)


class ScheduleService:
    """Store-backed schedule queries and date-specific edits."""

    def __init__(self, store: EntityStore, settings: Settings | None = None, clock: Clock = system_clock):
        self.store = store
        self.settings = settings or Settings()
        self.clock = clock

    async def classes_on(self, day: date | str) -> list[ScheduledClass]:
        day = parse_iso_date(day)
        students = await self.store.list_students()
        schedules = await self.store.list_one_time_schedules(date=iso_date(day))
        return resolve(day, students, schedules)

    async def today(self) -> list[ScheduledClass]:
        return await self.classes_on(self.clock().date())

    async def month(self, year: int, month: int) -> dict[date, list[ScheduledClass]]:
        students = await self.store.list_students()
        schedules = await self.store.list_one_time_schedules()
        return month_calendar(year, month, students, schedules)

    async def day_view(self, day: date | str) -> DayView:
        day = parse_iso_date(day)
        day_str = iso_date(day)
        students = await self.store.list_students()
        schedules = await self.store.list_one_time_schedules(date=day_str)
        entries = [e for e in await self.store.list_class_entries() if e.date == day_str]
        known = {s.id for s in students}
        return DayView(
            day=day,
            classes=resolve(day, students, schedules),
            entries=entries,
            one_time=[s for s in schedules if s.student_id in known],
        )

    async def _require_student(self, student_id: str) -> Student:
        student = await self.store.get_student(student_id)
        if student is None:
            raise NotFoundError("Student", student_id)
        return student

    async def set_class_time(self, student_id: str, day: date | str, time: str) -> OneTimeSchedule:
        """Hold the student's class on ``day`` at ``time``.

        Overrides the weekly time when the student has a weekly class that day, adds a
        one-off class otherwise. An existing record for the same date is updated.
        """
        if not is_valid_time(time):
            raise ValidationError("Please set a time", field="time")
        await self._require_student(student_id)
        day_str = iso_date(parse_iso_date(day))
        existing = await self.store.find_one_time_schedule(student_id, day_str)
        schedule = OneTimeSchedule(
            id=existing.id if existing else new_id(self.settings.schedule_id_prefix),
            student_id=student_id,
            date=day_str,
            time=format_time(*parse_time(time)),
            created_at=existing.created_at if existing else now_ts(),
        )
        saved = await self.store.save_one_time_schedule(schedule)
        log.debug("Class for %s on %s set to %s", student_id, day_str, saved.time)
        return saved

    async def cancel_class(self, student_id: str, day: date | str) -> OneTimeSchedule | None:
        """Cancel the student's class on ``day``.

        Returns the removal marker that was stored, or None when only a one-off class
        had to be deleted. Refuses when a class entry already exists for that date.
        """
        student = await self._require_student(student_id)
        day = parse_iso_date(day)
        day_str = iso_date(day)
        entries = await self.store.list_class_entries(student_id)
        if any(e.date == day_str for e in entries):
            raise ValidationError(
                "This class has already been completed. You cannot remove a schedule for a class that has an entry.",
                field="date",
            )
        existing = await self.store.find_one_time_schedule(student_id, day_str)
        if student.time_for(weekday_name(day)) is None:
            if existing is not None:
                await self.store.delete_one_time_schedule(existing.id)
            return None
        marker = OneTimeSchedule(
            id=existing.id if existing else new_id(self.settings.schedule_id_prefix),
            student_id=student_id,
            date=day_str,
            time="",
            created_at=existing.created_at if existing else now_ts(),
        )
        return await self.store.save_one_time_schedule(marker)

    async def delete_one_time_schedule(self, schedule_id: str) -> bool:
        """Drop a one-time record, restoring the weekly schedule for that date."""
        return await self.store.delete_one_time_schedule(schedule_id)
