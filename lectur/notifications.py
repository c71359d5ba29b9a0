"""Reminder planning one hour (by default) before each weekly class.

Only instants and identifiers are computed here; delivery is the dispatcher's job.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Protocol

from .constants import WEEKDAYS
from .dates import Clock, parse_time, system_clock
from .logger import ErrorLogger
from .models import Student
from .settings_store import Settings
from .storage import EntityStore

log = logging.getLogger(__name__)

REMINDER_TITLE = "Tuition Reminder"
REMINDER_PREFIX = "student-"


class NotificationDispatcher(Protocol):
    async def cancel(self, identifier_prefix: str) -> None: ...

    async def schedule(self, identifier: str, fire_at: datetime, title: str, body: str) -> None: ...


@dataclass(frozen=True)
class Reminder:
    identifier: str
    student_id: str
    weekday: str
    week_offset: int
    class_at: datetime
    fire_at: datetime
    title: str
    body: str


def reminder_prefix(student_id: str) -> str:
    return f"{REMINDER_PREFIX}{student_id}-"


def reminder_id(student_id: str, weekday: str, week_offset: int) -> str:
    return f"{reminder_prefix(student_id)}{weekday}-{week_offset}"


def next_occurrence(weekday: str, hours: int, minutes: int, now: datetime) -> datetime:
    """Next class start on ``weekday``; today counts only while the time is ahead."""
    target = WEEKDAYS.index(weekday)
    current = now.isoweekday() % 7
    days_ahead = (target - current) % 7
    at = now.replace(hour=hours, minute=minutes, second=0, microsecond=0)
    if days_ahead == 0 and at <= now:
        days_ahead = 7
    return at + timedelta(days=days_ahead)


def plan_reminders(
    student: Student,
    now: datetime,
    weeks: int = 4,
    lead: timedelta = timedelta(hours=1),
) -> list[Reminder]:
    reminders: list[Reminder] = []
    lead_minutes = int(lead.total_seconds() // 60)
    if lead_minutes % 60 == 0 and lead_minutes:
        hours = lead_minutes // 60
        when = "in 1 hour" if hours == 1 else f"in {hours} hours"
    else:
        when = f"in {lead_minutes} minutes"
    body = f"You have a class with {student.name} {when}"

    for weekday in student.weekdays:
        t = student.time_for(weekday)
        if t is None:
            continue
        try:
            hours, minutes = parse_time(t)
        except ValueError:
            log.warning("Skipping invalid time %r for %s on %s", t, student.id, weekday)
            continue
        first = next_occurrence(weekday, hours, minutes, now)
        for offset in range(weeks):
            class_at = first + timedelta(weeks=offset)
            fire_at = class_at - lead
            if fire_at <= now:
                continue
            reminders.append(
                Reminder(
                    identifier=reminder_id(student.id, weekday, offset),
                    student_id=student.id,
                    weekday=weekday,
                    week_offset=offset,
                    class_at=class_at,
                    fire_at=fire_at,
                    title=REMINDER_TITLE,
                    body=body,
                )
            )
    return reminders


class SingleFlight:
    """Coalesce concurrent calls of an async function.

    The first call starts a run. Calls made while it is in flight share one queued
    follow-up run that starts when the current one ends, so a burst of requests costs
    at most two runs and nothing queued ever sees stale data.
    """

    def __init__(self, func: Callable[[], Awaitable[Any]]):
        self._func = func
        self._task: asyncio.Task | None = None
        self._pending: asyncio.Future | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def __call__(self) -> Any:
        loop = asyncio.get_running_loop()
        if not self.running:
            waiter = loop.create_future()
            self._task = loop.create_task(self._drive(waiter))
        else:
            if self._pending is None:
                self._pending = loop.create_future()
            waiter = self._pending
        return await asyncio.shield(waiter)

    async def _drive(self, waiter: asyncio.Future | None) -> None:
        try:
            while waiter is not None:
                try:
                    result = await self._func()
                except Exception as e:
                    if not waiter.done():
                        waiter.set_exception(e)
                else:
                    if not waiter.done():
                        waiter.set_result(result)
                waiter, self._pending = self._pending, None
        finally:
            # Only reached with live waiters when the run itself was cancelled.
            leftovers, self._pending = (waiter, self._pending), None
            for w in leftovers:
                if w is not None and not w.done():
                    w.cancel()


@dataclass
class ReplanReport:
    scheduled: dict[str, int] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


class NotificationPlanner:
    def __init__(
        self,
        store: EntityStore,
        dispatcher: NotificationDispatcher | None,
        settings: Settings | None = None,
        clock: Clock = system_clock,
        err_logger: ErrorLogger | None = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.settings = settings or Settings()
        self.clock = clock
        self.err_logger = err_logger or ErrorLogger(path=None)
        self._replan_all = SingleFlight(self._replan_all_once)

    @property
    def enabled(self) -> bool:
        return self.dispatcher is not None and self.settings.reminders_enabled

    def plan(self, student: Student) -> list[Reminder]:
        return plan_reminders(
            student,
            self.clock(),
            weeks=self.settings.reminder_weeks,
            lead=timedelta(minutes=self.settings.reminder_lead_minutes),
        )

    async def cancel_student(self, student_id: str) -> None:
        # Runs even with reminders disabled so nothing outlives the student.
        if self.dispatcher is None:
            return
        await self.dispatcher.cancel(reminder_prefix(student_id))

    async def replan_student(self, student: Student) -> list[Reminder]:
        """Cancel the student's reminders and, when enabled, schedule a fresh set."""
        if self.dispatcher is None:
            return []
        await self.dispatcher.cancel(reminder_prefix(student.id))
        if not self.enabled:
            log.debug("Reminders disabled; cleared %s without planning", student.id)
            return []
        reminders = self.plan(student)
        for r in reminders:
            await self.dispatcher.schedule(r.identifier, r.fire_at, r.title, r.body)
        return reminders

    async def replan_all(self) -> ReplanReport:
        """Replan every student; one student's failure never stops the others."""
        return await self._replan_all()

    async def _replan_all_once(self) -> ReplanReport:
        report = ReplanReport()
        if self.dispatcher is None:
            return report
        await self.dispatcher.cancel(REMINDER_PREFIX)
        if not self.enabled:
            return report
        students = await self.store.list_students()
        results = await asyncio.gather(
            *(self.replan_student(s) for s in students),
            return_exceptions=True,
        )
        for student, result in zip(students, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                self.err_logger.log_exception(result, f"replan reminders for {student.name} ({student.id})")
                report.failures[student.id] = str(result)
            else:
                report.scheduled[student.id] = len(result)
        return report
