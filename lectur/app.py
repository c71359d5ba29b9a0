from __future__ import annotations

import logging
from datetime import date
from typing import Any, Iterable

from .backends import KeyValueBackend, open_backend
from .cycle import AddClassResult, CycleEngine, CycleStatus
from .dates import Clock, system_clock
from .errors import NotFoundError
from .logger import AppEvent, ErrorLogger, now_ts
from .models import FeeEntry, OneTimeSchedule, Student
from .notifications import NotificationDispatcher, NotificationPlanner, ReplanReport
from .schedule import DayView, ScheduledClass, ScheduleService
from .settings_store import Settings, SettingsStore
from .storage import EntityStore, new_id
from .validation import build_student

log = logging.getLogger(__name__)


class TutorApp:
    """Wires storage, schedule, cycle and reminder services together.

    Validation, cycle and storage errors propagate to the caller. Reminder planning is
    best effort: its failures are logged and never undo or block a data change.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        settings: Settings | None = None,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock = system_clock,
        err_logger: ErrorLogger | None = None,
    ):
        self.settings = settings or Settings()
        self.err_logger = err_logger or ErrorLogger()
        self.clock = clock
        self.store = EntityStore(backend, self.err_logger)
        self.schedule = ScheduleService(self.store, self.settings, clock)
        self.cycles = CycleEngine(self.store, self.settings, clock)
        self.reminders = NotificationPlanner(self.store, dispatcher, self.settings, clock, self.err_logger)

    @classmethod
    def open(
        cls,
        settings_store: SettingsStore | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ) -> "TutorApp":
        settings = (settings_store or SettingsStore()).load()
        return cls(open_backend(settings), settings, dispatcher)

    async def _emit(self, action: str, entity_type: str, entity_id: str, details: str = "") -> None:
        try:
            await self.store.add_event(
                AppEvent(timestamp=now_ts(), action=action, entity_type=entity_type, entity_id=entity_id, details=details)
            )
        except Exception as e:
            self.err_logger.log_exception(e, f"activity {action}")

    async def _replan_quietly(self, student: Student) -> None:
        try:
            await self.reminders.replan_student(student)
        except Exception as e:
            self.err_logger.log_exception(e, f"replan reminders for {student.id}")

    # ---------------- Students ----------------
    async def list_students(self) -> list[Student]:
        return await self.store.list_students()

    async def get_student(self, student_id: str) -> Student:
        student = await self.store.get_student(student_id)
        if student is None:
            raise NotFoundError("Student", student_id)
        return student

    async def add_student(
        self,
        name: str,
        weekdays: Iterable[str],
        times: dict[str, str],
        classes_per_cycle: Any = None,
        initial_classes_completed: Any = 0,
        tuition_fee: Any = None,
        mobile_number: str | None = None,
    ) -> Student:
        student = build_student(
            new_id(self.settings.student_id_prefix),
            name,
            weekdays,
            times,
            classes_per_cycle=classes_per_cycle if classes_per_cycle is not None else self.settings.default_classes_per_cycle,
            initial_classes_completed=initial_classes_completed,
            tuition_fee=tuition_fee,
            mobile_number=mobile_number,
            created_at=now_ts(),
        )
        await self.store.save_student(student)
        await self._emit("add", "student", student.id, student.name)
        await self._replan_quietly(student)
        return student

    async def update_student(
        self,
        student_id: str,
        name: str,
        weekdays: Iterable[str],
        times: dict[str, str],
        classes_per_cycle: Any,
        initial_classes_completed: Any = 0,
        tuition_fee: Any = None,
        mobile_number: str | None = None,
    ) -> Student:
        """Replace the student's editable fields; the id and creation time are kept."""
        current = await self.get_student(student_id)
        student = build_student(
            current.id,
            name,
            weekdays,
            times,
            classes_per_cycle=classes_per_cycle,
            initial_classes_completed=initial_classes_completed,
            tuition_fee=tuition_fee,
            mobile_number=mobile_number,
            created_at=current.created_at,
        )
        await self.store.save_student(student)
        await self._emit("edit", "student", student.id, student.name)
        await self._replan_quietly(student)
        return student

    async def delete_student(self, student_id: str) -> bool:
        deleted = await self.store.delete_student(student_id)
        if not deleted:
            log.info("Delete ignored, no student %s", student_id)
            return False
        await self._emit("delete", "student", student_id)
        try:
            await self.reminders.cancel_student(student_id)
        except Exception as e:
            self.err_logger.log_exception(e, f"cancel reminders for {student_id}")
        return True

    # ---------------- Schedule ----------------
    async def todays_classes(self) -> list[ScheduledClass]:
        return await self.schedule.today()

    async def classes_on(self, day: date | str) -> list[ScheduledClass]:
        return await self.schedule.classes_on(day)

    async def month_calendar(self, year: int, month: int) -> dict[date, list[ScheduledClass]]:
        return await self.schedule.month(year, month)

    async def day_view(self, day: date | str) -> DayView:
        return await self.schedule.day_view(day)

    async def set_class_time(self, student_id: str, day: date | str, time: str) -> OneTimeSchedule:
        saved = await self.schedule.set_class_time(student_id, day, time)
        await self._emit("schedule", "student", student_id, f"{saved.date} {saved.time}")
        return saved

    async def cancel_class(self, student_id: str, day: date | str) -> OneTimeSchedule | None:
        marker = await self.schedule.cancel_class(student_id, day)
        await self._emit("cancel_class", "student", student_id, str(day))
        return marker

    async def delete_one_time_schedule(self, schedule_id: str) -> bool:
        return await self.schedule.delete_one_time_schedule(schedule_id)

    # ---------------- Cycle & fees ----------------
    async def cycle_status(self, student_id: str) -> CycleStatus:
        return await self.cycles.status(student_id)

    async def add_class_entry(
        self,
        student_id: str,
        day: date | str | None = None,
        topics: str | None = None,
        remarks: str | None = None,
    ) -> AddClassResult:
        result = await self.cycles.add_class_entry(student_id, day, topics, remarks)
        await self._emit("add_class", "student", student_id, result.entry.date)
        if result.fee is not None:
            await self._emit("fee_due", "fee", result.fee.id, f"{result.fee.month} {result.fee.amount:g}")
        return result

    async def reset_cycle(self, student_id: str) -> int:
        removed = await self.cycles.reset_cycle(student_id)
        await self._emit("reset_cycle", "student", student_id, f"{removed} entries")
        return removed

    async def delete_class_entry(self, entry_id: str) -> bool:
        return await self.cycles.delete_class_entry(entry_id)

    async def delete_entries_on(self, student_id: str, day: date | str) -> int:
        return await self.cycles.delete_entries_on(student_id, day)

    async def list_fee_entries(self, student_id: str | None = None) -> list[FeeEntry]:
        fees = await self.store.list_fee_entries(student_id)
        return sorted(fees, key=lambda f: (f.date, f.created_at), reverse=True)

    async def toggle_fee_status(self, fee_id: str) -> FeeEntry:
        fee = await self.cycles.toggle_fee_status(fee_id)
        await self._emit("toggle_fee", "fee", fee.id, fee.status.value)
        return fee

    async def add_manual_fee(self, student_id: str, amount: Any, month: str) -> FeeEntry:
        fee = await self.cycles.add_manual_fee(student_id, amount, month)
        await self._emit("add_fee", "fee", fee.id, f"{fee.month} {fee.amount:g}")
        return fee

    # ---------------- Reminders & activity ----------------
    async def replan_reminders(self) -> ReplanReport:
        try:
            return await self.reminders.replan_all()
        except Exception as e:
            self.err_logger.log_exception(e, "replan all reminders")
            return ReplanReport(failures={"*": str(e)})

    async def activity(self, limit: int = 500) -> list[AppEvent]:
        return await self.store.list_events(limit)
