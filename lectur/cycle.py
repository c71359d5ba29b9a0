"""Cycle progress and fee emission for completed cycles."""
from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from typing import Iterable

from .dates import Clock, iso_date, month_label, parse_iso_date, parse_month_label, system_clock
from .errors import CycleCompleteError, NotFoundError, ValidationError
from .logger import now_ts
from .models import ClassEntry, FeeEntry, FeeStatus, Student
from .settings_store import Settings
from .storage import EntityStore, new_id
from .validation import validate_amount

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CycleStatus:
    student_id: str
    classes_per_cycle: int
    initial_classes_completed: int
    entry_count: int

    @property
    def total_classes(self) -> int:
        return self.entry_count + self.initial_classes_completed

    @property
    def is_complete(self) -> bool:
        return self.total_classes >= self.classes_per_cycle

    @property
    def remaining(self) -> int:
        return max(0, self.classes_per_cycle - self.total_classes)

    @property
    def progress(self) -> float:
        return min(self.total_classes / self.classes_per_cycle, 1.0)


def cycle_status(student: Student, entries: Iterable[ClassEntry]) -> CycleStatus:
    count = sum(1 for e in entries if e.student_id == student.id)
    return CycleStatus(
        student_id=student.id,
        classes_per_cycle=student.classes_per_cycle,
        initial_classes_completed=student.initial_classes_completed,
        entry_count=count,
    )


def entries_by_date(entries: Iterable[ClassEntry]) -> OrderedDict[str, list[ClassEntry]]:
    """Group entries per date, newest date first, each group in creation order."""
    grouped: dict[str, list[ClassEntry]] = {}
    for e in entries:
        grouped.setdefault(e.date, []).append(e)
    out: OrderedDict[str, list[ClassEntry]] = OrderedDict()
    for day in sorted(grouped, reverse=True):
        out[day] = sorted(grouped[day], key=lambda e: e.created_at)
    return out


def _label_sort_key(label: str) -> tuple:
    parsed = parse_month_label(label)
    if parsed is None:
        return (1, 0, 0, label)
    return (0, parsed[0], parsed[1], label)


def totals_by_month(fees: Iterable[FeeEntry]) -> list[tuple[str, float]]:
    """Sum of amounts per cycle label, chronological where labels parse as dates."""
    totals: dict[str, float] = {}
    for fee in fees:
        totals[fee.month] = totals.get(fee.month, 0.0) + fee.amount
    return [(label, totals[label]) for label in sorted(totals, key=_label_sort_key)]


@dataclass
class AddClassResult:
    entry: ClassEntry
    status: CycleStatus
    fee: FeeEntry | None = None


class CycleEngine:
    def __init__(self, store: EntityStore, settings: Settings | None = None, clock: Clock = system_clock):
        self.store = store
        self.settings = settings or Settings()
        self.clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, student_id: str) -> asyncio.Lock:
        lock = self._locks.get(student_id)
        if lock is None:
            lock = self._locks[student_id] = asyncio.Lock()
        return lock

    async def _require_student(self, student_id: str) -> Student:
        student = await self.store.get_student(student_id)
        if student is None:
            raise NotFoundError("Student", student_id)
        return student

    async def status(self, student_id: str) -> CycleStatus:
        student = await self._require_student(student_id)
        return cycle_status(student, await self.store.list_class_entries(student_id))

    async def add_class_entry(
        self,
        student_id: str,
        day: date | str | None = None,
        topics: str | None = None,
        remarks: str | None = None,
    ) -> AddClassResult:
        """Record a completed class and emit the cycle fee when the cycle fills up.

        Raises CycleCompleteError, without saving anything, when the cycle was already
        complete before this class.
        """
        async with self._lock_for(student_id):
            student = await self._require_student(student_id)
            before = cycle_status(student, await self.store.list_class_entries(student_id))
            if before.is_complete:
                raise CycleCompleteError(student_id, before)

            today = self.clock().date()
            entry = ClassEntry(
                id=new_id(self.settings.entry_id_prefix),
                student_id=student_id,
                date=iso_date(parse_iso_date(day) if day is not None else today),
                created_at=now_ts(),
                topics=(topics or "").strip() or None,
                remarks=(remarks or "").strip() or None,
            )
            await self.store.save_class_entry(entry)

            after = cycle_status(student, await self.store.list_class_entries(student_id))
            fee = None
            if after.is_complete and student.tuition_fee is not None:
                fee = await self._emit_cycle_fee(student, today)
            return AddClassResult(entry=entry, status=after, fee=fee)

    async def _emit_cycle_fee(self, student: Student, today: date) -> FeeEntry | None:
        label = month_label(today)
        existing = await self.store.list_fee_entries(student.id)
        if any(f.month == label for f in existing):
            log.info("Fee for %s already recorded for %s", student.id, label)
            return None
        fee = FeeEntry(
            id=new_id(self.settings.fee_id_prefix),
            student_id=student.id,
            student_name=student.name,
            amount=float(student.tuition_fee or 0.0),
            month=label,
            date=iso_date(today),
            status=FeeStatus.PAYMENT_DUE,
            created_at=now_ts(),
        )
        await self.store.save_fee_entry(fee)
        log.info("Cycle complete for %s, fee %s created for %s", student.id, fee.id, label)
        return fee

    async def reset_cycle(self, student_id: str) -> int:
        """Delete every class entry of the student; fees and schedules are kept."""
        async with self._lock_for(student_id):
            await self._require_student(student_id)
            return await self.store.delete_class_entries_for_student(student_id)

    async def delete_class_entry(self, entry_id: str) -> bool:
        return await self.store.delete_class_entry(entry_id)

    async def delete_entries_on(self, student_id: str, day: date | str) -> int:
        day_str = iso_date(parse_iso_date(day))
        removed = 0
        async with self._lock_for(student_id):
            for entry in await self.store.list_class_entries(student_id):
                if entry.date == day_str and await self.store.delete_class_entry(entry.id):
                    removed += 1
        return removed

    async def toggle_fee_status(self, fee_id: str) -> FeeEntry:
        fee = await self.store.get_fee_entry(fee_id)
        if fee is None:
            raise NotFoundError("FeeEntry", fee_id)
        updated = fee.with_status(fee.status.toggled())
        await self.store.save_fee_entry(updated)
        return updated

    async def add_manual_fee(self, student_id: str, amount, month: str) -> FeeEntry:
        value = validate_amount(amount, allow_zero=False)
        label = (month or "").strip()
        if not label:
            raise ValidationError("Please enter a month/cycle", field="month")
        student = await self._require_student(student_id)
        fee = FeeEntry(
            id=new_id(self.settings.fee_id_prefix),
            student_id=student.id,
            student_name=student.name,
            amount=value,
            month=label,
            date=iso_date(self.clock().date()),
            status=FeeStatus.PAYMENT_DUE,
            created_at=now_ts(),
        )
        await self.store.save_fee_entry(fee)
        return fee

    async def fee_totals_by_month(self, student_id: str | None = None) -> list[tuple[str, float]]:
        return totals_by_month(await self.store.list_fee_entries(student_id))

    async def outstanding_total(self, student_id: str | None = None) -> float:
        fees = await self.store.list_fee_entries(student_id)
        return sum(f.amount for f in fees if f.status is FeeStatus.PAYMENT_DUE)
