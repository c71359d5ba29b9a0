from __future__ import annotations

import json
import logging
import uuid
from dataclasses import replace
from typing import Any, Callable, TypeVar

from .constants import (
    ACTIVITY_KEY,
    CLASS_ENTRIES_KEY,
    FEE_ENTRIES_KEY,
    ONE_TIME_SCHEDULES_KEY,
    STUDENTS_KEY,
)
from .backends import KeyValueBackend
from .errors import StorageError
from .logger import AppEvent, ErrorLogger
from .models import ClassEntry, FeeEntry, OneTimeSchedule, Student

log = logging.getLogger(__name__)

T = TypeVar("T")


def new_id(prefix: str = "") -> str:
    return f"{prefix}{uuid.uuid4().hex[:12]}"


class EntityStore:
    """Typed CRUD over a key-value backend, one JSON array per collection.

    List reads degrade to an empty list when the backend fails (the failure is logged);
    writes raise :class:`StorageError` so the caller can offer a retry.
    """

    def __init__(self, backend: KeyValueBackend, err_logger: ErrorLogger | None = None):
        self.backend = backend
        self.err_logger = err_logger or ErrorLogger(path=None)

    # ---------------- Raw collections ----------------
    async def _read(self, key: str, parse: Callable[[dict[str, Any]], T], strict: bool = False) -> list[T]:
        # strict: raise instead of returning [], for reads that precede a rewrite.
        try:
            blob = await self.backend.get(key)
            if not blob:
                return []
            raw = json.loads(blob)
        except (StorageError, ValueError) as e:
            if strict:
                if isinstance(e, StorageError):
                    raise
                raise StorageError(f"Corrupt payload under {key}: {e}") from e
            self.err_logger.log_exception(e, f"read {key}")
            return []
        if not isinstance(raw, list):
            if strict:
                raise StorageError(f"Corrupt payload under {key}: expected a list")
            log.warning("Ignoring non-list payload under %s", key)
            return []
        items: list[T] = []
        for row in raw:
            if not isinstance(row, dict):
                log.debug("Skipping invalid row under %s: %r", key, row)
                continue
            try:
                items.append(parse(row))
            except (TypeError, ValueError, AttributeError) as e:
                self.err_logger.log_exception(e, f"parse row under {key}: {row.get('id', '?')}")
        return items

    async def _write(self, key: str, items: list[Any]) -> None:
        blob = json.dumps([item.to_dict() for item in items])
        try:
            await self.backend.set(key, blob)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to write {key}: {e}") from e

    async def _upsert(self, key: str, parse: Callable[[dict[str, Any]], T], item: Any) -> None:
        items = await self._read(key, parse, strict=True)
        for idx, existing in enumerate(items):
            if existing.id == item.id:
                items[idx] = item
                break
        else:
            items.append(item)
        await self._write(key, items)

    async def _remove(self, key: str, parse: Callable[[dict[str, Any]], T], match: Callable[[T], bool]) -> int:
        items = await self._read(key, parse, strict=True)
        kept = [i for i in items if not match(i)]
        removed = len(items) - len(kept)
        if removed:
            await self._write(key, kept)
        return removed

    # ---------------- Students ----------------
    async def list_students(self) -> list[Student]:
        return await self._read(STUDENTS_KEY, Student.from_dict)

    async def get_student(self, student_id: str) -> Student | None:
        for s in await self.list_students():
            if s.id == student_id:
                return s
        return None

    async def save_student(self, student: Student) -> None:
        await self._upsert(STUDENTS_KEY, Student.from_dict, student)

    async def delete_student(self, student_id: str) -> bool:
        """Delete a student and every record that references it.

        Each collection is rewritten independently; an interruption can leave orphaned
        child records but never a half-written student list.
        """
        removed = await self._remove(STUDENTS_KEY, Student.from_dict, lambda s: s.id == student_id)
        if not removed:
            return False
        await self.delete_class_entries_for_student(student_id)
        await self._remove(ONE_TIME_SCHEDULES_KEY, OneTimeSchedule.from_dict, lambda s: s.student_id == student_id)
        await self._remove(FEE_ENTRIES_KEY, FeeEntry.from_dict, lambda f: f.student_id == student_id)
        return True

    # ---------------- Class entries ----------------
    async def list_class_entries(self, student_id: str | None = None) -> list[ClassEntry]:
        entries = await self._read(CLASS_ENTRIES_KEY, ClassEntry.from_dict)
        if student_id is not None:
            return [e for e in entries if e.student_id == student_id]
        return entries

    async def save_class_entry(self, entry: ClassEntry) -> None:
        await self._upsert(CLASS_ENTRIES_KEY, ClassEntry.from_dict, entry)

    async def delete_class_entry(self, entry_id: str) -> bool:
        return bool(await self._remove(CLASS_ENTRIES_KEY, ClassEntry.from_dict, lambda e: e.id == entry_id))

    async def delete_class_entries_for_student(self, student_id: str) -> int:
        return await self._remove(CLASS_ENTRIES_KEY, ClassEntry.from_dict, lambda e: e.student_id == student_id)

    # ---------------- One-time schedules ----------------
    async def list_one_time_schedules(
        self, student_id: str | None = None, date: str | None = None
    ) -> list[OneTimeSchedule]:
        schedules = await self._read(ONE_TIME_SCHEDULES_KEY, OneTimeSchedule.from_dict)
        if student_id is not None:
            schedules = [s for s in schedules if s.student_id == student_id]
        if date is not None:
            schedules = [s for s in schedules if s.date == date]
        return schedules

    async def find_one_time_schedule(self, student_id: str, date: str) -> OneTimeSchedule | None:
        found = await self.list_one_time_schedules(student_id=student_id, date=date)
        return found[0] if found else None

    async def save_one_time_schedule(self, schedule: OneTimeSchedule) -> OneTimeSchedule:
        """Upsert keeping at most one record per (student, date).

        A record for an already scheduled (student, date) pair replaces the stored one and
        takes over its id. Returns what was stored.
        """
        schedules = await self._read(ONE_TIME_SCHEDULES_KEY, OneTimeSchedule.from_dict, strict=True)
        own_id = schedule.id

        def same_pair(s: OneTimeSchedule) -> bool:
            return s.student_id == schedule.student_id and s.date == schedule.date

        clash = next((s for s in schedules if s.id != own_id and same_pair(s)), None)
        if clash is not None:
            schedule = replace(schedule, id=clash.id, created_at=clash.created_at or schedule.created_at)

        kept: list[OneTimeSchedule] = []
        placed = False
        for existing in schedules:
            if existing.id in (own_id, schedule.id) or same_pair(existing):
                if not placed:
                    kept.append(schedule)
                    placed = True
                continue
            kept.append(existing)
        if not placed:
            kept.append(schedule)
        await self._write(ONE_TIME_SCHEDULES_KEY, kept)
        return schedule

    async def delete_one_time_schedule(self, schedule_id: str) -> bool:
        return bool(
            await self._remove(ONE_TIME_SCHEDULES_KEY, OneTimeSchedule.from_dict, lambda s: s.id == schedule_id)
        )

    # ---------------- Fee entries ----------------
    async def list_fee_entries(self, student_id: str | None = None) -> list[FeeEntry]:
        fees = await self._read(FEE_ENTRIES_KEY, FeeEntry.from_dict)
        if student_id is not None:
            return [f for f in fees if f.student_id == student_id]
        return fees

    async def get_fee_entry(self, fee_id: str) -> FeeEntry | None:
        for f in await self.list_fee_entries():
            if f.id == fee_id:
                return f
        return None

    async def save_fee_entry(self, fee: FeeEntry) -> None:
        await self._upsert(FEE_ENTRIES_KEY, FeeEntry.from_dict, fee)

    async def delete_fee_entry(self, fee_id: str) -> bool:
        return bool(await self._remove(FEE_ENTRIES_KEY, FeeEntry.from_dict, lambda f: f.id == fee_id))

    # ---------------- Activity ----------------
    async def add_event(self, event: AppEvent, keep: int = 2000) -> None:
        events = await self._read(ACTIVITY_KEY, AppEvent.from_dict, strict=True)
        events.append(event)
        await self._write(ACTIVITY_KEY, events[-keep:])

    async def list_events(self, limit: int = 500) -> list[AppEvent]:
        events = await self._read(ACTIVITY_KEY, AppEvent.from_dict)
        return events[-limit:]
