"""Key-value persistence backends consumed by the entity store.

Each collection lives under one key holding a JSON-serialized array. Backends only move
opaque strings; parsing happens in :mod:`lectur.storage`.
"""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Protocol

from openpyxl import Workbook, load_workbook

from .constants import DATA_JSON_PATH, DATA_XLSX_PATH, KV_SHEET
from .errors import StorageError
from .logger import now_ts
from .settings_store import Settings

log = logging.getLogger(__name__)

KV_HEADERS = ["key", "value", "updated_at"]
KEY_COL, VALUE_COL, STAMP_COL = 1, 2, 3


class KeyValueBackend(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, blob: str) -> None: ...


class MemoryBackend:
    def __init__(self, initial: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, blob: str) -> None:
        self.data[key] = blob


class JsonFileBackend:
    """All keys in a single JSON object file, rewritten on every set."""

    def __init__(self, path: Path = DATA_JSON_PATH):
        self.path = path
        self._lock = asyncio.Lock()

    def _read_all(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}

    def _write_key(self, key: str, blob: str) -> None:
        data = self._read_all()
        data[key] = blob
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        tmp.replace(self.path)

    async def get(self, key: str) -> str | None:
        try:
            data = await asyncio.to_thread(self._read_all)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read {self.path}: {e}") from e
        value = data.get(key)
        return None if value is None else str(value)

    async def set(self, key: str, blob: str) -> None:
        async with self._lock:
            try:
                await asyncio.to_thread(self._write_key, key, blob)
            except (OSError, ValueError) as e:
                raise StorageError(f"Failed to write {self.path}: {e}") from e


def _is_blank(values) -> bool:
    return all(v is None or str(v).strip() == "" for v in values)


def _repair_kv_sheet(ws) -> int:
    """Bring a hand-edited store sheet back to ``key | value | updated_at`` rows.

    Blank rows above the header are dropped, a missing header is re-inserted, and below
    it blank rows, repeated header rows and keyless rows are removed. A key stored twice
    keeps its bottom row, the most recently appended one. Returns how many rows went.
    """
    width = len(KV_HEADERS)

    def row_values(row: int) -> list:
        return [ws.cell(row=row, column=c).value for c in range(1, width + 1)]

    def write_header() -> None:
        for col, h in enumerate(KV_HEADERS, start=1):
            ws.cell(row=1, column=col, value=h)

    leading = 0
    while leading < ws.max_row and _is_blank(row_values(leading + 1)):
        leading += 1
    if leading == ws.max_row:
        # Nothing but blanks: keep row 1 for the header.
        if ws.max_row > 1:
            ws.delete_rows(2, ws.max_row - 1)
        write_header()
        return leading - 1
    if leading:
        ws.delete_rows(1, leading)
    if row_values(1) != KV_HEADERS:
        ws.insert_rows(1)
        write_header()

    removed = leading
    seen: set[str] = set()
    # Bottom-up so deletions do not shift unvisited rows.
    for row in range(ws.max_row, 1, -1):
        values = row_values(row)
        key = values[0]
        if values == KV_HEADERS or key is None or str(key).strip() == "" or str(key) in seen:
            ws.delete_rows(row, 1)
            removed += 1
            continue
        seen.add(str(key))
    if removed:
        log.info("Repaired sheet %r, %d stray rows removed", ws.title, removed)
    return removed


class ExcelBackend:
    """Key-value rows in a workbook sheet, for users who keep their records in Excel.

    Excel itself truncates cells above 32767 characters, so very large rosters are
    better served by :class:`JsonFileBackend`.
    """

    def __init__(self, path: Path = DATA_XLSX_PATH, sheet: str = KV_SHEET):
        self.path = path
        self.sheet = sheet
        self._wb = None
        self._lock = asyncio.Lock()

    def invalidate_cache(self) -> None:
        """Force the next operation to re-load the workbook from disk."""
        self._wb = None

    def ensure_workbook(self) -> None:
        if self.path.exists():
            wb = load_workbook(self.path)
        else:
            wb = Workbook()
            wb.remove(wb.active)

        if self.sheet not in wb.sheetnames:
            ws = wb.create_sheet(self.sheet)
        else:
            ws = wb[self.sheet]
        _repair_kv_sheet(ws)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        wb.save(self.path)
        self._wb = wb

    def _load(self):
        if self._wb is None:
            self.ensure_workbook()
        return self._wb

    @staticmethod
    def _find_row_by_key(ws, key: str) -> int | None:
        for row in range(2, ws.max_row + 1):
            if ws.cell(row=row, column=KEY_COL).value == key:
                return row
        return None

    def _get_sync(self, key: str) -> str | None:
        ws = self._load()[self.sheet]
        row = self._find_row_by_key(ws, key)
        if row is None:
            return None
        value = ws.cell(row=row, column=VALUE_COL).value
        return None if value is None else str(value)

    def _set_sync(self, key: str, blob: str) -> None:
        wb = self._load()
        ws = wb[self.sheet]
        row = self._find_row_by_key(ws, key)
        if row is None:
            row = ws.max_row + 1
            ws.cell(row=row, column=KEY_COL, value=key)
        ws.cell(row=row, column=VALUE_COL, value=blob)
        ws.cell(row=row, column=STAMP_COL, value=now_ts())
        wb.save(self.path)

    async def get(self, key: str) -> str | None:
        async with self._lock:
            try:
                return await asyncio.to_thread(self._get_sync, key)
            except Exception as e:
                self.invalidate_cache()
                raise StorageError(f"Failed to read {self.path}: {e}") from e

    async def set(self, key: str, blob: str) -> None:
        async with self._lock:
            try:
                await asyncio.to_thread(self._set_sync, key, blob)
            except Exception as e:
                # The cached workbook may hold the unsaved row; reload from disk next time.
                self.invalidate_cache()
                raise StorageError(f"Failed to write {self.path}: {e}") from e


def open_backend(settings: Settings) -> KeyValueBackend:
    if settings.storage_backend == "xlsx":
        path = Path(settings.data_path) if settings.data_path else DATA_XLSX_PATH
        log.debug("Using workbook storage at %s", path)
        return ExcelBackend(path)
    path = Path(settings.data_path) if settings.data_path else DATA_JSON_PATH
    log.debug("Using JSON storage at %s", path)
    return JsonFileBackend(path)
