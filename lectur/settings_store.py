from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .constants import DEFAULT_CLASSES_PER_CYCLE, SETTINGS_JSON_PATH

log = logging.getLogger(__name__)

STORAGE_BACKENDS = ("json", "xlsx")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


@dataclass
class Settings:
    student_id_prefix: str = "STU-"
    entry_id_prefix: str = "CLS-"
    schedule_id_prefix: str = "SCH-"
    fee_id_prefix: str = "FEE-"
    default_classes_per_cycle: int = DEFAULT_CLASSES_PER_CYCLE
    reminders_enabled: bool = True
    reminder_lead_minutes: int = 60
    reminder_weeks: int = 4
    storage_backend: str = "json"  # json | xlsx
    data_path: str = ""  # empty = default location for the backend

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "Settings":
        try:
            per_cycle = int(d.get("default_classes_per_cycle", DEFAULT_CLASSES_PER_CYCLE))
        except (TypeError, ValueError):
            per_cycle = DEFAULT_CLASSES_PER_CYCLE
        if per_cycle < 1:
            per_cycle = DEFAULT_CLASSES_PER_CYCLE
        try:
            lead = int(d.get("reminder_lead_minutes", 60))
        except (TypeError, ValueError):
            lead = 60
        if lead < 0:
            lead = 60
        try:
            weeks = int(d.get("reminder_weeks", 4))
        except (TypeError, ValueError):
            weeks = 4
        # More than two months ahead piles up OS-level alarms for little benefit.
        weeks = min(max(weeks, 1), 8)
        backend = str(d.get("storage_backend", "json")).strip().lower()
        if backend not in STORAGE_BACKENDS:
            backend = "json"
        return Settings(
            student_id_prefix=str(d.get("student_id_prefix", "STU-")),
            entry_id_prefix=str(d.get("entry_id_prefix", "CLS-")),
            schedule_id_prefix=str(d.get("schedule_id_prefix", "SCH-")),
            fee_id_prefix=str(d.get("fee_id_prefix", "FEE-")),
            default_classes_per_cycle=per_cycle,
            reminders_enabled=_as_bool(d.get("reminders_enabled", True)),
            reminder_lead_minutes=lead,
            reminder_weeks=weeks,
            storage_backend=backend,
            data_path=str(d.get("data_path", "") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "student_id_prefix": self.student_id_prefix,
            "entry_id_prefix": self.entry_id_prefix,
            "schedule_id_prefix": self.schedule_id_prefix,
            "fee_id_prefix": self.fee_id_prefix,
            "default_classes_per_cycle": self.default_classes_per_cycle,
            "reminders_enabled": self.reminders_enabled,
            "reminder_lead_minutes": self.reminder_lead_minutes,
            "reminder_weeks": self.reminder_weeks,
            "storage_backend": self.storage_backend,
            "data_path": self.data_path,
        }


class SettingsStore:
    """settings.json beside the data files; a broken file never blocks start-up."""

    def __init__(self, path: Path = SETTINGS_JSON_PATH):
        self.path = path

    def load(self) -> Settings:
        if not self.path.exists():
            return self._write_defaults()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except ValueError as e:
            # Keep the unreadable copy for inspection and start over from defaults.
            backup = self.path.with_suffix(self.path.suffix + ".bad")
            log.warning("Unreadable settings %s (%s); moved to %s", self.path, e, backup)
            self.path.replace(backup)
            return self._write_defaults()
        if not isinstance(data, dict):
            log.warning("Settings %s is not an object; using defaults", self.path)
            data = {}
        return Settings.from_dict(data)

    def _write_defaults(self) -> Settings:
        settings = Settings()
        self.save(settings)
        return settings

    def save(self, settings: Settings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(settings.to_dict(), indent=2) + "\n", encoding="utf-8")
        tmp.replace(self.path)
