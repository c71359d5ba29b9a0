from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from .constants import ERROR_LOG_PATH

log = logging.getLogger(__name__)


@dataclass
class AppEvent:
    timestamp: str
    action: str
    entity_type: str
    entity_id: str
    details: str = ""

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "AppEvent":
        return AppEvent(
            timestamp=str(d.get("timestamp", "")),
            action=str(d.get("action", "")),
            entity_type=str(d.get("entityType", "")),
            entity_id=str(d.get("entityId", "")),
            details=str(d.get("details", "") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "action": self.action,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "details": self.details,
        }


class ErrorLogger:
    """Appends tracebacks of recovered failures to the error log file."""

    def __init__(self, path: Path | None = ERROR_LOG_PATH):
        self.path = path

    def log_exception(self, exc: BaseException, context: str = "") -> None:
        log.error("%s: %s", context, exc, exc_info=(type(exc), exc, exc.__traceback__))
        if self.path is None:
            return
        ts = now_ts()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(f"[{ts}] {context}\n")
                f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
                f.write("\n")
        except OSError as write_error:
            log.warning("Could not write error log %s: %s", self.path, write_error)


def now_ts() -> str:
    return datetime.now().isoformat(timespec="seconds")
