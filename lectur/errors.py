from __future__ import annotations

from typing import Any


class LecturError(Exception):
    """Base class for every error raised by the tuition core."""


class ValidationError(LecturError):
    """User input breaks a domain rule. Nothing was saved."""

    def __init__(self, message: str, field: str = ""):
        super().__init__(message)
        self.field = field


class NotFoundError(LecturError):
    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(f"{entity_type} not found: {entity_id}")
        self.entity_type = entity_type
        self.entity_id = entity_id


class StorageError(LecturError):
    """The persistence backend failed to read or write."""


class CycleCompleteError(LecturError):
    """A class entry was attempted on a student whose cycle is already complete.

    Kept apart from ValidationError so callers can offer a cycle reset instead of a
    plain error message.
    """

    def __init__(self, student_id: str, status: Any = None):
        super().__init__(f"Cycle already complete for student {student_id}; reset the cycle first")
        self.student_id = student_id
        self.status = status
