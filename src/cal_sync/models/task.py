"""Task record model.

A :class:`TaskRecord` is produced fresh each cycle by the scanning
collaborator (see :mod:`cal_sync.parser`) and is never mutated by the sync
core.
"""

from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TaskRecord(BaseModel):
    """A dated task extracted from a source document.

    Attributes:
        title: Task text with syntactic markers stripped.
        date: Due date as ``YYYY-MM-DD``.
        time: Start time as ``HH:MM``, or ``None`` for all-day tasks.
        raw_text: The original, unmodified source line.
        file_path: Vault-relative path of the source document.
        line_number: 1-based line number in the source document.
        is_completed: Whether the task checkbox is ticked.
        tags: Tags on the task, including the leading ``#``.
        reminder_overrides: Custom reminder minutes, or ``None`` for the
            configured defaults.
        duration_override: Custom duration in minutes, or ``None``.
        recurrence_expression: Free-text recurrence (``"every week"``).
        recurrence_rule: RRULE body derived from the recurrence expression.
    """

    model_config = ConfigDict(frozen=True)

    title: str
    date: str
    time: str | None = None
    raw_text: str
    file_path: str
    line_number: int
    is_completed: bool = False
    tags: list[str] = Field(default_factory=list)
    reminder_overrides: list[int] | None = None
    duration_override: int | None = None
    recurrence_expression: str | None = None
    recurrence_rule: str | None = None

    @field_validator("date")
    @classmethod
    def _check_date(cls, value: str) -> str:
        """Reject dates that are not ISO ``YYYY-MM-DD``."""
        dt.date.fromisoformat(value)
        return value

    @field_validator("time")
    @classmethod
    def _normalise_time(cls, value: str | None) -> str | None:
        """Normalise ``H:MM`` to ``HH:MM``."""
        if value is None:
            return None
        hours, _, minutes = value.partition(":")
        parsed = dt.time(int(hours), int(minutes))
        return parsed.strftime("%H:%M")

    @property
    def is_all_day(self) -> bool:
        """Whether the task has no start time."""
        return self.time is None

    @property
    def start(self) -> dt.datetime:
        """Task start as a naive datetime (midnight for all-day tasks)."""
        start_date = dt.date.fromisoformat(self.date)
        if self.time is None:
            return dt.datetime.combine(start_date, dt.time())
        return dt.datetime.combine(start_date, dt.time.fromisoformat(self.time))
