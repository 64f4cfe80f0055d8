"""Core exceptions for the cal-sync engine.

Calendar API failures live in :mod:`cal_sync.calendar.exceptions`; these
cover the local side of a sync cycle.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for sync-cycle failures that abort the whole cycle."""


class StorageError(SyncError):
    """Raised when persisted state cannot be read or written.

    Fatal to the cycle.  The previous durable state stays authoritative
    because writes only replace the file once fully serialised.

    Attributes:
        path: The state file involved.
    """

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message)
        self.path = path


class InvalidTaskError(ValueError):
    """Raised by the scanner for a task line that cannot be turned into a record.

    The scanner catches this, logs a warning, and skips the line.
    """


class NothingPendingError(SyncError):
    """Raised by a review transition for a task ID with nothing awaiting review.

    Attributes:
        task_id: The ID the caller asked for.
    """

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Nothing pending for task {task_id}")
        self.task_id = task_id
