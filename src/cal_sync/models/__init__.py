"""Data models for cal-sync."""

from __future__ import annotations

from cal_sync.models.operations import (
    BatchResult,
    CompleteOperation,
    CreateOperation,
    DeleteOperation,
    GetOperation,
    MoveOperation,
    Operation,
    OperationResult,
    UpdateOperation,
)
from cal_sync.models.state import (
    ArchiveEntry,
    BaseSnapshot,
    BaseState,
    DivertedDeletion,
    LogEntry,
    PendingOperation,
    PendingSeverance,
    SyncRecord,
    SyncState,
)
from cal_sync.models.sync import CycleSummary, DiffEntry, SyncDiff
from cal_sync.models.task import TaskRecord

__all__ = [
    "ArchiveEntry",
    "BaseSnapshot",
    "BaseState",
    "BatchResult",
    "CompleteOperation",
    "CreateOperation",
    "CycleSummary",
    "DeleteOperation",
    "DiffEntry",
    "DivertedDeletion",
    "GetOperation",
    "LogEntry",
    "MoveOperation",
    "Operation",
    "OperationResult",
    "PendingOperation",
    "PendingSeverance",
    "SyncDiff",
    "SyncRecord",
    "SyncState",
    "TaskRecord",
    "UpdateOperation",
]
