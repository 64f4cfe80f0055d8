"""cal-sync: one-way sync of markdown tasks to Google Calendar.

Scans a vault of markdown notes for dated tasks, reconciles them against
persisted sync state, and pushes creates, updates, moves and completions to
Google Calendar in batches.  Deletions are withheld for approval while safe
mode is on.
"""

from __future__ import annotations

from cal_sync.changeset import ChangeSet, SyncPolicy, build_change_set
from cal_sync.conflict import detect_conflicts, resolve_conflict
from cal_sync.exceptions import InvalidTaskError, NothingPendingError, StorageError, SyncError
from cal_sync.identity import content_fingerprint, stable_id
from cal_sync.models.operations import BatchResult, Operation, OperationResult
from cal_sync.models.state import DivertedDeletion, SyncRecord, SyncState
from cal_sync.models.sync import CycleSummary, SyncDiff
from cal_sync.models.task import TaskRecord
from cal_sync.parser import parse_task_line, scan_vault
from cal_sync.reconcile import compute_diff
from cal_sync.safety import DeletionGate
from cal_sync.store import SyncStateStore, WriterStateStore

__version__ = "0.1.0"

__all__ = [
    "BatchResult",
    "ChangeSet",
    "CycleSummary",
    "DeletionGate",
    "DivertedDeletion",
    "InvalidTaskError",
    "NothingPendingError",
    "Operation",
    "OperationResult",
    "StorageError",
    "SyncDiff",
    "SyncError",
    "SyncPolicy",
    "SyncRecord",
    "SyncState",
    "SyncStateStore",
    "TaskRecord",
    "WriterStateStore",
    "build_change_set",
    "compute_diff",
    "content_fingerprint",
    "detect_conflicts",
    "parse_task_line",
    "resolve_conflict",
    "scan_vault",
    "stable_id",
]
