"""Persisted sync-state models.

Two documents are persisted, and they must never be merged:

- :class:`SyncState` -- the *shared* document (sync records, retry queue,
  diverted deletions, archive, log).  It may be replicated between machines
  by whatever syncs the user's vault.
- :class:`BaseSnapshot` -- the *writer-local* document holding this
  machine's last settled view of each record.

Field names serialise as camelCase so the JSON documents read naturally to
non-Python collaborators.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from cal_sync.models.operations import CreateOperation

ARCHIVE_RETENTION = timedelta(days=30)
SYNC_LOG_MAX_ENTRIES = 100


class _StateModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SyncRecord(_StateModel):
    """Persisted tracking info for one synced task.

    Attributes:
        event_id: Remote event identifier.
        content_fingerprint: Fingerprint of the raw line last pushed.
        target_collection_id: Calendar the event lives in.
        last_synced_at: When this writer last pushed the record.
        file_path: Source document at last sync.
        line_number: Source line at last sync.
        title: Task title at last sync.
        date: Task date at last sync.
        time: Task time at last sync (``None`` for all-day).
        version: Incremented on every write by any writer.
        last_modified_by: Writer ID of the most recent writer.
        last_modified_at: Timestamp of the most recent write.
        recurrence_rule: RRULE body the event was created with.
        is_severed: When set, the task is known but no remote operation is
            ever issued for it again.
    """

    event_id: str
    content_fingerprint: str
    target_collection_id: str
    last_synced_at: datetime
    file_path: str
    line_number: int
    title: str
    date: str
    time: str | None = None
    version: int = 1
    last_modified_by: str = ""
    last_modified_at: datetime
    recurrence_rule: str | None = None
    is_severed: bool = False


class PendingOperation(_StateModel):
    """A failed operation waiting to be replayed.

    At most one entry exists per ``(task_id, type)``; re-queuing replaces.
    """

    type: str
    task_id: str
    payload: dict[str, Any]
    collection_id: str
    queued_at: datetime
    retry_count: int = 0
    last_error: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.task_id, self.type)


class DivertedDeletion(_StateModel):
    """A deletion withheld until a human approves it."""

    task_id: str
    event_id: str
    collection_id: str
    title: str
    date: str
    time: str | None = None
    source_file: str
    reason: Literal["orphaned", "reroute"]
    reason_detail: str = ""
    original_record_line: str
    linked_create: CreateOperation | None = None
    diverted_at: datetime | None = None


class ArchiveEntry(_StateModel):
    """A confirmed deletion retained for recovery until ``expires_at``."""

    title: str
    date: str
    time: str | None = None
    collection_name: str
    collection_id: str
    event_id: str
    deleted_at: datetime
    expires_at: datetime
    snapshot: dict[str, Any] = Field(default_factory=dict)


class PendingSeverance(_StateModel):
    """A tracked event that disappeared remotely, awaiting a disposition."""

    task_id: str
    event_id: str
    collection_id: str
    title: str
    date: str
    time: str | None = None
    source_file: str
    detected_at: datetime


class LogEntry(_StateModel):
    """One line of the persisted sync log."""

    at: datetime
    level: Literal["info", "warning", "error"] = "info"
    message: str


class SyncState(_StateModel):
    """The shared, durable sync-state document."""

    synced_tasks: dict[str, SyncRecord] = Field(default_factory=dict)
    pending_operations: list[PendingOperation] = Field(default_factory=list)
    pending_deletions: list[DivertedDeletion] = Field(default_factory=list)
    pending_severances: list[PendingSeverance] = Field(default_factory=list)
    recently_deleted: list[ArchiveEntry] = Field(default_factory=list)
    sync_log: list[LogEntry] = Field(default_factory=list)
    last_sync_at: datetime | None = None


class BaseState(_StateModel):
    """This writer's last settled view of one record.

    ``remote_deleted`` marks a tombstone: another writer removed the record
    while this writer still had the task, and the local copy must not be
    recreated until it is edited.
    """

    content_fingerprint: str
    event_id: str
    version: int
    last_modified_at: datetime
    last_modified_by: str = ""
    remote_deleted: bool = False


class BaseSnapshot(_StateModel):
    """Writer-local document; never stored alongside :class:`SyncState`."""

    writer_id: str
    last_sync_at: datetime | None = None
    base_states: dict[str, BaseState] = Field(default_factory=dict)
