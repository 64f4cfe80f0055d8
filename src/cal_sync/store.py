"""Durable sync-state stores.

:class:`SyncStateStore` owns the shared document (sync records, retry
queue, diverted deletions, archive, log).  Reconciliation mutates it only
through the named methods below, so the side effects of diffing stay
auditable.  :class:`WriterStateStore` owns the writer-local base snapshot
used by :mod:`cal_sync.conflict`; it lives in a separate file.

Both stores write atomically: the document is serialised to a sibling temp
file which then replaces the original.  A failed write raises
:class:`~cal_sync.exceptions.StorageError` and leaves the old file intact.
"""

from __future__ import annotations

import logging
import os
import tempfile
import uuid
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from cal_sync.exceptions import StorageError
from cal_sync.identity import content_fingerprint
from cal_sync.models.operations import Operation
from cal_sync.models.state import (
    ARCHIVE_RETENTION,
    SYNC_LOG_MAX_ENTRIES,
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
from cal_sync.models.task import TaskRecord

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _read_document(path: Path) -> str | None:
    if not path.exists():
        return None
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise StorageError(f"Cannot read state file {path}: {exc}", str(path)) from exc


def _write_atomic(path: Path, text: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as exc:
        raise StorageError(f"Cannot write state file {path}: {exc}", str(path)) from exc


class SyncStateStore:
    """The shared sync-state document and its mutation methods.

    Args:
        state: The document to wrap.  A fresh empty document when ``None``.
        path: Where :meth:`save` writes.  ``None`` keeps the store in memory.
        writer_id: Identity stamped into ``last_modified_by`` on writes.
    """

    def __init__(
        self,
        state: SyncState | None = None,
        path: Path | None = None,
        writer_id: str = "",
    ) -> None:
        self._state = state or SyncState()
        self._path = path
        self.writer_id = writer_id

    @classmethod
    def load(cls, path: Path | str, writer_id: str = "") -> SyncStateStore:
        """Load the document at *path*, or start empty if it does not exist.

        Raises:
            StorageError: If the file exists but cannot be read or parsed.
        """
        path = Path(path)
        text = _read_document(path)
        if text is None:
            logger.info("No sync state at %s, starting fresh", path)
            return cls(SyncState(), path, writer_id)
        try:
            state = SyncState.model_validate_json(text)
        except ValidationError as exc:
            raise StorageError(f"Corrupt state file {path}: {exc}", str(path)) from exc
        logger.debug("Loaded %d sync record(s) from %s", len(state.synced_tasks), path)
        return cls(state, path, writer_id)

    def save(self) -> None:
        """Persist the document atomically (no-op for in-memory stores)."""
        if self._path is None:
            return
        _write_atomic(self._path, self._state.model_dump_json(by_alias=True, indent=2))
        logger.debug("Saved sync state to %s", self._path)

    @property
    def state(self) -> SyncState:
        return self._state

    # ------------------------------------------------------------------
    # Sync records
    # ------------------------------------------------------------------

    def get(self, task_id: str) -> SyncRecord | None:
        return self._state.synced_tasks.get(task_id)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._state.synced_tasks

    def __len__(self) -> int:
        return len(self._state.synced_tasks)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._state.synced_tasks))

    def items(self) -> list[tuple[str, SyncRecord]]:
        """Snapshot of ``(task_id, record)`` pairs in insertion order."""
        return list(self._state.synced_tasks.items())

    def record_sync(
        self,
        task_id: str,
        task: TaskRecord,
        event_id: str,
        collection_id: str,
        now: datetime | None = None,
        fingerprint: str | None = None,
    ) -> SyncRecord:
        """Record that *task* is now reflected by remote event *event_id*.

        Creates the record on first sync, otherwise overwrites it and bumps
        its version.  *fingerprint* overrides the task's own fingerprint when
        the remote side was only partially updated (e.g. a move).
        """
        now = now or utc_now()
        previous = self.get(task_id)
        record = SyncRecord(
            event_id=event_id,
            content_fingerprint=fingerprint or content_fingerprint(task),
            target_collection_id=collection_id,
            last_synced_at=now,
            file_path=task.file_path,
            line_number=task.line_number,
            title=task.title,
            date=task.date,
            time=task.time,
            version=previous.version + 1 if previous else 1,
            last_modified_by=self.writer_id,
            last_modified_at=now,
            recurrence_rule=task.recurrence_rule,
            is_severed=previous.is_severed if previous else False,
        )
        self._state.synced_tasks[task_id] = record
        return record

    def migrate_record(
        self,
        old_id: str,
        new_id: str,
        task: TaskRecord,
        now: datetime | None = None,
    ) -> SyncRecord:
        """Re-key the record *old_id* to *new_id* after a reconciled edit.

        The remote event ID, target calendar and stored fingerprint are
        preserved so the caller can still classify the edit against them;
        the stored title, date, time and position follow *task*.

        Raises:
            KeyError: If *old_id* is not tracked.
        """
        now = now or utc_now()
        old = self._state.synced_tasks.pop(old_id)
        migrated = old.model_copy(
            update={
                "file_path": task.file_path,
                "line_number": task.line_number,
                "title": task.title,
                "date": task.date,
                "time": task.time,
                "version": old.version + 1,
                "last_modified_by": self.writer_id,
                "last_modified_at": now,
            }
        )
        self._state.synced_tasks[new_id] = migrated
        logger.debug("Migrated sync record %s -> %s (event %s)", old_id, new_id, old.event_id)
        return migrated

    def record_move(self, task_id: str, collection_id: str, now: datetime | None = None) -> None:
        """Point an existing record at a new calendar after a move."""
        now = now or utc_now()
        record = self._state.synced_tasks[task_id]
        self._state.synced_tasks[task_id] = record.model_copy(
            update={
                "target_collection_id": collection_id,
                "version": record.version + 1,
                "last_modified_by": self.writer_id,
                "last_modified_at": now,
                "last_synced_at": now,
            }
        )

    def sever(self, task_id: str, now: datetime | None = None) -> None:
        """Stop issuing remote operations for *task_id* but keep its record."""
        now = now or utc_now()
        record = self._state.synced_tasks[task_id]
        self._state.synced_tasks[task_id] = record.model_copy(
            update={
                "is_severed": True,
                "version": record.version + 1,
                "last_modified_by": self.writer_id,
                "last_modified_at": now,
            }
        )

    def remove_sync(self, task_id: str) -> SyncRecord | None:
        """Forget *task_id*; returns the removed record, if any."""
        return self._state.synced_tasks.pop(task_id, None)

    # ------------------------------------------------------------------
    # Retry queue
    # ------------------------------------------------------------------

    @property
    def pending_operations(self) -> list[PendingOperation]:
        return list(self._state.pending_operations)

    def queue_operation(
        self,
        operation: Operation,
        error: str | None = None,
        now: datetime | None = None,
    ) -> PendingOperation:
        """Queue a failed operation for replay, replacing any entry for its key."""
        now = now or utc_now()
        key = (operation.task_id, operation.type)
        existing = next((p for p in self._state.pending_operations if p.key == key), None)
        entry = PendingOperation(
            type=operation.type,
            task_id=operation.task_id,
            payload=operation.model_dump(mode="json"),
            collection_id=operation.collection_id,
            queued_at=existing.queued_at if existing else now,
            retry_count=existing.retry_count + 1 if existing else 0,
            last_error=error,
        )
        self._state.pending_operations = [
            p for p in self._state.pending_operations if p.key != key
        ] + [entry]
        return entry

    def clear_pending_operation(self, task_id: str, op_type: str) -> bool:
        """Drop the queued entry for ``(task_id, op_type)``; ``True`` if one existed."""
        before = len(self._state.pending_operations)
        self._state.pending_operations = [
            p for p in self._state.pending_operations if p.key != (task_id, op_type)
        ]
        return len(self._state.pending_operations) != before

    def clear_pending_operations(self) -> int:
        count = len(self._state.pending_operations)
        self._state.pending_operations = []
        return count

    # ------------------------------------------------------------------
    # Diverted deletions and severances
    # ------------------------------------------------------------------

    @property
    def pending_deletions(self) -> list[DivertedDeletion]:
        return list(self._state.pending_deletions)

    def get_diverted_deletion(self, task_id: str) -> DivertedDeletion | None:
        return next((d for d in self._state.pending_deletions if d.task_id == task_id), None)

    def add_diverted_deletion(self, deletion: DivertedDeletion) -> None:
        """Queue *deletion* for approval, replacing an earlier one for the same task."""
        existing = self.get_diverted_deletion(deletion.task_id)
        if existing is not None and existing.diverted_at is not None:
            deletion = deletion.model_copy(update={"diverted_at": existing.diverted_at})
        self._state.pending_deletions = [
            d for d in self._state.pending_deletions if d.task_id != deletion.task_id
        ] + [deletion]

    def remove_diverted_deletion(self, task_id: str) -> DivertedDeletion | None:
        found = self.get_diverted_deletion(task_id)
        if found is not None:
            self._state.pending_deletions = [
                d for d in self._state.pending_deletions if d.task_id != task_id
            ]
        return found

    @property
    def pending_severances(self) -> list[PendingSeverance]:
        return list(self._state.pending_severances)

    def add_severance(self, severance: PendingSeverance) -> None:
        self._state.pending_severances = [
            s for s in self._state.pending_severances if s.task_id != severance.task_id
        ] + [severance]

    def remove_severance(self, task_id: str) -> PendingSeverance | None:
        found = next((s for s in self._state.pending_severances if s.task_id == task_id), None)
        if found is not None:
            self._state.pending_severances = [
                s for s in self._state.pending_severances if s.task_id != task_id
            ]
        return found

    # ------------------------------------------------------------------
    # Archive
    # ------------------------------------------------------------------

    @property
    def recently_deleted(self) -> list[ArchiveEntry]:
        return list(self._state.recently_deleted)

    def archive_deletion(
        self,
        deletion: DivertedDeletion,
        collection_name: str,
        snapshot: dict | None = None,
        now: datetime | None = None,
    ) -> ArchiveEntry:
        """Archive a confirmed deletion with a :data:`ARCHIVE_RETENTION` expiry."""
        now = now or utc_now()
        entry = ArchiveEntry(
            title=deletion.title,
            date=deletion.date,
            time=deletion.time,
            collection_name=collection_name,
            collection_id=deletion.collection_id,
            event_id=deletion.event_id,
            deleted_at=now,
            expires_at=now + ARCHIVE_RETENTION,
            snapshot=snapshot or {},
        )
        self._state.recently_deleted.append(entry)
        return entry

    def prune_archive(self, now: datetime | None = None) -> int:
        """Drop archive entries whose expiry has passed; returns how many."""
        now = now or utc_now()
        kept = [e for e in self._state.recently_deleted if e.expires_at > now]
        removed = len(self._state.recently_deleted) - len(kept)
        self._state.recently_deleted = kept
        if removed:
            logger.info("Pruned %d expired archive entr%s", removed, "y" if removed == 1 else "ies")
        return removed

    # ------------------------------------------------------------------
    # Log
    # ------------------------------------------------------------------

    @property
    def sync_log(self) -> list[LogEntry]:
        return list(self._state.sync_log)

    def append_log(self, message: str, level: str = "info", now: datetime | None = None) -> None:
        """Append to the log ring buffer, evicting the oldest entries."""
        self._state.sync_log.append(LogEntry(at=now or utc_now(), level=level, message=message))
        overflow = len(self._state.sync_log) - SYNC_LOG_MAX_ENTRIES
        if overflow > 0:
            del self._state.sync_log[:overflow]

    def clear_log(self) -> None:
        self._state.sync_log = []

    def mark_synced(self, now: datetime | None = None) -> None:
        self._state.last_sync_at = now or utc_now()


class WriterStateStore:
    """Writer-local base snapshot, stored apart from the shared document.

    Args:
        snapshot: The snapshot to wrap.
        path: Where :meth:`save` writes.  ``None`` keeps it in memory.
    """

    def __init__(self, snapshot: BaseSnapshot, path: Path | None = None) -> None:
        self._snapshot = snapshot
        self._path = path

    @classmethod
    def load(cls, path: Path | str, writer_id: str | None = None) -> WriterStateStore:
        """Load the snapshot at *path*, creating an identity on first use.

        An explicit *writer_id* overrides the stored one.

        Raises:
            StorageError: If the file exists but cannot be read or parsed.
        """
        path = Path(path)
        text = _read_document(path)
        if text is None:
            snapshot = BaseSnapshot(writer_id=writer_id or uuid.uuid4().hex)
            logger.info("New writer identity %s", snapshot.writer_id)
            return cls(snapshot, path)
        try:
            snapshot = BaseSnapshot.model_validate_json(text)
        except ValidationError as exc:
            raise StorageError(f"Corrupt writer state {path}: {exc}", str(path)) from exc
        if writer_id and writer_id != snapshot.writer_id:
            snapshot = snapshot.model_copy(update={"writer_id": writer_id})
        return cls(snapshot, path)

    @classmethod
    def in_memory(cls, writer_id: str) -> WriterStateStore:
        return cls(BaseSnapshot(writer_id=writer_id))

    def save(self) -> None:
        if self._path is None:
            return
        _write_atomic(self._path, self._snapshot.model_dump_json(by_alias=True, indent=2))

    @property
    def writer_id(self) -> str:
        return self._snapshot.writer_id

    @property
    def last_sync_at(self) -> datetime | None:
        return self._snapshot.last_sync_at

    def get_base(self, task_id: str) -> BaseState | None:
        return self._snapshot.base_states.get(task_id)

    @property
    def base_states(self) -> dict[str, BaseState]:
        return dict(self._snapshot.base_states)

    def set_base(self, task_id: str, base: BaseState) -> None:
        self._snapshot.base_states[task_id] = base

    def drop_base(self, task_id: str) -> None:
        self._snapshot.base_states.pop(task_id, None)

    def settle(self, store: SyncStateStore, now: datetime | None = None) -> None:
        """Adopt the shared records as this writer's new base.

        Called only after a fully successful cycle.  Tombstones for tasks
        that are still untracked in *store* are carried over.
        """
        now = now or utc_now()
        settled: dict[str, BaseState] = {
            task_id: BaseState(
                content_fingerprint=record.content_fingerprint,
                event_id=record.event_id,
                version=record.version,
                last_modified_at=record.last_modified_at,
                last_modified_by=record.last_modified_by,
            )
            for task_id, record in store.items()
        }
        for task_id, base in self._snapshot.base_states.items():
            if base.remote_deleted and task_id not in settled:
                settled[task_id] = base
        self._snapshot.base_states = settled
        self._snapshot.last_sync_at = now
