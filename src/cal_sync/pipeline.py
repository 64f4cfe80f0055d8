"""Pipeline orchestrator for one task-to-calendar sync cycle.

:func:`sync_cycle` runs the engine against already-built collaborators and
is what the tests drive.  :func:`run_sync_cycle` builds those collaborators
from :class:`~cal_sync.config.Settings` (state files, vault scan, OAuth,
batch session) and then delegates.

A cycle proceeds strictly in this order:

1. prune the deletion archive;
2. run the multi-writer conflict checks;
3. reconcile and diff (migrating sync records);
4. build the change set and divert risky deletions;
5. pre-fetch the events that update/complete operations will patch;
6. execute fresh operations plus unsuperseded queued ones;
7. apply results, persist, and settle the writer base if nothing failed.

Anything raised before step 7 finishes aborts the cycle without writing
either state document.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from cal_sync.calendar.auth import authorized_session, get_calendar_credentials
from cal_sync.calendar.batch import BatchExecutor
from cal_sync.calendar.client import GoogleCalendarClient
from cal_sync.calendar.exceptions import classify_status
from cal_sync.changeset import SyncPolicy, build_change_set
from cal_sync.config import Settings
from cal_sync.conflict import apply_conflict_checks, detect_conflicts
from cal_sync.identity import stable_id
from cal_sync.models.operations import (
    CompleteOperation,
    CreateOperation,
    DeleteOperation,
    GetOperation,
    MoveOperation,
    Operation,
    OperationResult,
    UpdateOperation,
    operation_from_payload,
)
from cal_sync.models.state import PendingSeverance
from cal_sync.models.sync import CycleSummary
from cal_sync.parser import ScanResult, scan_vault
from cal_sync.reconcile import ResolveTarget, compute_diff
from cal_sync.routing import TargetResolver
from cal_sync.store import SyncStateStore, WriterStateStore, utc_now

logger = logging.getLogger(__name__)

ExternalEventPolicy = Literal["ask", "sever", "recreate"]


# ---------------------------------------------------------------------------
# Cycle context
# ---------------------------------------------------------------------------


@dataclass
class _Cycle:
    """Mutable state shared by the result handlers of one cycle."""

    store: SyncStateStore
    writer: WriterStateStore
    external_policy: ExternalEventPolicy
    summary: CycleSummary
    now: datetime
    clean: bool = True

    def forget(self, task_id: str) -> None:
        """Drop a sync record together with this writer's base for it."""
        self.store.remove_sync(task_id)
        self.writer.drop_base(task_id)

    def fail(self, op: Operation, result: OperationResult) -> None:
        """Record a failure that will not be retried automatically."""
        self.clean = False
        self.summary.failed += 1
        message = f"{op.type} failed for task {op.task_id}: {result.error}"
        self.summary.errors.append(message)
        self.store.append_log(message, level="error", now=self.now)
        self.store.clear_pending_operation(op.task_id, op.type)
        logger.error(message)

    def queue(self, op: Operation, result: OperationResult) -> None:
        """Hand a transiently failed operation to the retry queue."""
        self.clean = False
        entry = self.store.queue_operation(op, result.error, self.now)
        logger.warning(
            "%s for task %s queued for retry (attempt %d): %s",
            op.type,
            op.task_id,
            entry.retry_count + 1,
            result.error,
        )

    def missing(self, op: Operation) -> None:
        """Apply the external-event policy to an event that no longer exists."""
        self.store.clear_pending_operation(op.task_id, op.type)
        record = self.store.get(op.task_id)
        if record is None:
            return
        self.clean = False
        if self.external_policy == "sever":
            self.store.sever(op.task_id, self.now)
            message = f"Event for '{record.title}' was removed remotely; stopped syncing it"
        elif self.external_policy == "recreate":
            self.forget(op.task_id)
            message = f"Event for '{record.title}' was removed remotely; it will be recreated"
        else:
            self.store.add_severance(
                PendingSeverance(
                    task_id=op.task_id,
                    event_id=record.event_id,
                    collection_id=record.target_collection_id,
                    title=record.title,
                    date=record.date,
                    time=record.time,
                    source_file=record.file_path,
                    detected_at=self.now,
                )
            )
            self.summary.severances += 1
            message = f"Event for '{record.title}' was removed remotely; awaiting review"
        self.store.append_log(message, level="warning", now=self.now)
        logger.warning(message)


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------


def sync_cycle(
    store: SyncStateStore,
    writer: WriterStateStore,
    scan: ScanResult,
    executor: BatchExecutor,
    resolve_target: ResolveTarget,
    policy: SyncPolicy,
    *,
    external_policy: ExternalEventPolicy = "ask",
    dry_run: bool = False,
    now: datetime | None = None,
) -> CycleSummary:
    """Run one sync cycle against prepared collaborators.

    Args:
        store: Shared sync state, freshly loaded.
        writer: This writer's base snapshot.
        scan: Current task records.
        executor: Batch executor bound to an authorised session.
        resolve_target: Maps a task to its target calendar.
        policy: Change-set policy.
        external_policy: ``ask``, ``sever`` or ``recreate`` for events
            removed outside cal-sync.
        dry_run: Plan only: nothing is executed or saved.
        now: Cycle timestamp.

    Returns:
        The cycle summary.

    Raises:
        CalendarAuthError: If the batch session cannot authenticate.
        StorageError: If the state documents cannot be written.
    """
    started = time.monotonic()
    now = now or utc_now()
    summary = CycleSummary(dry_run=dry_run, warnings=list(scan.warnings))
    cycle = _Cycle(store, writer, external_policy, summary, now)

    store.prune_archive(now)

    # --- conflict detection ------------------------------------------
    local = {}
    for task in scan.tasks:
        local.setdefault(stable_id(task), task)
    checks = detect_conflicts(writer, store, local)
    report = apply_conflict_checks(checks, writer, set(local), now)
    summary.conflicts = report.conflicts
    for message in report.messages:
        store.append_log(message, now=now)

    # --- reconcile, diff, change set ---------------------------------
    diff = compute_diff(
        store,
        scan.tasks,
        resolve_target,
        completed_ids={stable_id(task) for task in scan.completed},
        held_ids=report.held,
        suppressed_ids=report.suppressed,
        now=now,
    )
    summary.warnings.extend(diff.warnings)
    summary.unchanged = len(diff.unchanged)
    changes = build_change_set(store, diff, scan.completed, policy, now)

    # Tasks whose event vanished remotely wait for a severance decision.
    awaiting = {s.task_id for s in store.pending_severances}
    fresh = [op for op in changes.operations if op.task_id not in awaiting]
    replay = [op for op in _replayable(store, changes.keys, local) if op.task_id not in awaiting]

    if dry_run:
        summary.planned = [describe_operation(op) for op in fresh + replay]
        summary.planned += [
            f"divert delete '{d.title}' ({d.reason})" for d in changes.diverted_deletions
        ]
        summary.diverted = len(changes.diverted_deletions)
        summary.pending = len(store.pending_operations)
        summary.duration_seconds = time.monotonic() - started
        logger.info("Dry run: %d operation(s) planned", len(summary.planned))
        return summary

    for deletion in changes.diverted_deletions:
        store.add_diverted_deletion(deletion)
    summary.diverted = len(changes.diverted_deletions)

    # --- pre-fetch and execute ---------------------------------------
    fetch_ids = {op.id for op in changes.needs_source_fetch}
    fetch_ids.update(
        op.id
        for op in replay
        if isinstance(op, (UpdateOperation, CompleteOperation)) and op.existing_event is None
    )
    operations = _prefetch(cycle, executor, fresh + replay, fetch_ids)

    if operations:
        batch = executor.execute_batch(operations)
        results = batch.by_id()
        for op in operations:
            _apply_result(cycle, op, results[op.id])

    # --- persist ------------------------------------------------------
    summary.pending = len(store.pending_operations)
    summary.duration_seconds = time.monotonic() - started
    store.append_log(
        f"Sync complete: {summary.describe()}",
        level="info" if cycle.clean else "warning",
        now=now,
    )
    store.mark_synced(now)
    store.save()

    if cycle.clean:
        writer.settle(store, now)
    writer.save()

    logger.info("Sync cycle finished in %.2fs: %s", summary.duration_seconds, summary.describe())
    return summary


def run_sync_cycle(
    settings: Settings,
    *,
    dry_run: bool = False,
    interactive: bool = True,
    client_factory: Callable[..., GoogleCalendarClient] = GoogleCalendarClient,
) -> CycleSummary:
    """Load state, scan the vault, authenticate, and run :func:`sync_cycle`.

    Raises:
        FileNotFoundError: If the vault does not exist.
        StorageError: If a state document cannot be read or written.
        CalendarAPIError: If the calendar service cannot be reached.
    """
    writer = WriterStateStore.load(settings.writer_state_path, settings.writer_id)
    store = SyncStateStore.load(settings.state_path, writer.writer_id)
    scan = scan_vault(settings.vault_path, settings.exclude_folders, settings.exclude_files)

    credentials = get_calendar_credentials(
        settings.credentials_path, settings.token_path, interactive=interactive
    )
    client = client_factory(credentials)
    # Reachability check; raises before anything is executed or saved.
    calendars = client.list_calendars()
    logger.debug("Calendar service reachable (%d calendars)", len(calendars))

    return sync_cycle(
        store,
        writer,
        scan,
        BatchExecutor(authorized_session(credentials)),
        TargetResolver(settings.calendar_id, settings.tag_routes),
        settings.policy(),
        external_policy=settings.external_event_policy,
        dry_run=dry_run,
    )


def describe_operation(op: Operation) -> str:
    """Short human-readable description of *op*."""
    match op:
        case CreateOperation():
            return f"create '{op.task.title}' in {op.collection_id}"
        case UpdateOperation():
            return f"update '{op.task.title}' ({op.event_id})"
        case MoveOperation():
            return f"move {op.event_id} from {op.collection_id} to {op.destination_collection_id}"
        case CompleteOperation():
            return f"complete {op.event_id} in {op.collection_id}"
        case DeleteOperation():
            return f"delete {op.event_id} from {op.collection_id}"
        case GetOperation():
            return f"get {op.event_id} from {op.collection_id}"
    raise TypeError(f"Unknown operation: {op!r}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _replayable(
    store: SyncStateStore,
    fresh_keys: set[tuple[str, str]],
    local: dict,
) -> list[Operation]:
    """Queued operations still worth sending this cycle.

    Entries superseded by a fresh operation for the same key are left in
    the queue; the fresh operation's outcome clears or replaces them.
    Stale entries (a create for a task that is tracked or gone, anything
    else for a task that is untracked or severed) are dropped.
    """
    replay: list[Operation] = []
    for entry in store.pending_operations:
        if entry.key in fresh_keys:
            continue
        record = store.get(entry.task_id)
        if entry.type == "create":
            stale = record is not None or entry.task_id not in local
        else:
            stale = record is None or record.is_severed
        if stale:
            logger.debug("Dropping stale queued %s for %s", entry.type, entry.task_id)
            store.clear_pending_operation(entry.task_id, entry.type)
            continue
        replay.append(operation_from_payload(entry.payload))
    if replay:
        logger.info("Replaying %d queued operation(s)", len(replay))
    return replay


def _prefetch(
    cycle: _Cycle,
    executor: BatchExecutor,
    operations: list[Operation],
    fetch_ids: set[str],
) -> list[Operation]:
    """Attach the current remote event to every operation in *fetch_ids*.

    Operations whose fetch fails are dealt with here and left out of the
    returned list.
    """
    gets = {
        op.id: GetOperation(task_id=op.task_id, collection_id=op.collection_id, event_id=op.event_id)
        for op in operations
        if op.id in fetch_ids
    }
    if not gets:
        return operations

    fetched = executor.execute_batch(list(gets.values())).by_id()
    ready: list[Operation] = []
    for op in operations:
        if op.id not in gets:
            ready.append(op)
            continue
        result = fetched[gets[op.id].id]
        if result.success:
            ready.append(op.model_copy(update={"existing_event": result.body or {}}))
            continue
        kind = classify_status(result.status)
        if kind == "not_found":
            cycle.missing(op)
        elif kind == "transient":
            cycle.queue(op, result)
        else:
            cycle.fail(op, result)
    return ready


def _apply_result(cycle: _Cycle, op: Operation, result: OperationResult) -> None:
    store, summary, now = cycle.store, cycle.summary, cycle.now

    if not result.success:
        kind = classify_status(result.status)
        if kind == "not_found" and isinstance(op, DeleteOperation):
            _deleted(cycle, op)
        elif kind == "not_found" and not isinstance(op, CreateOperation):
            cycle.missing(op)
        elif kind == "transient":
            cycle.queue(op, result)
        else:
            cycle.fail(op, result)
        return

    store.clear_pending_operation(op.task_id, op.type)
    match op:
        case CreateOperation():
            event_id = (result.body or {}).get("id")
            if not event_id:
                cycle.fail(op, OperationResult(op.id, result.status, False, error="Response has no event id"))
                return
            store.record_sync(op.task_id, op.task, event_id, op.collection_id, now)
            summary.created += 1
        case UpdateOperation():
            store.record_sync(op.task_id, op.task, op.event_id, op.collection_id, now)
            summary.updated += 1
        case MoveOperation():
            if op.task_id in store:
                store.record_move(op.task_id, op.destination_collection_id, now)
            summary.moved += 1
        case CompleteOperation():
            cycle.forget(op.task_id)
            summary.completed += 1
        case DeleteOperation():
            _deleted(cycle, op)


def _deleted(cycle: _Cycle, op: DeleteOperation) -> None:
    cycle.store.clear_pending_operation(op.task_id, op.type)
    record = cycle.store.get(op.task_id)
    # A freshStart reroute reuses the task ID for the replacement event.
    if record is not None and record.event_id == op.event_id:
        cycle.forget(op.task_id)
    cycle.summary.deleted += 1
