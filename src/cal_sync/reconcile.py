"""Reconciliation engine: classify current tasks against tracked state.

Stable IDs change whenever a task's title, date, time, or file changes, so
an edit naively looks like "create the new task, orphan the old one".
:func:`compute_diff` undoes that with two greedy passes over the apparent
creates before anything is declared orphaned:

1. **In-place edit** -- same ``(file_path, line_number)``.
2. **Cross-file move** -- same ``(title, date, time)``, any file.

Both passes visit orphans in store order and creates in input order; the
first match wins and both sides are consumed.  A task that is renamed *and*
moved in the same cycle matches neither pass and surfaces as create plus
orphan.

Matching migrates the sync record to the new ID via
:meth:`SyncStateStore.migrate_record`.  Computing a diff therefore mutates
the store.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection, Iterable
from datetime import datetime

from cal_sync.identity import content_fingerprint, stable_id
from cal_sync.models.state import SyncRecord
from cal_sync.models.sync import DiffEntry, SyncDiff
from cal_sync.models.task import TaskRecord
from cal_sync.routing import TargetResolution
from cal_sync.store import SyncStateStore

logger = logging.getLogger(__name__)

ResolveTarget = Callable[[TaskRecord], TargetResolution]


def compute_diff(
    store: SyncStateStore,
    records: Iterable[TaskRecord],
    resolve_target: ResolveTarget,
    *,
    completed_ids: Collection[str] = (),
    held_ids: Collection[str] = (),
    suppressed_ids: Collection[str] = (),
    now: datetime | None = None,
) -> SyncDiff:
    """Classify *records* into create/update/reroute/unchanged/orphaned.

    Args:
        store: Tracked state; records are migrated in place on a match.
        records: Current (not completed) task records, in source order.
        resolve_target: Maps a record to its target calendar.
        completed_ids: IDs of completed tasks handled elsewhere; their sync
            records are not orphan candidates.
        held_ids: IDs whose local copy must not be pushed this cycle (the
            conflict model adopted the remote state); classified unchanged.
        suppressed_ids: IDs removed remotely by another writer; skipped.
        now: Timestamp for record migrations.

    Returns:
        The classified :class:`SyncDiff`.
    """
    diff = SyncDiff()
    seen: set[str] = set()

    for record in records:
        task_id = stable_id(record)
        if task_id in seen:
            msg = (
                f"Duplicate task '{record.title}' at {record.file_path}:"
                f"{record.line_number} skipped (same title, date and time as an earlier task)"
            )
            diff.warnings.append(msg)
            logger.warning(msg)
            continue
        seen.add(task_id)

        if task_id in suppressed_ids:
            logger.debug("Task %s suppressed (removed by another writer)", task_id)
            continue

        resolution = resolve_target(record)
        if resolution.warning:
            diff.warnings.append(resolution.warning)

        existing = store.get(task_id)
        if existing is None:
            diff.to_create.append(DiffEntry(record, task_id, resolution.target))
        elif task_id in held_ids:
            diff.unchanged.append(
                DiffEntry(record, task_id, existing.target_collection_id, existing.event_id)
            )
        else:
            _classify(diff, record, task_id, resolution.target, existing)

    candidates = [
        task_id for task_id in store if task_id not in seen and task_id not in completed_ids
    ]
    if candidates and diff.to_create:
        candidates = _reconcile_pass(
            diff,
            store,
            candidates,
            key_record=lambda r: (r.file_path, r.line_number),
            key_task=lambda t: (t.file_path, t.line_number),
            label="in-place edit",
            now=now,
        )
    if candidates and diff.to_create:
        candidates = _reconcile_pass(
            diff,
            store,
            candidates,
            key_record=lambda r: (r.title, r.date, r.time),
            key_task=lambda t: (t.title, t.date, t.time),
            label="moved task",
            now=now,
        )

    for task_id in candidates:
        record = store.get(task_id)
        if record is not None and record.is_severed:
            continue
        diff.orphaned.append(task_id)

    logger.info(
        "Diff: %d create, %d update, %d reroute, %d unchanged, %d orphaned",
        len(diff.to_create),
        len(diff.to_update),
        len(diff.to_reroute),
        len(diff.unchanged),
        len(diff.orphaned),
    )
    return diff


def _classify(
    diff: SyncDiff,
    task: TaskRecord,
    task_id: str,
    target: str,
    existing: SyncRecord,
) -> None:
    """Place a tracked task in the reroute, update, or unchanged bucket."""
    if existing.is_severed:
        diff.unchanged.append(
            DiffEntry(task, task_id, existing.target_collection_id, existing.event_id)
        )
    elif existing.target_collection_id != target:
        diff.to_reroute.append(
            DiffEntry(
                task,
                task_id,
                target,
                existing.event_id,
                previous_target=existing.target_collection_id,
            )
        )
    elif existing.content_fingerprint != content_fingerprint(task):
        diff.to_update.append(DiffEntry(task, task_id, target, existing.event_id))
    else:
        diff.unchanged.append(DiffEntry(task, task_id, target, existing.event_id))


def _reconcile_pass(
    diff: SyncDiff,
    store: SyncStateStore,
    candidates: list[str],
    key_record: Callable[[SyncRecord], tuple],
    key_task: Callable[[TaskRecord], tuple],
    label: str,
    now: datetime | None,
) -> list[str]:
    """Match orphan candidates to pending creates by key; return the unmatched."""
    unmatched: list[str] = []
    for orphan_id in candidates:
        record = store.get(orphan_id)
        if record is None:
            continue
        wanted = key_record(record)
        match = next(
            (i for i, entry in enumerate(diff.to_create) if key_task(entry.task) == wanted),
            None,
        )
        if match is None:
            unmatched.append(orphan_id)
            continue

        entry = diff.to_create.pop(match)
        migrated = store.migrate_record(orphan_id, entry.task_id, entry.task, now=now)
        logger.info(
            "Reconciled %s: '%s' now tracked as %s (event %s)",
            label,
            entry.task.title,
            entry.task_id,
            migrated.event_id,
        )
        _classify(diff, entry.task, entry.task_id, entry.target, migrated)
    return unmatched
