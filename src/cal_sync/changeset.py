"""Change-set builder: turn a classified diff into remote operations.

Deletions are the only destructive operations, and they reach the batch
layer directly in two cases only: a completed task under the ``delete``
policy, or any deletion while safe mode is off.  Every other deletion is
diverted into a :class:`~cal_sync.models.state.DivertedDeletion` for a human
to approve (see :mod:`cal_sync.safety`).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from cal_sync.identity import stable_id
from cal_sync.models.operations import (
    CompleteOperation,
    CreateOperation,
    DeleteOperation,
    MoveOperation,
    Operation,
    UpdateOperation,
)
from cal_sync.models.state import DivertedDeletion
from cal_sync.models.sync import DiffEntry, SyncDiff
from cal_sync.models.task import TaskRecord
from cal_sync.parser import format_task_line
from cal_sync.store import SyncStateStore, utc_now

logger = logging.getLogger(__name__)

RerouteMode = Literal["preserve", "duplicate", "freshStart"]
CompletedPolicy = Literal["delete", "markComplete"]


@dataclass(frozen=True)
class SyncPolicy:
    """Policy knobs consumed by :func:`build_change_set`.

    Attributes:
        reroute_mode: What a calendar change does: ``"preserve"`` moves the
            event, ``"duplicate"`` creates a new one and leaves the old,
            ``"freshStart"`` deletes the old and creates a new one.
        completed_policy: ``"delete"`` removes the event of a completed
            task, ``"markComplete"`` appends a completion marker to its title.
        safe_mode: Divert risky deletions for approval.
        default_duration_minutes: Duration for timed tasks without one.
        default_reminders: Popup reminders for tasks without overrides.
        time_zone: IANA zone for timed events.
    """

    reroute_mode: RerouteMode = "preserve"
    completed_policy: CompletedPolicy = "delete"
    safe_mode: bool = True
    default_duration_minutes: int = 30
    default_reminders: tuple[int, ...] = (30, 10)
    time_zone: str = "UTC"


@dataclass
class ChangeSet:
    """Operations for one cycle.

    Attributes:
        operations: Every operation to execute, in build order.
        needs_source_fetch: The update/complete operations whose existing
            remote event must be fetched before they are sent.
        diverted_deletions: Deletions withheld for approval.
    """

    operations: list[Operation] = field(default_factory=list)
    needs_source_fetch: list[Operation] = field(default_factory=list)
    diverted_deletions: list[DivertedDeletion] = field(default_factory=list)

    def add(self, operation: Operation, fetch_first: bool = False) -> None:
        self.operations.append(operation)
        if fetch_first:
            self.needs_source_fetch.append(operation)

    @property
    def keys(self) -> set[tuple[str, str]]:
        """``(task_id, type)`` of every operation, for retry-queue superseding."""
        return {(op.task_id, op.type) for op in self.operations}


def build_change_set(
    store: SyncStateStore,
    diff: SyncDiff,
    completed_records: Iterable[TaskRecord],
    policy: SyncPolicy,
    now: datetime | None = None,
) -> ChangeSet:
    """Build the :class:`ChangeSet` for *diff* under *policy*.

    Args:
        store: Tracked state, read for orphaned and completed records.
        diff: Output of :func:`cal_sync.reconcile.compute_diff`.
        completed_records: Completed task records seen this cycle.
        policy: Routing, completion and safety configuration.
        now: Timestamp stamped on diverted deletions.

    Returns:
        The change set.  Correlation IDs are unique across it.
    """
    now = now or utc_now()
    changes = ChangeSet()

    for entry in diff.to_create:
        changes.add(create_operation(entry.task, entry.task_id, entry.target, policy))

    for entry in diff.to_update:
        changes.add(_update_operation(entry, policy), fetch_first=True)

    for entry in diff.to_reroute:
        _add_reroute(changes, entry, store, policy, now)

    for task in completed_records:
        task_id = stable_id(task)
        record = store.get(task_id)
        if record is None or record.is_severed:
            continue
        if policy.completed_policy == "delete":
            changes.add(
                DeleteOperation(
                    task_id=task_id,
                    collection_id=record.target_collection_id,
                    event_id=record.event_id,
                )
            )
        else:
            changes.add(
                CompleteOperation(
                    task_id=task_id,
                    collection_id=record.target_collection_id,
                    event_id=record.event_id,
                    completed_at=now,
                ),
                fetch_first=True,
            )

    for task_id in diff.orphaned:
        record = store.get(task_id)
        if record is None or record.is_severed:
            continue
        if policy.safe_mode:
            changes.diverted_deletions.append(
                DivertedDeletion(
                    task_id=task_id,
                    event_id=record.event_id,
                    collection_id=record.target_collection_id,
                    title=record.title,
                    date=record.date,
                    time=record.time,
                    source_file=record.file_path,
                    reason="orphaned",
                    reason_detail=f"Task no longer found in {record.file_path}",
                    original_record_line=format_task_line(record.title, record.date, record.time),
                    diverted_at=now,
                )
            )
        else:
            changes.add(
                DeleteOperation(
                    task_id=task_id,
                    collection_id=record.target_collection_id,
                    event_id=record.event_id,
                )
            )

    logger.info(
        "Change set: %d operation(s), %d need pre-fetch, %d deletion(s) diverted",
        len(changes.operations),
        len(changes.needs_source_fetch),
        len(changes.diverted_deletions),
    )
    return changes


def create_operation(
    task: TaskRecord,
    task_id: str,
    collection_id: str,
    policy: SyncPolicy,
) -> CreateOperation:
    """Build a :class:`CreateOperation` with the task's or the policy's defaults."""
    return CreateOperation(
        task_id=task_id,
        collection_id=collection_id,
        task=task,
        duration_minutes=task.duration_override or policy.default_duration_minutes,
        reminder_minutes=_reminders(task, policy),
        time_zone=policy.time_zone,
    )


def _update_operation(entry: DiffEntry, policy: SyncPolicy) -> UpdateOperation:
    return UpdateOperation(
        task_id=entry.task_id,
        collection_id=entry.target,
        event_id=entry.event_id or "",
        task=entry.task,
        duration_minutes=entry.task.duration_override or policy.default_duration_minutes,
        reminder_minutes=_reminders(entry.task, policy),
        time_zone=policy.time_zone,
    )


def _reminders(task: TaskRecord, policy: SyncPolicy) -> list[int]:
    if task.reminder_overrides is not None:
        return list(task.reminder_overrides)
    return list(policy.default_reminders)


def _add_reroute(
    changes: ChangeSet,
    entry: DiffEntry,
    store: SyncStateStore,
    policy: SyncPolicy,
    now: datetime,
) -> None:
    old_target = entry.previous_target or ""
    event_id = entry.event_id or ""

    if policy.reroute_mode == "preserve":
        changes.add(
            MoveOperation(
                task_id=entry.task_id,
                collection_id=old_target,
                event_id=event_id,
                destination_collection_id=entry.target,
                task=entry.task,
            )
        )
        return

    create = create_operation(entry.task, entry.task_id, entry.target, policy)
    if policy.reroute_mode == "duplicate":
        changes.add(create)
        return

    # freshStart: delete the old event, create a new one.
    if policy.safe_mode:
        record = store.get(entry.task_id)
        title = record.title if record else entry.task.title
        changes.diverted_deletions.append(
            DivertedDeletion(
                task_id=entry.task_id,
                event_id=event_id,
                collection_id=old_target,
                title=title,
                date=entry.task.date,
                time=entry.task.time,
                source_file=entry.task.file_path,
                reason="reroute",
                reason_detail=f"Calendar changed from {old_target} to {entry.target}",
                original_record_line=format_task_line(entry.task.title, entry.task.date, entry.task.time),
                linked_create=create,
                diverted_at=now,
            )
        )
        return

    changes.add(DeleteOperation(task_id=entry.task_id, collection_id=old_target, event_id=event_id))
    changes.add(create)
