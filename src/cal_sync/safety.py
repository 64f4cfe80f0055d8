"""Deletion-safety gate: the approval workflow for diverted deletions.

Each :class:`~cal_sync.models.state.DivertedDeletion` moves from *pending*
to exactly one of:

- **approved delete** -- the withheld delete runs (followed by the linked
  create for a ``freshStart`` reroute) and a snapshot of the remote event
  is archived for :data:`~cal_sync.models.state.ARCHIVE_RETENTION`.
- **approved restore** -- local only: the original task line is returned
  for the user to paste back; the next cycle reconciles it naturally.
- **kept** -- the pending item is dropped, the remote event is left alone,
  and the sync record is kept but severed so the deletion is not proposed
  again.

Bulk transitions apply per item.  When a batch partially fails, the items
that succeeded stay approved and the rest stay pending.

The gate also resolves :class:`~cal_sync.models.state.PendingSeverance`
items (events removed remotely) by severing or recreating.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from cal_sync.calendar.batch import BatchExecutor
from cal_sync.calendar.exceptions import classify_status
from cal_sync.exceptions import NothingPendingError, SyncError
from cal_sync.models.operations import DeleteOperation, GetOperation
from cal_sync.models.state import DivertedDeletion
from cal_sync.store import SyncStateStore, WriterStateStore, utc_now

logger = logging.getLogger(__name__)


@dataclass
class GateOutcome:
    """Result of an approval.

    Attributes:
        approved: Task IDs whose deletion completed.
        failed: Task IDs still pending after a failed delete.
        created: Replacement events created for ``freshStart`` reroutes.
        errors: Human-readable failure descriptions.
    """

    approved: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    created: int = 0
    errors: list[str] = field(default_factory=list)


class DeletionGate:
    """Apply review decisions to the pending-deletion queue.

    Every public transition saves *store* before returning.

    Args:
        store: The shared sync-state store.
        executor: Batch executor for the remote side of approvals.  Only
            approvals need one; every other transition is local.
        calendar_names: Calendar ID to display name, for archive entries.
        writer: This writer's base snapshot.  The base of every record the
            gate removes is dropped with it, otherwise the next cycle would
            read the removal as another writer's deletion.
    """

    def __init__(
        self,
        store: SyncStateStore,
        executor: BatchExecutor | None = None,
        calendar_names: dict[str, str] | None = None,
        writer: WriterStateStore | None = None,
    ) -> None:
        self._store = store
        self._executor = executor
        self._calendar_names = calendar_names or {}
        self._writer = writer

    @property
    def pending(self) -> list[DivertedDeletion]:
        return self._store.pending_deletions

    def approve_delete(self, task_id: str, now: datetime | None = None) -> GateOutcome:
        """Approve one pending deletion.

        Raises:
            NothingPendingError: If *task_id* has no pending deletion.
        """
        deletion = self._store.get_diverted_deletion(task_id)
        if deletion is None:
            raise NothingPendingError(task_id)
        return self._approve([deletion], now)

    def approve_all(self, now: datetime | None = None) -> GateOutcome:
        return self._approve(self._store.pending_deletions, now)

    def keep(self, task_id: str, now: datetime | None = None) -> bool:
        """Reject a pending deletion; returns ``False`` if none was pending."""
        kept = self._keep(task_id, now)
        self._store.save()
        return kept

    def keep_all(self, now: datetime | None = None) -> int:
        count = sum(1 for d in self._store.pending_deletions if self._keep(d.task_id, now))
        self._store.save()
        return count

    def approve_restore(self, task_id: str, now: datetime | None = None) -> str:
        """Drop a pending deletion and return the task line to reinsert.

        The sync record stays untouched so the reinserted line reconciles
        against it on the next cycle.

        Raises:
            NothingPendingError: If *task_id* has no pending deletion.
        """
        deletion = self._store.remove_diverted_deletion(task_id)
        if deletion is None:
            raise NothingPendingError(task_id)
        self._store.append_log(
            f"Restore requested for '{deletion.title}' ({deletion.source_file})", now=now
        )
        self._store.save()
        return deletion.original_record_line

    def prune_archive(self, now: datetime | None = None) -> int:
        removed = self._store.prune_archive(now)
        if removed:
            self._store.save()
        return removed

    # ------------------------------------------------------------------
    # Severances
    # ------------------------------------------------------------------

    def sever(self, task_id: str, now: datetime | None = None) -> bool:
        """Stop tracking a remotely-removed event without recreating it."""
        severance = self._store.remove_severance(task_id)
        if severance is None:
            return False
        if task_id in self._store:
            self._store.sever(task_id, now)
        self._store.append_log(f"Severed '{severance.title}' from its calendar event", now=now)
        self._store.save()
        return True

    def recreate(self, task_id: str, now: datetime | None = None) -> bool:
        """Forget a remotely-removed event so the next cycle creates it again."""
        severance = self._store.remove_severance(task_id)
        if severance is None:
            return False
        self._forget(task_id)
        self._store.append_log(f"'{severance.title}' will be recreated on next sync", now=now)
        self._save()
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _forget(self, task_id: str) -> None:
        self._store.remove_sync(task_id)
        if self._writer is not None:
            self._writer.drop_base(task_id)

    def _save(self) -> None:
        self._store.save()
        if self._writer is not None:
            self._writer.save()

    def _keep(self, task_id: str, now: datetime | None) -> bool:
        deletion = self._store.remove_diverted_deletion(task_id)
        if deletion is None:
            return False
        if task_id in self._store:
            self._store.sever(task_id, now)
        self._store.append_log(f"Kept calendar event for '{deletion.title}'", now=now)
        logger.info("Kept event %s for '%s'", deletion.event_id, deletion.title)
        return True

    def _approve(self, deletions: Sequence[DivertedDeletion], now: datetime | None) -> GateOutcome:
        now = now or utc_now()
        outcome = GateOutcome()
        if not deletions:
            return outcome
        if self._executor is None:
            raise SyncError("Approving deletions requires a calendar session")

        gets = {
            d.task_id: GetOperation(task_id=d.task_id, collection_id=d.collection_id, event_id=d.event_id)
            for d in deletions
        }
        fetched = self._executor.execute_batch(list(gets.values())).by_id()

        deletes = {
            d.task_id: DeleteOperation(task_id=d.task_id, collection_id=d.collection_id, event_id=d.event_id)
            for d in deletions
        }
        deleted = self._executor.execute_batch(list(deletes.values())).by_id()

        linked = []
        for deletion in deletions:
            result = deleted[deletes[deletion.task_id].id]
            if not result.success and classify_status(result.status) != "not_found":
                outcome.failed.append(deletion.task_id)
                outcome.errors.append(f"{deletion.title}: {result.error}")
                logger.error("Approved deletion of '%s' failed: %s", deletion.title, result.error)
                continue

            self._store.remove_diverted_deletion(deletion.task_id)
            record = self._store.get(deletion.task_id)
            if record is not None and record.event_id == deletion.event_id:
                self._forget(deletion.task_id)

            snapshot = fetched[gets[deletion.task_id].id]
            self._store.archive_deletion(
                deletion,
                self._calendar_names.get(deletion.collection_id, deletion.collection_id),
                snapshot.body if snapshot.success else None,
                now,
            )
            self._store.append_log(f"Deleted '{deletion.title}' ({deletion.reason})", now=now)
            outcome.approved.append(deletion.task_id)
            if deletion.linked_create is not None:
                linked.append(deletion.linked_create)

        if linked:
            created = self._executor.execute_batch(linked).by_id()
            for op in linked:
                result = created[op.id]
                if result.success and result.body and "id" in result.body:
                    self._store.record_sync(
                        op.task_id, op.task, result.body["id"], op.collection_id, now
                    )
                    outcome.created += 1
                else:
                    self._store.queue_operation(op, result.error, now)
                    outcome.errors.append(f"{op.task.title}: {result.error}")

        self._save()
        logger.info(
            "Approved %d deletion(s), %d still pending", len(outcome.approved), len(outcome.failed)
        )
        return outcome
