"""Multi-writer conflict model.

Each tracked task is seen in three states:

- **Base** -- this writer's last settled view (writer-local, never shared).
- **Remote** -- the shared sync record, possibly written by another writer.
- **Local** -- the task record scanned on this machine right now.

Detection runs before diffing.  Comparison is per task ID, so only edits
that leave the identity fields alone (tags, reminders, duration, recurrence)
show up as local changes here; identity-changing edits are the
reconciliation engine's job.

Resolution is whole-record last-write-wins: the remote record's
``last_modified_at`` is compared against the current wall clock at the time
of detection, not against when the local line was edited.  In practice the
local side therefore wins unless the other writer's clock runs ahead.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from cal_sync.identity import content_fingerprint
from cal_sync.models.state import BaseState, SyncRecord
from cal_sync.models.task import TaskRecord
from cal_sync.store import SyncStateStore, WriterStateStore, utc_now

logger = logging.getLogger(__name__)

Outcome = Literal[
    "unchanged",
    "local_changed",
    "adopt_remote",
    "converged",
    "conflict",
    "remote_deleted",
]


@dataclass(frozen=True)
class ConflictCheck:
    """The 3-way comparison for one task ID."""

    task_id: str
    outcome: Outcome
    local_fingerprint: str
    base: BaseState | None = None
    remote: SyncRecord | None = None


@dataclass
class ConflictReport:
    """What the pipeline must do with the checked tasks.

    Attributes:
        held: Task IDs to leave alone this cycle (remote state adopted).
        suppressed: Task IDs removed by another writer; never recreated
            while the local line is unchanged.
        conflicts: Number of true conflicts resolved.
        messages: Log lines describing every non-trivial outcome.
    """

    held: set[str] = field(default_factory=set)
    suppressed: set[str] = field(default_factory=set)
    conflicts: int = 0
    messages: list[str] = field(default_factory=list)


def classify(base: BaseState | None, remote: SyncRecord | None, local_fingerprint: str) -> Outcome:
    """Compare base, remote and local for one task ID."""
    if base is None:
        return "unchanged"

    local_changed = local_fingerprint != base.content_fingerprint

    if base.remote_deleted:
        if remote is not None or local_changed:
            return "local_changed"
        return "remote_deleted"

    if remote is None:
        return "remote_deleted"

    remote_changed = remote.version > base.version
    if remote_changed and local_changed:
        if remote.content_fingerprint == local_fingerprint:
            return "converged"
        return "conflict"
    if remote_changed:
        return "adopt_remote"
    if local_changed:
        return "local_changed"
    return "unchanged"


def detect_conflicts(
    writer: WriterStateStore,
    store: SyncStateStore,
    local: Mapping[str, TaskRecord],
) -> list[ConflictCheck]:
    """Run the 3-way comparison for every local task this writer has a base for."""
    checks = []
    for task_id, task in local.items():
        base = writer.get_base(task_id)
        if base is None:
            continue
        fingerprint = content_fingerprint(task)
        remote = store.get(task_id)
        checks.append(
            ConflictCheck(
                task_id=task_id,
                outcome=classify(base, remote, fingerprint),
                local_fingerprint=fingerprint,
                base=base,
                remote=remote,
            )
        )
    return checks


def resolve_conflict(check: ConflictCheck, now: datetime | None = None) -> Literal["local", "remote"]:
    """Pick the winner of a conflict by last-write-wins.

    The remote record wins only if it was modified after *now*.
    """
    now = now or utc_now()
    if check.remote is not None and check.remote.last_modified_at > now:
        return "remote"
    return "local"


def apply_conflict_checks(
    checks: list[ConflictCheck],
    writer: WriterStateStore,
    local_ids: set[str],
    now: datetime | None = None,
) -> ConflictReport:
    """Turn checks into held/suppressed sets and update tombstones.

    Tombstones for tasks that no longer exist locally are dropped.
    """
    now = now or utc_now()
    report = ConflictReport()

    for check in checks:
        if check.outcome == "adopt_remote":
            report.held.add(check.task_id)
            report.messages.append(f"Adopted remote changes for '{check.remote.title}'")
        elif check.outcome == "conflict":
            report.conflicts += 1
            winner = resolve_conflict(check, now)
            if winner == "remote":
                report.held.add(check.task_id)
            report.messages.append(
                f"Conflict on '{check.remote.title}' resolved in favour of {winner} "
                f"(remote written by {check.remote.last_modified_by or 'unknown'})"
            )
        elif check.outcome == "remote_deleted":
            report.suppressed.add(check.task_id)
            if not check.base.remote_deleted:
                writer.set_base(check.task_id, check.base.model_copy(update={"remote_deleted": True}))
                report.messages.append(f"Task {check.task_id} was removed by another writer")
        elif check.outcome == "local_changed" and check.base.remote_deleted:
            writer.drop_base(check.task_id)

    for task_id, base in writer.base_states.items():
        if base.remote_deleted and task_id not in local_ids:
            writer.drop_base(task_id)

    for message in report.messages:
        logger.info(message)
    return report
