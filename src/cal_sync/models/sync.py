"""In-memory results of a sync cycle: the classified diff and the summary."""

from __future__ import annotations

from dataclasses import dataclass, field

from cal_sync.models.task import TaskRecord


@dataclass(frozen=True)
class DiffEntry:
    """A classified task.

    Attributes:
        task: The current task record.
        task_id: Its stable ID (after any migration).
        target: Calendar the task should live in this cycle.
        event_id: Remote event ID for previously-synced tasks.
        previous_target: Calendar recorded before a reroute.
    """

    task: TaskRecord
    task_id: str
    target: str
    event_id: str | None = None
    previous_target: str | None = None


@dataclass
class SyncDiff:
    """Output of :func:`cal_sync.reconcile.compute_diff`.

    ``orphaned`` holds task IDs of sync records with no surviving task.
    """

    to_create: list[DiffEntry] = field(default_factory=list)
    to_update: list[DiffEntry] = field(default_factory=list)
    to_reroute: list[DiffEntry] = field(default_factory=list)
    unchanged: list[DiffEntry] = field(default_factory=list)
    orphaned: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """Whether the diff requires no remote work."""
        return not (self.to_create or self.to_update or self.to_reroute or self.orphaned)


@dataclass
class CycleSummary:
    """User-visible outcome of one sync cycle.

    ``planned`` describes each operation of a dry run; ``pending`` is the
    size of the retry queue after the cycle.
    """

    created: int = 0
    updated: int = 0
    deleted: int = 0
    moved: int = 0
    completed: int = 0
    unchanged: int = 0
    failed: int = 0
    pending: int = 0
    diverted: int = 0
    severances: int = 0
    conflicts: int = 0
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    planned: list[str] = field(default_factory=list)
    dry_run: bool = False
    duration_seconds: float = 0.0

    @property
    def has_failures(self) -> bool:
        return self.failed > 0

    def describe(self) -> str:
        """One-line rendering such as ``"2 created, 1 updated, 1 failed"``."""
        parts = [
            f"{count} {label}"
            for count, label in (
                (self.created, "created"),
                (self.updated, "updated"),
                (self.moved, "moved"),
                (self.completed, "completed"),
                (self.deleted, "deleted"),
                (self.failed, "failed"),
                (self.pending, "pending"),
                (self.diverted, "awaiting approval"),
            )
            if count
        ]
        return ", ".join(parts) if parts else "nothing to sync"
