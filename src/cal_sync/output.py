"""Console rendering for the cal-sync CLI.

Every ``format_*`` function returns a string; the CLI prints it.
"""

from __future__ import annotations

from cal_sync.models.state import (
    ArchiveEntry,
    DivertedDeletion,
    LogEntry,
    PendingOperation,
    PendingSeverance,
)
from cal_sync.models.sync import CycleSummary

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_BANNER_WIDTH = 60
_SEPARATOR = "=" * _BANNER_WIDTH
_TIMESTAMP = "%Y-%m-%d %H:%M"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def format_summary(summary: CycleSummary) -> str:
    """Render a :class:`CycleSummary` after ``cal-sync sync``."""
    title = "cal-sync: dry run" if summary.dry_run else "cal-sync: sync complete"
    lines = [_SEPARATOR, f"  {title}", _SEPARATOR]

    if summary.dry_run:
        lines.append(f"  Planned operations: {len(summary.planned)}")
        lines.extend(f"    - {item}" for item in summary.planned)
    else:
        lines.append(f"  {summary.describe()}")

    lines.append(f"  Unchanged: {summary.unchanged}")
    if summary.diverted:
        lines.append(
            f"  {summary.diverted} deletion(s) await approval; run 'cal-sync pending'"
        )
    if summary.severances:
        lines.append(f"  {summary.severances} event(s) were removed outside cal-sync")
    if summary.conflicts:
        lines.append(f"  Conflicts resolved: {summary.conflicts}")

    for warning in summary.warnings:
        lines.append(f"  [WARN] {warning}")
    for error in summary.errors:
        lines.append(f"  [ERROR] {error}")

    lines.append(f"  Duration: {summary.duration_seconds:.2f}s")
    lines.append(_SEPARATOR)
    return "\n".join(lines)


def format_pending(
    deletions: list[DivertedDeletion],
    severances: list[PendingSeverance],
    operations: list[PendingOperation],
    archive: list[ArchiveEntry] | None = None,
) -> str:
    """Render every reviewable queue for ``cal-sync pending``."""
    lines: list[str] = []

    lines.append(f"Pending deletions ({len(deletions)}):")
    for d in deletions:
        when = f"{d.date} {d.time}" if d.time else d.date
        lines.append(f"  {d.task_id}  {d.title} [{when}] ({d.reason}) {d.reason_detail}")
    if not deletions:
        lines.append("  none")

    lines.append(f"Removed outside cal-sync ({len(severances)}):")
    for s in severances:
        lines.append(f"  {s.task_id}  {s.title} [{s.date}] from {s.source_file}")
    if not severances:
        lines.append("  none")

    lines.append(f"Queued for retry ({len(operations)}):")
    for op in operations:
        lines.append(
            f"  {op.task_id}  {op.type} x{op.retry_count + 1} since "
            f"{op.queued_at.strftime(_TIMESTAMP)}: {op.last_error or 'unknown error'}"
        )
    if not operations:
        lines.append("  none")

    if archive:
        lines.append(f"Recently deleted ({len(archive)}):")
        for entry in archive:
            lines.append(
                f"  {entry.title} [{entry.date}] from {entry.collection_name}, "
                f"kept until {entry.expires_at.strftime(_TIMESTAMP)}"
            )

    return "\n".join(lines)


def format_log(entries: list[LogEntry]) -> str:
    """Render the persisted sync log, oldest first."""
    if not entries:
        return "Sync log is empty."
    return "\n".join(
        f"{entry.at.strftime(_TIMESTAMP)} {entry.level.upper():<7} {entry.message}" for entry in entries
    )
