"""Tests for console rendering."""

from __future__ import annotations

from datetime import datetime, timezone

from cal_sync.models.state import LogEntry, PendingOperation
from cal_sync.models.sync import CycleSummary
from cal_sync.output import format_log, format_pending, format_summary

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestFormatSummary:
    def test_live_summary(self) -> None:
        summary = CycleSummary(created=2, failed=1, unchanged=4, errors=["create failed for task x"])

        text = format_summary(summary)

        assert "sync complete" in text
        assert "2 created, 1 failed" in text
        assert "Unchanged: 4" in text
        assert "[ERROR] create failed for task x" in text

    def test_dry_run_lists_plan(self) -> None:
        summary = CycleSummary(dry_run=True, planned=["create 'A' in primary"])

        text = format_summary(summary)

        assert "dry run" in text
        assert "Planned operations: 1" in text
        assert "- create 'A' in primary" in text

    def test_review_hints(self) -> None:
        text = format_summary(CycleSummary(diverted=1, severances=2, conflicts=1))

        assert "1 deletion(s) await approval" in text
        assert "2 event(s) were removed outside cal-sync" in text
        assert "Conflicts resolved: 1" in text


def test_format_pending_empty() -> None:
    text = format_pending([], [], [])

    assert text.count("  none") == 3
    assert "Recently deleted" not in text


def test_format_pending_retry_queue() -> None:
    op = PendingOperation(
        type="create",
        task_id="t1",
        payload={},
        collection_id="primary",
        queued_at=NOW,
        retry_count=2,
        last_error="HTTP 503",
    )

    text = format_pending([], [], [op])

    assert "t1  create x3 since 2026-03-01 12:00: HTTP 503" in text


def test_format_log() -> None:
    assert format_log([]) == "Sync log is empty."
    text = format_log([LogEntry(at=NOW, level="warning", message="careful")])
    assert text == "2026-03-01 12:00 WARNING careful"
