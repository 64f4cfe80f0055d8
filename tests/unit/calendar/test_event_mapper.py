"""Tests for mapping task records to Calendar event bodies."""

from __future__ import annotations

from datetime import datetime

from cal_sync.calendar.event_mapper import (
    SIGNATURE,
    build_description,
    completed_summary,
    map_create_body,
    map_update_body,
)
from cal_sync.models.operations import CreateOperation, UpdateOperation


def _create(task, **fields) -> CreateOperation:
    return CreateOperation(task_id="t1", collection_id="primary", task=task, **fields)


def _update(task, existing=None, **fields) -> UpdateOperation:
    return UpdateOperation(
        task_id="t1", collection_id="primary", event_id="E1", task=task, existing_event=existing, **fields
    )


class TestCreateBody:
    def test_timed_task(self, make_task) -> None:
        task = make_task(title="Standup", time="09:00")

        body = map_create_body(_create(task, duration_minutes=45, reminder_minutes=[10], time_zone="Europe/Berlin"))

        assert body["summary"] == "Standup"
        assert body["start"] == {"dateTime": "2026-03-10T09:00:00", "timeZone": "Europe/Berlin"}
        assert body["end"] == {"dateTime": "2026-03-10T09:45:00", "timeZone": "Europe/Berlin"}
        assert body["reminders"] == {
            "useDefault": False,
            "overrides": [{"method": "popup", "minutes": 10}],
        }
        assert "recurrence" not in body

    def test_all_day_end_is_exclusive(self, make_task) -> None:
        body = map_create_body(_create(make_task(time=None, date="2026-03-31")))

        assert body["start"] == {"date": "2026-03-31"}
        assert body["end"] == {"date": "2026-04-01"}

    def test_late_event_crosses_midnight(self, make_task) -> None:
        body = map_create_body(_create(make_task(time="23:30"), duration_minutes=60))

        assert body["end"]["dateTime"] == "2026-03-11T00:30:00"

    def test_recurrence(self, make_task) -> None:
        task = make_task(recurrence_expression="every week", recurrence_rule="FREQ=WEEKLY")

        assert map_create_body(_create(task))["recurrence"] == ["RRULE:FREQ=WEEKLY"]

    def test_description_names_source(self, make_task) -> None:
        description = build_description(make_task(file_path="notes/daily.md", line_number=12))

        assert "notes/daily.md" in description
        assert "Line: 12" in description
        assert description.endswith(SIGNATURE)


class TestUpdateBody:
    def test_keeps_foreign_fields(self, make_task) -> None:
        existing = {"id": "E1", "summary": "Old", "location": "Room 4", "colorId": "5"}

        body = map_update_body(_update(make_task(title="New"), existing))

        assert body["summary"] == "New"
        assert body["location"] == "Room 4"
        assert body["colorId"] == "5"
        assert existing["summary"] == "Old"

    def test_user_edited_description_is_kept(self, make_task) -> None:
        existing = {"description": "My own notes"}

        assert map_update_body(_update(make_task(), existing))["description"] == "My own notes"

    def test_generated_description_is_refreshed(self, make_task) -> None:
        existing = {"description": f"Source: old.md\nLine: 1\n\n{SIGNATURE}"}

        body = map_update_body(_update(make_task(file_path="new.md"), existing))

        assert "new.md" in body["description"]

    def test_removed_recurrence_is_dropped(self, make_task) -> None:
        existing = {"recurrence": ["RRULE:FREQ=DAILY"]}

        assert "recurrence" not in map_update_body(_update(make_task(), existing))


def test_completed_summary() -> None:
    when = datetime(2026, 3, 10, 14, 5)

    assert completed_summary({"summary": "Pay rent"}, when) == "Pay rent - Completed 03-10-2026, 14:05"
    assert completed_summary(None, when) == "(Unknown task) - Completed 03-10-2026, 14:05"
