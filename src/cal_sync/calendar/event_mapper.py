"""Map task records to Google Calendar event bodies.

- All-day tasks use ``start.date`` / ``end.date`` (exclusive next day).
- Timed tasks use ``dateTime`` plus ``timeZone`` and the operation's
  duration.
- Reminders are popup overrides.
- The description names the source file and line and ends with
  :data:`SIGNATURE`.  On update, a description without the signature is
  treated as user-edited and kept.
- Updates merge over the fetched remote event, so fields this tool never
  writes (location, attendees, colour...) survive.
"""

from __future__ import annotations

import copy
from datetime import datetime, timedelta
from typing import Any

from cal_sync.models.operations import CreateOperation, UpdateOperation
from cal_sync.models.task import TaskRecord

SIGNATURE = "Synced by cal-sync"

_DATE_FORMAT = "%Y-%m-%d"
_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S"
_COMPLETION_FORMAT = "%m-%d-%Y, %H:%M"


def build_description(task: TaskRecord) -> str:
    return f"Source: {task.file_path}\nLine: {task.line_number}\n\n{SIGNATURE}"


def _event_times(task: TaskRecord, duration_minutes: int, time_zone: str) -> tuple[dict, dict]:
    if task.is_all_day:
        end_date = task.start + timedelta(days=1)
        return {"date": task.date}, {"date": end_date.strftime(_DATE_FORMAT)}
    end = task.start + timedelta(minutes=duration_minutes)
    return (
        {"dateTime": task.start.strftime(_DATETIME_FORMAT), "timeZone": time_zone},
        {"dateTime": end.strftime(_DATETIME_FORMAT), "timeZone": time_zone},
    )


def _reminders(minutes: list[int]) -> dict:
    return {
        "useDefault": False,
        "overrides": [{"method": "popup", "minutes": m} for m in minutes],
    }


def map_create_body(op: CreateOperation) -> dict[str, Any]:
    """Event body for inserting *op*'s task."""
    start, end = _event_times(op.task, op.duration_minutes, op.time_zone)
    body: dict[str, Any] = {
        "summary": op.task.title,
        "description": build_description(op.task),
        "start": start,
        "end": end,
        "reminders": _reminders(op.reminder_minutes),
    }
    if op.task.recurrence_rule:
        body["recurrence"] = [f"RRULE:{op.task.recurrence_rule}"]
    return body


def map_update_body(op: UpdateOperation) -> dict[str, Any]:
    """Event body for a full update, merged over ``op.existing_event``."""
    existing = copy.deepcopy(op.existing_event or {})
    current_description = existing.get("description")
    user_edited = bool(current_description) and SIGNATURE not in current_description

    start, end = _event_times(op.task, op.duration_minutes, op.time_zone)
    existing.update(
        {
            "summary": op.task.title,
            "description": current_description if user_edited else build_description(op.task),
            "start": start,
            "end": end,
            "reminders": _reminders(op.reminder_minutes),
        }
    )
    if op.task.recurrence_rule:
        existing["recurrence"] = [f"RRULE:{op.task.recurrence_rule}"]
    else:
        existing.pop("recurrence", None)
    return existing


def completed_summary(existing_event: dict | None, completed_at: datetime) -> str:
    """Summary with a completion marker, e.g. ``"Pay rent - Completed 03-10-2026, 14:05"``."""
    title = (existing_event or {}).get("summary") or "(Unknown task)"
    return f"{title} - Completed {completed_at.strftime(_COMPLETION_FORMAT)}"
