"""Target calendar resolution for task records."""

from __future__ import annotations

from dataclasses import dataclass, field

from cal_sync.models.task import TaskRecord


@dataclass(frozen=True)
class TargetResolution:
    """Where a task should live, plus an optional routing warning."""

    target: str
    warning: str | None = None


@dataclass(frozen=True)
class TargetResolver:
    """Route tasks to calendars by tag, falling back to a default calendar.

    The first tag on the task (in source order) that has a route wins.
    Tags are compared case-insensitively.

    Attributes:
        default_calendar_id: Calendar for tasks with no routed tag.
        tag_routes: Mapping of ``"#tag"`` to calendar ID.
    """

    default_calendar_id: str
    tag_routes: dict[str, str] = field(default_factory=dict)

    def __call__(self, task: TaskRecord) -> TargetResolution:
        routes = {tag.lower(): calendar for tag, calendar in self.tag_routes.items()}
        matched = [routes[tag.lower()] for tag in task.tags if tag.lower() in routes]
        if not matched:
            return TargetResolution(self.default_calendar_id)

        target = matched[0]
        warning = None
        if len(set(matched)) > 1:
            warning = (
                f"Task '{task.title}' ({task.file_path}:{task.line_number}) matches "
                f"{len(set(matched))} calendar routes; using {target}"
            )
        return TargetResolution(target, warning)
