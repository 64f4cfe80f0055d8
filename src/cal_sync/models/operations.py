"""Change-set operations and batch results.

Operations form a tagged union discriminated on ``type``.  Every operation
carries a correlation ``id`` that is unique within a sync cycle and is sent
as the multipart ``Content-ID`` so batched responses can be matched back.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from cal_sync.models.task import TaskRecord


def new_correlation_id(prefix: str) -> str:
    """Return a fresh correlation id such as ``create-3f2a9c0d1b7e4a55``."""
    return f"{prefix}-{uuid.uuid4().hex[:16]}"


class _Operation(BaseModel):
    task_id: str
    collection_id: str


class CreateOperation(_Operation):
    """Insert a new event for *task* into ``collection_id``."""

    id: str = Field(default_factory=lambda: new_correlation_id("create"))
    type: Literal["create"] = "create"
    task: TaskRecord
    duration_minutes: int = 30
    reminder_minutes: list[int] = Field(default_factory=list)
    time_zone: str = "UTC"


class UpdateOperation(_Operation):
    """Replace an event's body, merged over ``existing_event`` when fetched."""

    id: str = Field(default_factory=lambda: new_correlation_id("update"))
    type: Literal["update"] = "update"
    event_id: str
    task: TaskRecord
    duration_minutes: int = 30
    reminder_minutes: list[int] = Field(default_factory=list)
    time_zone: str = "UTC"
    existing_event: dict[str, Any] | None = None


class DeleteOperation(_Operation):
    id: str = Field(default_factory=lambda: new_correlation_id("delete"))
    type: Literal["delete"] = "delete"
    event_id: str


class MoveOperation(_Operation):
    """Move an event from ``collection_id`` to ``destination_collection_id``."""

    id: str = Field(default_factory=lambda: new_correlation_id("move"))
    type: Literal["move"] = "move"
    event_id: str
    destination_collection_id: str
    task: TaskRecord | None = None


class CompleteOperation(_Operation):
    """Append a completion marker to the event's existing summary."""

    id: str = Field(default_factory=lambda: new_correlation_id("complete"))
    type: Literal["complete"] = "complete"
    event_id: str
    existing_event: dict[str, Any] | None = None
    completed_at: datetime | None = None


class GetOperation(_Operation):
    id: str = Field(default_factory=lambda: new_correlation_id("get"))
    type: Literal["get"] = "get"
    event_id: str


Operation = Annotated[
    Union[
        CreateOperation,
        UpdateOperation,
        DeleteOperation,
        MoveOperation,
        CompleteOperation,
        GetOperation,
    ],
    Field(discriminator="type"),
]

OPERATION_ADAPTER: TypeAdapter[Operation] = TypeAdapter(Operation)


def operation_from_payload(payload: dict[str, Any]) -> Operation:
    """Rebuild an operation from a persisted ``model_dump`` payload."""
    return OPERATION_ADAPTER.validate_python(payload)


@dataclass(frozen=True)
class OperationResult:
    """Outcome of one operation inside a batch.

    Attributes:
        correlation_id: The originating operation's ``id``.
        status: HTTP status of the sub-response (``0`` when no response
            was obtained at all).
        success: ``True`` for any 2xx status.
        body: Parsed JSON body, if any.
        error: Error description for failed operations.
    """

    correlation_id: str
    status: int
    success: bool
    body: dict[str, Any] | None = None
    error: str | None = None


@dataclass
class BatchResult:
    """Aggregated outcome of :meth:`BatchExecutor.execute_batch`.

    ``results`` always holds exactly one entry per submitted operation.
    """

    results: list[OperationResult] = field(default_factory=list)
    all_succeeded: bool = True
    batch_failed: bool = False
    batch_status: int | None = None
    batch_error: str | None = None

    def by_id(self) -> dict[str, OperationResult]:
        return {result.correlation_id: result for result in self.results}
