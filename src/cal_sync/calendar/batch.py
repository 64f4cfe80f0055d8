"""Batched execution of change-set operations.

Operations are grouped by calendar (the batch endpoint requires one
calendar per request), chunked to :data:`MAX_BATCH_SIZE`, and posted as
multipart envelopes through an authorised HTTP session.

Failure handling per chunk:

- **Envelope failure** (transport error or non-200 envelope): every
  operation in the chunk gets a failed result carrying the envelope status
  (``0`` for transport errors).  A 502/503 envelope is first retried once
  after :attr:`BatchExecutor.retry_delay` seconds.
- **Per-operation failure**: only that operation's result fails.
- **Missing response**: failed result, never dropped.

No further retry happens here; the caller queues failed operations.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import requests
from google.auth.exceptions import RefreshError

from cal_sync.calendar.codec import build_batch_body, new_boundary, parse_batch_response
from cal_sync.calendar.exceptions import RETRYABLE_BATCH_STATUSES, CalendarAuthError
from cal_sync.models.operations import BatchResult, Operation, OperationResult

logger = logging.getLogger(__name__)

BATCH_ENDPOINT = "https://www.googleapis.com/batch/calendar/v3"

# The API accepts 100 per request; stay well below it.
MAX_BATCH_SIZE = 50


@dataclass
class _ChunkOutcome:
    results: list[OperationResult] = field(default_factory=list)
    failed: bool = False
    status: int | None = None
    error: str | None = None


def chunked(items: Sequence[Operation], size: int) -> list[list[Operation]]:
    """Split *items* into consecutive lists of at most *size*."""
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def group_by_collection(operations: Sequence[Operation]) -> dict[str, list[Operation]]:
    """Group operations by calendar, preserving first-seen order."""
    groups: dict[str, list[Operation]] = {}
    for op in operations:
        groups.setdefault(op.collection_id, []).append(op)
    return groups


class BatchExecutor:
    """Execute operations against the Calendar batch endpoint.

    Args:
        session: An authorised HTTP session exposing
            ``post(url, data=..., headers=...)`` (normally
            :class:`google.auth.transport.requests.AuthorizedSession`).
        endpoint: Batch endpoint URL.
        max_batch_size: Maximum operations per request.
        retry_delay: Seconds to wait before the single 502/503 retry.
        sleep: Sleep function, replaceable in tests.
    """

    def __init__(
        self,
        session: Any,
        endpoint: str = BATCH_ENDPOINT,
        max_batch_size: int = MAX_BATCH_SIZE,
        retry_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session = session
        self._endpoint = endpoint
        self._max_batch_size = max_batch_size
        self._retry_delay = retry_delay
        self._sleep = sleep

    def execute_batch(self, operations: Sequence[Operation]) -> BatchResult:
        """Execute *operations*; returns one result per operation.

        Raises:
            CalendarAuthError: If the session cannot refresh its credentials.
        """
        batch = BatchResult()
        if not operations:
            return batch

        for collection_id, ops in group_by_collection(operations).items():
            for chunk in chunked(ops, self._max_batch_size):
                outcome = self._execute_chunk(chunk)
                batch.results.extend(outcome.results)
                if outcome.failed:
                    batch.batch_failed = True
                    batch.batch_status = outcome.status
                    batch.batch_error = outcome.error
                    logger.warning(
                        "Batch of %d operation(s) for %s failed: %s",
                        len(chunk),
                        collection_id,
                        outcome.error,
                    )

        batch.all_succeeded = not batch.batch_failed and all(r.success for r in batch.results)
        failed = sum(1 for r in batch.results if not r.success)
        logger.info(
            "Executed %d operation(s): %d succeeded, %d failed",
            len(batch.results),
            len(batch.results) - failed,
            failed,
        )
        return batch

    def _execute_chunk(self, chunk: list[Operation]) -> _ChunkOutcome:
        for attempt in range(2):
            boundary = new_boundary()
            try:
                response = self._session.post(
                    self._endpoint,
                    data=build_batch_body(chunk, boundary).encode("utf-8"),
                    headers={"Content-Type": f"multipart/mixed; boundary={boundary}"},
                )
            except RefreshError as exc:
                raise CalendarAuthError(f"Token refresh failed: {exc}") from exc
            except requests.RequestException as exc:
                return _failed_chunk(chunk, 0, f"Transport error: {exc}")

            status = response.status_code
            if status in RETRYABLE_BATCH_STATUSES and attempt == 0:
                logger.warning(
                    "Batch endpoint returned %d, retrying in %.1fs", status, self._retry_delay
                )
                self._sleep(self._retry_delay)
                continue
            if status == 401:
                raise CalendarAuthError(f"Batch request rejected: HTTP {status}")
            if status != 200:
                kind = "Server error" if status >= 500 else "Batch request failed"
                return _failed_chunk(chunk, status, f"{kind}: {status}")

            results = parse_batch_response(
                response.text, chunk, response.headers.get("Content-Type")
            )
            return _ChunkOutcome(results=results)

        return _failed_chunk(chunk, status, f"Server error: {status}")  # pragma: no cover


def _failed_chunk(chunk: list[Operation], status: int, error: str) -> _ChunkOutcome:
    return _ChunkOutcome(
        results=[OperationResult(op.id, status, False, None, error) for op in chunk],
        failed=True,
        status=status,
        error=error,
    )
