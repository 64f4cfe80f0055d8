"""Multipart codec for the Google Calendar batch endpoint.

A batch request is a ``multipart/mixed`` envelope with one
``application/http`` part per operation.  Each part carries the operation's
correlation id as its ``Content-ID``; the server echoes it back as
``Content-ID: <response-ID>`` on the matching response part.

This module only builds and parses envelopes.  Chunking, transport and
retry live in :mod:`cal_sync.calendar.batch`.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import quote

from cal_sync.calendar.event_mapper import completed_summary, map_create_body, map_update_body
from cal_sync.models.operations import (
    CompleteOperation,
    CreateOperation,
    DeleteOperation,
    GetOperation,
    MoveOperation,
    Operation,
    OperationResult,
    UpdateOperation,
)

logger = logging.getLogger(__name__)

_API_PREFIX = "/calendar/v3/calendars"
_BOUNDARY_PARAM_RE = re.compile(r'boundary="?([^";]+)"?', re.IGNORECASE)
_CONTENT_ID_RE = re.compile(r"^<?(?:response-)?([^>]+?)>?$")


@dataclass(frozen=True)
class Part:
    """One decoded part of a multipart envelope.

    Attributes:
        headers: Part headers (``Content-Type``, ``Content-ID``), keys
            lower-cased.
        start_line: The embedded HTTP request or status line.
        http_headers: Headers of the embedded HTTP message, lower-cased.
        body: The embedded HTTP body (may be empty).
    """

    headers: dict[str, str]
    start_line: str
    http_headers: dict[str, str]
    body: str

    @property
    def content_id(self) -> str | None:
        raw = self.headers.get("content-id")
        if raw is None:
            return None
        match = _CONTENT_ID_RE.match(raw.strip())
        return match.group(1) if match else None

    @property
    def status(self) -> int:
        """Status code of an embedded response (500 if unreadable)."""
        fields = self.start_line.split()
        if len(fields) >= 2 and fields[0].startswith("HTTP/") and fields[1].isdigit():
            return int(fields[1])
        return 500


def new_boundary() -> str:
    return f"batch_cal_sync_{uuid.uuid4().hex}"


def _event_path(calendar_id: str, event_id: str | None = None) -> str:
    path = f"{_API_PREFIX}/{quote(calendar_id, safe='')}/events"
    if event_id is not None:
        path += f"/{quote(event_id, safe='')}"
    return path


def encode_request(op: Operation, now: datetime | None = None) -> tuple[str, str, dict | None]:
    """Return ``(method, path, json_body)`` for one operation."""
    match op:
        case CreateOperation():
            return "POST", _event_path(op.collection_id), map_create_body(op)
        case UpdateOperation():
            return "PUT", _event_path(op.collection_id, op.event_id), map_update_body(op)
        case DeleteOperation():
            return "DELETE", _event_path(op.collection_id, op.event_id), None
        case MoveOperation():
            destination = quote(op.destination_collection_id, safe="")
            path = f"{_event_path(op.collection_id, op.event_id)}/move?destination={destination}"
            return "POST", path, None
        case CompleteOperation():
            completed_at = op.completed_at or now or datetime.now()
            body = {"summary": completed_summary(op.existing_event, completed_at)}
            return "PATCH", _event_path(op.collection_id, op.event_id), body
        case GetOperation():
            return "GET", _event_path(op.collection_id, op.event_id), None
    raise TypeError(f"Unknown operation type: {type(op).__name__}")


def build_batch_body(operations: Sequence[Operation], boundary: str) -> str:
    """Encode *operations* as a multipart batch request body."""
    parts: list[str] = []
    for op in operations:
        method, path, payload = encode_request(op)
        lines = [f"{method} {path} HTTP/1.1"]
        if payload is not None:
            body = json.dumps(payload)
            lines.append("Content-Type: application/json")
            lines.append(f"Content-Length: {len(body.encode('utf-8'))}")
            lines.extend(["", body])
        else:
            lines.extend(["", ""])
        parts.append(
            f"--{boundary}\r\n"
            "Content-Type: application/http\r\n"
            f"Content-ID: <{op.id}>\r\n"
            "\r\n" + "\r\n".join(lines)
        )
    return "\r\n".join(parts) + f"\r\n--{boundary}--"


def boundary_from_content_type(content_type: str | None) -> str | None:
    if not content_type:
        return None
    match = _BOUNDARY_PARAM_RE.search(content_type)
    return match.group(1) if match else None


def _parse_headers(block: str) -> dict[str, str]:
    headers: dict[str, str] = {}
    for line in block.split("\n"):
        name, sep, value = line.partition(":")
        if sep:
            headers[name.strip().lower()] = value.strip()
    return headers


def iter_parts(text: str, boundary: str | None = None) -> Iterator[Part]:
    """Decode the parts of a multipart envelope.

    When *boundary* is not given it is taken from the first delimiter line
    of *text*.  Yields nothing if no delimiter is found.
    """
    normalised = text.replace("\r\n", "\n")
    if boundary is None:
        first = next((ln for ln in normalised.split("\n") if ln.startswith("--")), None)
        if first is None:
            return
        boundary = first[2:].strip()
        if boundary.endswith("--"):
            boundary = boundary[:-2]

    for chunk in normalised.split(f"--{boundary}")[1:]:
        if chunk.strip() in ("", "--") or chunk.startswith("--"):
            continue
        part_head, _, message = chunk.lstrip("\n").partition("\n\n")
        http_head, _, body = message.partition("\n\n")
        start_line, _, http_header_block = http_head.partition("\n")
        yield Part(
            headers=_parse_headers(part_head),
            start_line=start_line.strip(),
            http_headers=_parse_headers(http_header_block),
            body=body.strip(),
        )


def _result_from_part(correlation_id: str, part: Part) -> OperationResult:
    body: dict | None = None
    if part.body:
        try:
            decoded = json.loads(part.body)
        except ValueError:
            decoded = None
        body = decoded if isinstance(decoded, dict) else None

    status = part.status
    success = 200 <= status < 300
    error = None
    if not success:
        detail = (body or {}).get("error")
        if isinstance(detail, dict):
            error = detail.get("message") or json.dumps(detail)
        error = error or f"HTTP {status}"
    return OperationResult(correlation_id, status, success, body, error)


def parse_batch_response(
    text: str,
    operations: Sequence[Operation],
    content_type: str | None = None,
) -> list[OperationResult]:
    """Match a batch response back to *operations*.

    Returns exactly one result per operation, in operation order.  An
    operation whose correlation id is missing from the response gets a
    failed result with status ``0``.
    """
    boundary = boundary_from_content_type(content_type)
    parsed: dict[str, OperationResult] = {}
    for part in iter_parts(text, boundary):
        correlation_id = part.content_id
        if correlation_id is None:
            logger.debug("Ignoring batch response part without Content-ID")
            continue
        parsed[correlation_id] = _result_from_part(correlation_id, part)

    if not parsed and operations:
        logger.warning("Could not parse batch response (%d bytes)", len(text))

    results: list[OperationResult] = []
    for op in operations:
        result = parsed.get(op.id)
        if result is None:
            result = OperationResult(
                op.id, 0, False, None, "No response received for operation"
            )
        results.append(result)
    return results
