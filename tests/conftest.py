"""Shared fixtures for cal-sync tests."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Generator
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import parse_qs, unquote

import pytest

from cal_sync.calendar.codec import Part, boundary_from_content_type, iter_parts
from cal_sync.models.task import TaskRecord
from cal_sync.store import SyncStateStore, WriterStateStore

_REASONS = {
    200: "OK",
    204: "No Content",
    400: "Bad Request",
    404: "Not Found",
    410: "Gone",
    503: "Service Unavailable",
}


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture()
def monkeypatch_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> dict[str, str]:
    """Set all required environment variables to valid defaults.

    Also patches ``load_dotenv`` so that a real ``.env`` file on disk does not
    override the test values.

    Returns the dict of variables so tests can inspect or override values.
    """
    monkeypatch.setattr("cal_sync.config.load_dotenv", lambda *_a, **_kw: None)
    env_vars = {
        "CAL_SYNC_VAULT_PATH": str(tmp_path / "vault"),
        "CAL_SYNC_CALENDAR_ID": "primary",
    }
    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)
    return env_vars


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove all cal-sync-related environment variables.

    Patches ``load_dotenv`` so a real ``.env`` file cannot re-inject values
    that the test explicitly removed.
    """
    monkeypatch.setattr("cal_sync.config.load_dotenv", lambda *_a, **_kw: None)
    for key in (
        "CAL_SYNC_VAULT_PATH",
        "CAL_SYNC_CALENDAR_ID",
        "CAL_SYNC_STATE_PATH",
        "CAL_SYNC_WRITER_STATE_PATH",
        "CAL_SYNC_WRITER_ID",
        "CAL_SYNC_CREDENTIALS_PATH",
        "CAL_SYNC_TOKEN_PATH",
        "CAL_SYNC_SAFE_MODE",
        "CAL_SYNC_REROUTE_MODE",
        "CAL_SYNC_COMPLETED_POLICY",
        "CAL_SYNC_EXTERNAL_EVENT_POLICY",
        "CAL_SYNC_DEFAULT_DURATION",
        "CAL_SYNC_DEFAULT_REMINDERS",
        "CAL_SYNC_TAG_ROUTES",
        "CAL_SYNC_EXCLUDE_FOLDERS",
        "CAL_SYNC_EXCLUDE_FILES",
        "CAL_SYNC_INTERVAL_MINUTES",
        "LOG_LEVEL",
        "TIMEZONE",
    ):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def _reset_root_logger() -> Generator[None, None, None]:
    """Reset the root logger after each test to prevent handler leaks."""
    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level
    yield
    root.handlers = original_handlers
    root.setLevel(original_level)


# ---------------------------------------------------------------------------
# Task records and stores
# ---------------------------------------------------------------------------


def build_task(
    title: str = "Standup",
    date: str = "2026-03-10",
    time: str | None = "09:00",
    file_path: str = "daily.md",
    line_number: int = 1,
    extra: str = "",
    **fields,
) -> TaskRecord:
    """Build a :class:`TaskRecord` whose ``raw_text`` matches its fields."""
    raw = f"- [ ] {title} 📅 {date}"
    if time:
        raw += f" ⏰ {time}"
    if extra:
        raw += f" {extra}"
    return TaskRecord(
        title=title,
        date=date,
        time=time,
        raw_text=fields.pop("raw_text", raw),
        file_path=file_path,
        line_number=line_number,
        **fields,
    )


@pytest.fixture()
def make_task() -> Callable[..., TaskRecord]:
    """Return the :func:`build_task` factory."""
    return build_task


@pytest.fixture()
def store(tmp_path: Path) -> SyncStateStore:
    """An empty shared store persisted under *tmp_path*."""
    return SyncStateStore.load(tmp_path / "state" / "state.json", writer_id="writer-a")


@pytest.fixture()
def writer(tmp_path: Path) -> WriterStateStore:
    """This writer's base snapshot, persisted under *tmp_path*."""
    return WriterStateStore.load(tmp_path / "local" / "writer.json", writer_id="writer-a")


# ---------------------------------------------------------------------------
# Fake Calendar batch endpoint
# ---------------------------------------------------------------------------


@dataclass
class FakeResponse:
    status_code: int
    text: str = ""
    headers: dict[str, str] = field(default_factory=dict)


def encode_batch_response(parts: list[tuple[str, int, dict | None]], boundary: str = "batch_resp") -> str:
    """Encode ``(correlation_id, status, body)`` triples the way the API does."""
    chunks = []
    for correlation_id, status, body in parts:
        payload = json.dumps(body) if body is not None else ""
        chunks.append(
            f"--{boundary}\r\n"
            "Content-Type: application/http\r\n"
            f"Content-ID: <response-{correlation_id}>\r\n"
            "\r\n"
            f"HTTP/1.1 {status} {_REASONS.get(status, 'Status')}\r\n"
            "Content-Type: application/json; charset=UTF-8\r\n"
            "\r\n"
            f"{payload}\r\n"
        )
    return "".join(chunks) + f"--{boundary}--\r\n"


class FakeCalendarSession:
    """In-memory stand-in for an ``AuthorizedSession`` posting to the batch endpoint.

    Attributes:
        events: ``calendar_id -> event_id -> event body``.
        requests: Decoded parts of every envelope received.
        envelope_statuses: Statuses returned for the next envelopes, in order,
            before normal processing resumes (``200`` means process normally).
        event_statuses: Forced sub-response status per event ID.
        create_status: Forced sub-response status for every insert.
        drop_ids: Correlation IDs left out of the response.
    """

    def __init__(self) -> None:
        self.events: dict[str, dict[str, dict]] = {}
        self.requests: list[list[Part]] = []
        self.envelope_statuses: list[int] = []
        self.event_statuses: dict[str, int] = {}
        self.create_status: int | None = None
        self.drop_ids: set[str] = set()
        self._counter = 0

    def add_event(self, calendar_id: str, event_id: str, body: dict) -> None:
        self.events.setdefault(calendar_id, {})[event_id] = {**body, "id": event_id}

    def all_events(self) -> dict[str, dict]:
        return {eid: body for cal in self.events.values() for eid, body in cal.items()}

    def post(self, url: str, data: bytes, headers: dict[str, str]) -> FakeResponse:
        boundary = boundary_from_content_type(headers["Content-Type"])
        parts = list(iter_parts(data.decode("utf-8"), boundary))
        self.requests.append(parts)

        if self.envelope_statuses:
            status = self.envelope_statuses.pop(0)
            if status != 200:
                return FakeResponse(status, "error")

        out = [
            (part.content_id, *self._handle(part))
            for part in parts
            if part.content_id not in self.drop_ids
        ]
        return FakeResponse(
            200,
            encode_batch_response(out),
            {"Content-Type": "multipart/mixed; boundary=batch_resp"},
        )

    def _handle(self, part: Part) -> tuple[int, dict | None]:
        method, target, _ = part.start_line.split(" ", 2)
        path, _, query = target.partition("?")
        segments = [unquote(s) for s in path.split("/")]
        calendar_id = segments[4]
        event_id = segments[6] if len(segments) > 6 else None
        events = self.events.setdefault(calendar_id, {})

        if event_id is None:
            if self.create_status is not None:
                return self.create_status, {"error": {"message": "injected failure"}}
            self._counter += 1
            new_id = f"E{self._counter}"
            events[new_id] = {**json.loads(part.body), "id": new_id}
            return 200, events[new_id]

        if event_id in self.event_statuses:
            return self.event_statuses[event_id], {"error": {"message": "injected failure"}}
        if event_id not in events:
            return 404, {"error": {"message": "Not Found"}}

        if method == "GET":
            return 200, events[event_id]
        if method == "PUT":
            events[event_id] = {**json.loads(part.body), "id": event_id}
            return 200, events[event_id]
        if method == "PATCH":
            events[event_id].update(json.loads(part.body))
            return 200, events[event_id]
        if method == "DELETE":
            del events[event_id]
            return 204, None
        destination = parse_qs(query)["destination"][0]
        moved = events.pop(event_id)
        self.events.setdefault(destination, {})[event_id] = moved
        return 200, moved


@pytest.fixture()
def fake_session() -> FakeCalendarSession:
    return FakeCalendarSession()


@pytest.fixture()
def batch_response() -> Callable[..., str]:
    """Return the :func:`encode_batch_response` helper."""
    return encode_batch_response
