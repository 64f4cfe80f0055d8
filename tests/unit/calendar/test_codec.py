"""Tests for the multipart batch codec."""

from __future__ import annotations

import json
from datetime import datetime

import pytest

from cal_sync.calendar.codec import (
    boundary_from_content_type,
    build_batch_body,
    encode_request,
    iter_parts,
    parse_batch_response,
)
from cal_sync.models.operations import (
    CompleteOperation,
    CreateOperation,
    DeleteOperation,
    GetOperation,
    MoveOperation,
)


@pytest.fixture()
def operations(make_task) -> list:
    return [
        CreateOperation(id="op-create", task_id="t1", collection_id="team@group.calendar.google.com", task=make_task()),
        DeleteOperation(id="op-delete", task_id="t2", collection_id="primary", event_id="E2"),
        GetOperation(id="op-get", task_id="t3", collection_id="primary", event_id="E3"),
    ]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class TestEncodeRequest:
    def test_calendar_id_is_escaped(self, operations) -> None:
        method, path, body = encode_request(operations[0])

        assert method == "POST"
        assert path == "/calendar/v3/calendars/team%40group.calendar.google.com/events"
        assert body["summary"] == "Standup"

    def test_move_carries_destination(self) -> None:
        op = MoveOperation(task_id="t", collection_id="primary", event_id="E1", destination_collection_id="a b")

        method, path, body = encode_request(op)

        assert method == "POST"
        assert path.endswith("/events/E1/move?destination=a%20b")
        assert body is None

    def test_complete_patches_summary(self) -> None:
        op = CompleteOperation(
            task_id="t",
            collection_id="primary",
            event_id="E1",
            existing_event={"summary": "Rent"},
            completed_at=datetime(2026, 3, 10, 8, 0),
        )

        method, _, body = encode_request(op)

        assert method == "PATCH"
        assert body == {"summary": "Rent - Completed 03-10-2026, 08:00"}


class TestBuildBatchBody:
    def test_one_part_per_operation(self, operations) -> None:
        text = build_batch_body(operations, "b123")

        parts = list(iter_parts(text, "b123"))

        assert [p.content_id for p in parts] == ["op-create", "op-delete", "op-get"]
        assert [p.start_line.split(" ")[0] for p in parts] == ["POST", "DELETE", "GET"]
        assert text.endswith("--b123--")

    def test_json_body_and_length(self, operations) -> None:
        (part,) = iter_parts(build_batch_body(operations[:1], "b"), "b")

        assert part.http_headers["content-type"] == "application/json"
        assert int(part.http_headers["content-length"]) == len(part.body.encode("utf-8"))
        assert json.loads(part.body)["summary"] == "Standup"

    def test_boundary_is_inferred(self, operations) -> None:
        parts = list(iter_parts(build_batch_body(operations, "inferred")))

        assert len(parts) == 3


def test_boundary_from_content_type() -> None:
    assert boundary_from_content_type('multipart/mixed; boundary="abc_1"') == "abc_1"
    assert boundary_from_content_type("multipart/mixed; boundary=xyz") == "xyz"
    assert boundary_from_content_type("application/json") is None
    assert boundary_from_content_type(None) is None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class TestParseBatchResponse:
    CONTENT_TYPE = "multipart/mixed; boundary=batch_resp"

    def test_results_follow_operation_order(self, operations, batch_response) -> None:
        """Responses are matched by Content-ID, not by position."""
        text = batch_response(
            [
                ("op-get", 200, {"id": "E3"}),
                ("op-delete", 204, None),
                ("op-create", 200, {"id": "E1"}),
            ]
        )

        results = parse_batch_response(text, operations, self.CONTENT_TYPE)

        assert [r.correlation_id for r in results] == ["op-create", "op-delete", "op-get"]
        assert [r.status for r in results] == [200, 204, 200]
        assert results[0].body == {"id": "E1"}
        assert results[1].body is None
        assert all(r.success for r in results)

    def test_missing_response_is_a_failure(self, operations, batch_response) -> None:
        text = batch_response([("op-create", 200, {"id": "E1"})])

        results = parse_batch_response(text, operations, self.CONTENT_TYPE)

        assert len(results) == 3
        assert results[1].status == 0
        assert not results[1].success
        assert results[1].error == "No response received for operation"

    def test_error_message_is_extracted(self, operations, batch_response) -> None:
        text = batch_response([("op-delete", 403, {"error": {"message": "Forbidden"}})])

        result = parse_batch_response(text, operations[1:2], self.CONTENT_TYPE)[0]

        assert result.status == 403
        assert result.error == "Forbidden"

    def test_error_without_body(self, operations, batch_response) -> None:
        text = batch_response([("op-get", 404, None)])

        result = parse_batch_response(text, operations[2:], self.CONTENT_TYPE)[0]

        assert result.error == "HTTP 404"

    def test_unparseable_response(self, operations) -> None:
        results = parse_batch_response("<html>oops</html>", operations)

        assert all(r.status == 0 for r in results)

    def test_part_without_content_id_is_ignored(self, operations) -> None:
        text = (
            "--batch_resp\r\n"
            "Content-Type: application/http\r\n"
            "\r\n"
            "HTTP/1.1 200 OK\r\n"
            "\r\n"
            "{}\r\n"
            "--batch_resp--\r\n"
        )

        results = parse_batch_response(text, operations[:1], self.CONTENT_TYPE)

        assert results[0].status == 0
