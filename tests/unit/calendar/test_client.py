"""Tests for the single-request Google Calendar client.

The service resource is a ``MagicMock`` so no network access happens.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from googleapiclient.errors import HttpError
from httplib2 import Response

from cal_sync.calendar.client import GoogleCalendarClient
from cal_sync.calendar.exceptions import CalendarNotFoundError


@pytest.fixture()
def client(calendar_client: GoogleCalendarClient) -> GoogleCalendarClient:
    return calendar_client


class TestCalendars:
    def test_list_calendars_follows_pages(self, client: GoogleCalendarClient, service: MagicMock) -> None:
        """Every page of the calendar list is fetched."""
        service.calendarList.return_value.list.return_value.execute.side_effect = [
            {"items": [{"id": "primary", "summary": "Me"}], "nextPageToken": "p2"},
            {"items": [{"id": "work"}]},
        ]

        calendars = client.list_calendars()

        assert [c["id"] for c in calendars] == ["primary", "work"]
        calls = service.calendarList.return_value.list.call_args_list
        assert calls[1].kwargs == {"pageToken": "p2"}

    def test_calendar_names_fall_back_to_id(self, client: GoogleCalendarClient, service: MagicMock) -> None:
        service.calendarList.return_value.list.return_value.execute.return_value = {
            "items": [{"id": "primary", "summary": "Me"}, {"id": "work"}]
        }

        assert client.calendar_names() == {"primary": "Me", "work": "work"}


class TestEvents:
    def test_list_events_passes_window(self, client: GoogleCalendarClient, service: MagicMock) -> None:
        start = datetime(2026, 3, 1, tzinfo=timezone.utc)
        end = datetime(2026, 3, 2, tzinfo=timezone.utc)
        service.events.return_value.list.return_value.execute.return_value = {"items": [{"id": "E1"}]}

        events = client.list_events("primary", start, end)

        assert events == [{"id": "E1"}]
        kwargs = service.events.return_value.list.call_args.kwargs
        assert kwargs["timeMin"] == start.isoformat()
        assert kwargs["singleEvents"] is True

    def test_create_event(self, client: GoogleCalendarClient, service: MagicMock) -> None:
        service.events.return_value.insert.return_value.execute.return_value = {"id": "E1"}

        result = client.create_event("primary", {"summary": "Standup"})

        assert result == {"id": "E1"}
        service.events.return_value.insert.assert_called_once_with(
            calendarId="primary", body={"summary": "Standup"}
        )

    def test_update_event_merges_over_existing(self, client: GoogleCalendarClient, service: MagicMock) -> None:
        """Fields not in the change set survive the update."""
        events = service.events.return_value
        events.get.return_value.execute.return_value = {"id": "E1", "summary": "Old", "location": "Room 4"}
        events.update.return_value.execute.return_value = {"id": "E1"}

        client.update_event("primary", "E1", {"summary": "New"})

        body = events.update.call_args.kwargs["body"]
        assert body == {"id": "E1", "summary": "New", "location": "Room 4"}

    def test_delete_missing_event_raises_not_found(self, client: GoogleCalendarClient, service: MagicMock) -> None:
        service.events.return_value.delete.return_value.execute.side_effect = HttpError(
            Response({"status": "404"}), b"gone"
        )

        with pytest.raises(CalendarNotFoundError):
            client.delete_event("primary", "E404")

    def test_move_event(self, client: GoogleCalendarClient, service: MagicMock) -> None:
        service.events.return_value.move.return_value.execute.return_value = {"id": "E1"}

        client.move_event("E1", "primary", "work")

        service.events.return_value.move.assert_called_once_with(
            calendarId="primary", eventId="E1", destination="work"
        )

    def test_get_event(self, client: GoogleCalendarClient, service: MagicMock) -> None:
        service.events.return_value.get.return_value.execute.return_value = {"id": "E1"}

        assert client.get_event("primary", "E1") == {"id": "E1"}
