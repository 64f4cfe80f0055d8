"""Single-request Google Calendar client.

:class:`GoogleCalendarClient` wraps the ``googleapiclient`` service
resource for the calls that are not batched.  The sync cycle and the
approval command only list calendars, to confirm the remote is reachable
and to name calendars in the deletion archive; all event mutations go
through the batch endpoint.  The per-event methods complete the remote
calendar collaborator interface for callers that need a single request.
Every method is wrapped in
:func:`~cal_sync.calendar.exceptions.with_retry`.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from cal_sync.calendar.exceptions import with_retry

logger = logging.getLogger(__name__)


class GoogleCalendarClient:
    """High-level client for Google Calendar reads and single writes.

    Args:
        credentials: Valid Google OAuth 2.0 credentials.
        service: Optional pre-built service resource (pass a mock in tests).
    """

    def __init__(self, credentials: Credentials, service: Any | None = None) -> None:
        self._credentials = credentials
        self._service = service or build("calendar", "v3", credentials=credentials)

    def _refresh_credentials(self) -> None:
        """Refresh credentials and rebuild the service (used by ``@with_retry``)."""
        from google.auth.transport.requests import Request

        self._credentials.refresh(Request())
        self._service = build("calendar", "v3", credentials=self._credentials)
        logger.info("Credentials refreshed and service rebuilt")

    @with_retry()
    def list_calendars(self) -> list[dict]:
        """Return every calendar on the user's calendar list."""
        calendars: list[dict] = []
        page_token: str | None = None
        while True:
            response = self._service.calendarList().list(pageToken=page_token).execute()
            calendars.extend(response.get("items", []))
            page_token = response.get("nextPageToken")
            if page_token is None:
                break
        logger.debug("Listed %d calendar(s)", len(calendars))
        return calendars

    def calendar_names(self) -> dict[str, str]:
        """Map calendar ID to display name."""
        return {c["id"]: c.get("summary", c["id"]) for c in self.list_calendars()}

    @with_retry()
    def list_events(self, calendar_id: str, time_min: datetime, time_max: datetime) -> list[dict]:
        """List single events of *calendar_id* in ``[time_min, time_max)``."""
        events: list[dict] = []
        page_token: str | None = None
        while True:
            response = (
                self._service.events()
                .list(
                    calendarId=calendar_id,
                    timeMin=time_min.isoformat(),
                    timeMax=time_max.isoformat(),
                    singleEvents=True,
                    orderBy="startTime",
                    pageToken=page_token,
                )
                .execute()
            )
            events.extend(response.get("items", []))
            page_token = response.get("nextPageToken")
            if page_token is None:
                break
        return events

    @with_retry()
    def get_event(self, calendar_id: str, event_id: str) -> dict:
        """Fetch one event.

        Raises:
            CalendarNotFoundError: If the event does not exist.
        """
        return self._service.events().get(calendarId=calendar_id, eventId=event_id).execute()

    @with_retry()
    def create_event(self, calendar_id: str, body: dict) -> dict:
        result = self._service.events().insert(calendarId=calendar_id, body=body).execute()
        logger.info("Created event '%s' (id=%s)", body.get("summary", "?"), result.get("id", "?"))
        return result

    @with_retry()
    def update_event(self, calendar_id: str, event_id: str, changes: dict) -> dict:
        """Get the event, merge *changes* over it, and write it back."""
        existing = self._service.events().get(calendarId=calendar_id, eventId=event_id).execute()
        merged = {**existing, **changes}
        return (
            self._service.events()
            .update(calendarId=calendar_id, eventId=event_id, body=merged)
            .execute()
        )

    @with_retry()
    def delete_event(self, calendar_id: str, event_id: str) -> None:
        self._service.events().delete(calendarId=calendar_id, eventId=event_id).execute()
        logger.info("Deleted event (id=%s)", event_id)

    @with_retry()
    def move_event(self, event_id: str, from_calendar: str, to_calendar: str) -> dict:
        return (
            self._service.events()
            .move(calendarId=from_calendar, eventId=event_id, destination=to_calendar)
            .execute()
        )
