"""Google Calendar integration for cal-sync."""

from __future__ import annotations

from cal_sync.calendar.auth import authorized_session, get_calendar_credentials
from cal_sync.calendar.batch import BatchExecutor
from cal_sync.calendar.client import GoogleCalendarClient
from cal_sync.calendar.codec import build_batch_body, parse_batch_response

__all__ = [
    "BatchExecutor",
    "GoogleCalendarClient",
    "authorized_session",
    "build_batch_body",
    "get_calendar_credentials",
    "parse_batch_response",
]
