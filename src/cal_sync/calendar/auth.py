"""OAuth 2.0 credentials for the Google Calendar API.

Uses the installed-application flow from ``google-auth-oauthlib``: a cached
token is reused while valid, refreshed when expired, and replaced through
the browser flow when neither works.  :func:`authorized_session` wraps the
credentials in an HTTP session for the batch endpoint.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import AuthorizedSession, Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from cal_sync.calendar.exceptions import CalendarAuthError

logger = logging.getLogger(__name__)

SCOPES: list[str] = ["https://www.googleapis.com/auth/calendar"]


def get_calendar_credentials(
    credentials_path: Path | str,
    token_path: Path | str,
    interactive: bool = True,
) -> Credentials:
    """Return valid credentials, refreshing or re-authorising as needed.

    Args:
        credentials_path: OAuth client secrets (``credentials.json``).
        token_path: Cached user token; written whenever it changes.
        interactive: Allow the browser flow.  Scheduled runs pass ``False``
            so a missing token fails fast instead of blocking.

    Raises:
        CalendarAuthError: If no valid credentials can be obtained.
    """
    credentials_path = Path(credentials_path)
    token_path = Path(token_path)

    creds = _load_token(token_path)
    if creds is not None and creds.valid:
        return creds

    if creds is not None and creds.expired and creds.refresh_token:
        try:
            creds.refresh(Request())
        except RefreshError as exc:
            logger.warning("Token refresh failed: %s", exc)
        else:
            _save_token(creds, token_path)
            logger.info("Token refreshed")
            return creds

    if not interactive:
        raise CalendarAuthError("No valid token; run 'cal-sync auth' to sign in")
    if not credentials_path.exists():
        raise CalendarAuthError(f"OAuth client secrets file not found: {credentials_path}")

    flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), scopes=SCOPES)
    creds = flow.run_local_server(port=0)
    _save_token(creds, token_path)
    logger.info("Signed in; token saved to %s", token_path)
    return creds


def authorized_session(credentials: Credentials) -> AuthorizedSession:
    """HTTP session that attaches and refreshes *credentials* on each request."""
    return AuthorizedSession(credentials)


def _load_token(token_path: Path) -> Credentials | None:
    if not token_path.exists():
        return None
    try:
        return Credentials.from_authorized_user_file(str(token_path), SCOPES)
    except (json.JSONDecodeError, ValueError, KeyError) as exc:
        logger.warning("Ignoring unreadable token at %s: %s", token_path, exc)
        return None


def _save_token(creds: Credentials, token_path: Path) -> None:
    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(creds.to_json())
