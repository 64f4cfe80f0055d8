"""Fixtures for the calendar subpackage: OAuth files, credentials, the sign-in flow."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import NamedTuple
from unittest.mock import MagicMock, create_autospec

import pytest
from google.oauth2.credentials import Credentials

from cal_sync.calendar.client import GoogleCalendarClient


class OAuthFiles(NamedTuple):
    client_secrets: Path
    token: Path


def _credentials(valid: bool, token_json: str) -> MagicMock:
    creds = create_autospec(Credentials, instance=True)
    creds.valid = valid
    creds.expired = not valid
    creds.refresh_token = "refresh-token"
    creds.to_json.return_value = token_json
    return creds


@pytest.fixture()
def signed_in() -> MagicMock:
    """Credentials as returned by a completed sign-in."""
    return _credentials(valid=True, token_json='{"token": "signed-in"}')


@pytest.fixture()
def stale_token() -> MagicMock:
    """Expired credentials that still carry a refresh token."""
    return _credentials(valid=False, token_json='{"token": "refreshed"}')


@pytest.fixture()
def oauth_files(tmp_path: Path) -> OAuthFiles:
    """A client-secrets file on disk and a token path that does not exist yet."""
    secrets = tmp_path / "credentials.json"
    secrets.write_text('{"installed": {"client_id": "cal-sync", "client_secret": "s"}}')
    return OAuthFiles(secrets, tmp_path / "token.json")


@pytest.fixture()
def cached_token(monkeypatch: pytest.MonkeyPatch) -> Callable[[MagicMock | None], None]:
    """Make the token cache return the given credentials."""

    def _use(creds: MagicMock | None) -> None:
        monkeypatch.setattr("cal_sync.calendar.auth._load_token", lambda _path: creds)

    return _use


@pytest.fixture()
def browser_flow(monkeypatch: pytest.MonkeyPatch, signed_in: MagicMock) -> MagicMock:
    """Replace ``InstalledAppFlow``; a launched flow signs in as :func:`signed_in`."""
    flow = MagicMock()
    flow.from_client_secrets_file.return_value.run_local_server.return_value = signed_in
    monkeypatch.setattr("cal_sync.calendar.auth.InstalledAppFlow", flow)
    return flow


@pytest.fixture()
def service() -> MagicMock:
    """Stand-in for the ``googleapiclient`` calendar service resource."""
    return MagicMock()


@pytest.fixture()
def calendar_client(signed_in: MagicMock, service: MagicMock) -> GoogleCalendarClient:
    return GoogleCalendarClient(signed_in, service=service)
