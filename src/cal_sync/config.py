"""Configuration loading for cal-sync.

Reads settings from environment variables (with .env support via python-dotenv)
and validates that all required values are present.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from cal_sync.changeset import SyncPolicy

REROUTE_MODES = ("preserve", "duplicate", "freshStart")
COMPLETED_POLICIES = ("delete", "markComplete")
EXTERNAL_EVENT_POLICIES = ("ask", "sever", "recreate")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment variables.

    Attributes:
        vault_path: Root folder scanned for markdown tasks.
        calendar_id: Default Google Calendar ID.
        state_path: Shared sync-state document.
        writer_state_path: Writer-local base snapshot; never shared.
        writer_id: Explicit writer identity, or ``None`` to use the stored one.
        credentials_path: OAuth client secrets file.
        token_path: Cached OAuth token.
        log_level: Logging level (default ``"INFO"``).
        timezone: IANA timezone for timed events (default ``"UTC"``).
        safe_mode: Divert risky deletions for approval.
        reroute_mode: ``preserve``, ``duplicate`` or ``freshStart``.
        completed_policy: ``delete`` or ``markComplete``.
        external_event_policy: ``ask``, ``sever`` or ``recreate``.
        default_duration: Minutes for timed tasks without a duration.
        default_reminders: Popup reminder minutes.
        tag_routes: Tag (``#work``) to calendar ID.
        exclude_folders: Vault-relative folder prefixes to skip.
        exclude_files: Vault-relative file paths to skip.
        interval_minutes: Period of ``sync --watch``.
    """

    vault_path: Path
    calendar_id: str
    state_path: Path
    writer_state_path: Path
    writer_id: str | None = None
    credentials_path: Path = Path("credentials.json")
    token_path: Path = Path("token.json")
    log_level: str = "INFO"
    timezone: str = "UTC"
    safe_mode: bool = True
    reroute_mode: str = "preserve"
    completed_policy: str = "delete"
    external_event_policy: str = "ask"
    default_duration: int = 30
    default_reminders: tuple[int, ...] = (30, 10)
    tag_routes: dict[str, str] = field(default_factory=dict)
    exclude_folders: tuple[str, ...] = ()
    exclude_files: tuple[str, ...] = ()
    interval_minutes: int = 10

    def __repr__(self) -> str:
        return (
            f"Settings(vault_path={str(self.vault_path)!r}, "
            f"calendar_id={self.calendar_id!r}, "
            f"credentials_path='***', token_path='***', "
            f"safe_mode={self.safe_mode!r}, "
            f"reroute_mode={self.reroute_mode!r}, "
            f"completed_policy={self.completed_policy!r}, "
            f"external_event_policy={self.external_event_policy!r}, "
            f"log_level={self.log_level!r}, "
            f"timezone={self.timezone!r})"
        )

    def policy(self) -> SyncPolicy:
        """The change-set policy these settings describe."""
        return SyncPolicy(
            reroute_mode=self.reroute_mode,
            completed_policy=self.completed_policy,
            safe_mode=self.safe_mode,
            default_duration_minutes=self.default_duration,
            default_reminders=self.default_reminders,
            time_zone=self.timezone,
        )


def _env(name: str) -> str:
    return os.environ.get(name, "").strip()


def _split(raw: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _parse_bool(name: str, raw: str) -> bool:
    if raw.lower() in _TRUE:
        return True
    if raw.lower() in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _parse_int(name: str, raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def _parse_choice(name: str, raw: str, choices: tuple[str, ...]) -> str:
    if raw not in choices:
        raise ConfigError(f"{name} must be one of {', '.join(choices)}; got {raw!r}")
    return raw


def _parse_routes(raw: str) -> dict[str, str]:
    """Parse ``#work=cal-a,#home=cal-b`` into ``{"#work": "cal-a", ...}``."""
    routes: dict[str, str] = {}
    for item in _split(raw):
        tag, sep, calendar_id = item.partition("=")
        tag, calendar_id = tag.strip(), calendar_id.strip()
        if not sep or not tag or not calendar_id:
            raise ConfigError(f"CAL_SYNC_TAG_ROUTES entry must look like '#tag=calendar', got {item!r}")
        if not tag.startswith("#"):
            tag = f"#{tag}"
        routes[tag] = calendar_id
    return routes


def load_settings() -> Settings:
    """Load and validate settings from environment variables.

    Calls :func:`dotenv.load_dotenv` so a ``.env`` file in the project root
    is picked up automatically.

    Returns:
        A validated :class:`Settings` instance.

    Raises:
        ConfigError: If any required environment variable is missing,
            empty, or whitespace-only (the message names **all** missing
            variables), or if an optional one holds an invalid value.
    """
    load_dotenv()

    required = {
        "CAL_SYNC_VAULT_PATH": "vault_path",
        "CAL_SYNC_CALENDAR_ID": "calendar_id",
    }

    values: dict = {}
    missing: list[str] = []

    for env_var, field_name in required.items():
        raw = _env(env_var)
        if not raw:
            missing.append(env_var)
        else:
            values[field_name] = raw

    if missing:
        names = ", ".join(missing)
        raise ConfigError(f"Missing required environment variables: {names}")

    vault = Path(values["vault_path"]).expanduser()
    values["vault_path"] = vault
    values["state_path"] = Path(_env("CAL_SYNC_STATE_PATH") or vault / ".cal-sync" / "state.json")
    values["writer_state_path"] = Path(
        _env("CAL_SYNC_WRITER_STATE_PATH") or Path.home() / ".cal-sync" / "writer.json"
    ).expanduser()

    # Optional settings with defaults handled by the dataclass.
    if raw := _env("CAL_SYNC_WRITER_ID"):
        values["writer_id"] = raw
    if raw := _env("CAL_SYNC_CREDENTIALS_PATH"):
        values["credentials_path"] = Path(raw).expanduser()
    if raw := _env("CAL_SYNC_TOKEN_PATH"):
        values["token_path"] = Path(raw).expanduser()
    if raw := _env("LOG_LEVEL"):
        values["log_level"] = raw
    if raw := _env("TIMEZONE"):
        values["timezone"] = raw
    if raw := _env("CAL_SYNC_SAFE_MODE"):
        values["safe_mode"] = _parse_bool("CAL_SYNC_SAFE_MODE", raw)
    if raw := _env("CAL_SYNC_REROUTE_MODE"):
        values["reroute_mode"] = _parse_choice("CAL_SYNC_REROUTE_MODE", raw, REROUTE_MODES)
    if raw := _env("CAL_SYNC_COMPLETED_POLICY"):
        values["completed_policy"] = _parse_choice("CAL_SYNC_COMPLETED_POLICY", raw, COMPLETED_POLICIES)
    if raw := _env("CAL_SYNC_EXTERNAL_EVENT_POLICY"):
        values["external_event_policy"] = _parse_choice(
            "CAL_SYNC_EXTERNAL_EVENT_POLICY", raw, EXTERNAL_EVENT_POLICIES
        )
    if raw := _env("CAL_SYNC_DEFAULT_DURATION"):
        values["default_duration"] = _parse_int("CAL_SYNC_DEFAULT_DURATION", raw)
    if raw := _env("CAL_SYNC_DEFAULT_REMINDERS"):
        values["default_reminders"] = tuple(
            _parse_int("CAL_SYNC_DEFAULT_REMINDERS", part) for part in _split(raw)
        )
    if raw := _env("CAL_SYNC_TAG_ROUTES"):
        values["tag_routes"] = _parse_routes(raw)
    if raw := _env("CAL_SYNC_EXCLUDE_FOLDERS"):
        values["exclude_folders"] = _split(raw)
    if raw := _env("CAL_SYNC_EXCLUDE_FILES"):
        values["exclude_files"] = _split(raw)
    if raw := _env("CAL_SYNC_INTERVAL_MINUTES"):
        values["interval_minutes"] = _parse_int("CAL_SYNC_INTERVAL_MINUTES", raw)

    return Settings(**values)
