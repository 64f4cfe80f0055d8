"""Tests for cal-sync configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from cal_sync.config import ConfigError, Settings, load_settings


class TestLoadSettingsHappyPath:
    """Tests for successful configuration loading."""

    def test_load_settings_with_required_vars(self, monkeypatch_env: dict[str, str]) -> None:
        """Required vars present returns Settings with defaults for the rest."""
        settings = load_settings()

        assert settings.vault_path == Path(monkeypatch_env["CAL_SYNC_VAULT_PATH"])
        assert settings.calendar_id == "primary"
        assert settings.safe_mode is True
        assert settings.reroute_mode == "preserve"
        assert settings.completed_policy == "delete"
        assert settings.external_event_policy == "ask"
        assert settings.default_reminders == (30, 10)

    def test_state_path_defaults_inside_vault(self, monkeypatch_env: dict[str, str]) -> None:
        """The shared state document lives in the vault by default."""
        settings = load_settings()

        assert settings.state_path == Path(monkeypatch_env["CAL_SYNC_VAULT_PATH"]) / ".cal-sync" / "state.json"

    def test_writer_state_defaults_outside_vault(self, monkeypatch_env: dict[str, str]) -> None:
        """The writer-local snapshot is never stored next to the shared document."""
        settings = load_settings()

        assert settings.writer_state_path.parent != settings.state_path.parent
        assert settings.writer_state_path == Path.home() / ".cal-sync" / "writer.json"

    def test_optional_overrides(
        self, monkeypatch_env: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Optional variables are parsed and honoured."""
        monkeypatch.setenv("CAL_SYNC_SAFE_MODE", "off")
        monkeypatch.setenv("CAL_SYNC_REROUTE_MODE", "freshStart")
        monkeypatch.setenv("CAL_SYNC_COMPLETED_POLICY", "markComplete")
        monkeypatch.setenv("CAL_SYNC_EXTERNAL_EVENT_POLICY", "recreate")
        monkeypatch.setenv("CAL_SYNC_DEFAULT_DURATION", "45")
        monkeypatch.setenv("CAL_SYNC_DEFAULT_REMINDERS", "60, 5")
        monkeypatch.setenv("CAL_SYNC_TAG_ROUTES", "#work=work-cal, home=home-cal")
        monkeypatch.setenv("CAL_SYNC_EXCLUDE_FOLDERS", "Templates,Archive")
        monkeypatch.setenv("CAL_SYNC_WRITER_ID", "laptop")
        monkeypatch.setenv("TIMEZONE", "Europe/Berlin")

        settings = load_settings()

        assert settings.safe_mode is False
        assert settings.reroute_mode == "freshStart"
        assert settings.completed_policy == "markComplete"
        assert settings.external_event_policy == "recreate"
        assert settings.default_duration == 45
        assert settings.default_reminders == (60, 5)
        assert settings.tag_routes == {"#work": "work-cal", "#home": "home-cal"}
        assert settings.exclude_folders == ("Templates", "Archive")
        assert settings.writer_id == "laptop"
        assert settings.timezone == "Europe/Berlin"

    def test_policy_reflects_settings(
        self, monkeypatch_env: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Settings.policy() carries the change-set knobs."""
        monkeypatch.setenv("CAL_SYNC_DEFAULT_DURATION", "15")
        monkeypatch.setenv("TIMEZONE", "Asia/Tokyo")

        policy = load_settings().policy()

        assert policy.default_duration_minutes == 15
        assert policy.time_zone == "Asia/Tokyo"
        assert policy.safe_mode is True


class TestLoadSettingsErrors:
    """Tests for missing or invalid environment variables."""

    def test_missing_vars_are_all_named(self, clean_env: None) -> None:
        """Every missing required variable appears in the message."""
        with pytest.raises(ConfigError, match="CAL_SYNC_VAULT_PATH, CAL_SYNC_CALENDAR_ID"):
            load_settings()

    def test_whitespace_only_counts_as_missing(
        self, clean_env: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A whitespace-only value is treated as missing."""
        monkeypatch.setenv("CAL_SYNC_VAULT_PATH", "   ")
        monkeypatch.setenv("CAL_SYNC_CALENDAR_ID", "primary")

        with pytest.raises(ConfigError, match="CAL_SYNC_VAULT_PATH"):
            load_settings()

    @pytest.mark.parametrize(
        ("name", "value", "message"),
        [
            ("CAL_SYNC_SAFE_MODE", "maybe", "must be a boolean"),
            ("CAL_SYNC_REROUTE_MODE", "teleport", "must be one of"),
            ("CAL_SYNC_COMPLETED_POLICY", "archive", "must be one of"),
            ("CAL_SYNC_DEFAULT_DURATION", "abc", "must be an integer"),
            ("CAL_SYNC_INTERVAL_MINUTES", "0", "must be positive"),
            ("CAL_SYNC_TAG_ROUTES", "#work", "must look like"),
        ],
    )
    def test_invalid_values(
        self,
        monkeypatch_env: dict[str, str],
        monkeypatch: pytest.MonkeyPatch,
        name: str,
        value: str,
        message: str,
    ) -> None:
        """Malformed optional values raise ConfigError."""
        monkeypatch.setenv(name, value)

        with pytest.raises(ConfigError, match=message):
            load_settings()


class TestSettingsRepr:
    """Secrets-adjacent paths are masked in repr()."""

    def test_repr_masks_credential_paths(self, tmp_path: Path) -> None:
        """Credential and token paths never appear in repr()."""
        settings = Settings(
            vault_path=tmp_path,
            calendar_id="primary",
            state_path=tmp_path / "state.json",
            writer_state_path=tmp_path / "writer.json",
            credentials_path=Path("/secret/client.json"),
            token_path=Path("/secret/token.json"),
        )

        text = repr(settings)

        assert "/secret" not in text
        assert "credentials_path='***'" in text
