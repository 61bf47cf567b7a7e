"""Tests for Settings loading and the iMessage channel config."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from imbridge.config import IMessageChannelConfig, Settings, get_settings, reset_settings


def _write_config(tmp_path: Path, body: str) -> None:
    (tmp_path / "config.toml").write_text(body)


class TestIMessageChannelConfig:
    def test_defaults(self):
        cfg = IMessageChannelConfig()
        assert cfg.enabled is False
        assert cfg.dm_policy == "allowlist"
        assert cfg.allow_from == []
        assert cfg.poll_interval_ms == 1000
        assert cfg.include_tapbacks is True

    def test_camel_case_keys_accepted(self):
        cfg = IMessageChannelConfig.model_validate(
            {"enabled": True, "dmPolicy": "open", "allowFrom": ["+15551234567"], "pollIntervalMs": 500}
        )
        assert cfg.dm_policy == "open"
        assert cfg.allow_from == ["+15551234567"]
        assert cfg.poll_interval_ms == 500

    def test_poll_interval_has_floor(self):
        assert IMessageChannelConfig(poll_interval_ms=5).poll_interval_ms == 100

    def test_allow_from_entries_stripped(self):
        assert IMessageChannelConfig(allow_from=[" +15551234567 ", "", "  "]).allow_from == [
            "+15551234567"
        ]

    def test_unknown_policy_rejected(self):
        with pytest.raises(ValidationError):
            IMessageChannelConfig(dm_policy="pairing")

    def test_unknown_key_rejected(self):
        with pytest.raises(ValidationError):
            IMessageChannelConfig.model_validate({"pollInterval": 1})


class TestSettings:
    def test_loads_toml(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        _write_config(
            tmp_path,
            """
[channels.imessage]
enabled = true
allowFrom = ["(555) 123-4567"]

[paths]
state_file = "~/custom/state.json"

[pipeline]
command = "cat"
""",
        )
        s = Settings()
        assert s.channels.imessage.enabled is True
        assert s.channels.imessage.allow_from == ["(555) 123-4567"]
        assert s.pipeline.command == "cat"
        assert s.state_path == Path("~/custom/state.json").expanduser()

    def test_env_overrides_toml(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        _write_config(tmp_path, "[channels.imessage]\nenabled = false\n")
        monkeypatch.setenv("CHANNELS__IMESSAGE__ENABLED", "true")
        assert Settings().channels.imessage.enabled is True

    def test_default_paths_expand_home(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        s = Settings()
        assert s.messages_db_path == Path.home() / "Library" / "Messages" / "chat.db"
        assert s.lease_path.name == "imessage-active-instance"

    def test_singleton_reset(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        reset_settings()
        first = get_settings()
        assert get_settings() is first
        reset_settings()
        assert get_settings() is not first
