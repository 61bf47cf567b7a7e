"""Tests for the service runner."""

from __future__ import annotations

import asyncio

import pytest

from conftest import make_settings
from imbridge.app import BridgeApp
from imbridge.config import ChannelsConfig, IMessageChannelConfig, PipelineConfig


def _settings(tmp_path, chat_db, *, enabled=True, command="cat"):
    return make_settings(
        channels=ChannelsConfig(imessage=IMessageChannelConfig(enabled=enabled)),
        pipeline=PipelineConfig(command=command),
        messages_db_path=chat_db.path,
        address_book_dir=tmp_path / "ab",
        state_path=tmp_path / "state.json",
        lease_path=tmp_path / "active",
    )


class TestBridgeApp:
    @pytest.mark.asyncio
    async def test_disabled_channel_starts_nothing(self, tmp_path, chat_db):
        app = BridgeApp(_settings(tmp_path, chat_db, enabled=False))
        assert await app.start() == 0

    @pytest.mark.asyncio
    async def test_no_dispatch_host_starts_nothing(self, tmp_path, chat_db, monkeypatch):
        s = _settings(tmp_path, chat_db, command=None)
        monkeypatch.setattr("imbridge.config._settings", s)
        app = BridgeApp(s)
        assert await app.start() == 0
        assert app.channel.pollers == {}

    @pytest.mark.asyncio
    async def test_start_and_stop(self, tmp_path, chat_db, monkeypatch):
        s = _settings(tmp_path, chat_db)
        monkeypatch.setattr("imbridge.config._settings", s)
        app = BridgeApp(s)

        assert await app.start() == 1
        poller = app.channel.pollers["default"]
        assert poller.running

        await app.stop()
        await asyncio.wait_for(poller.wait(), timeout=2)
        assert not poller.running
