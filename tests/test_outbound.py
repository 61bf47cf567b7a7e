"""Tests for AppleScript construction and osascript delivery."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from imbridge.outbound import (
    OsascriptSender,
    build_file_script,
    build_text_script,
    escape_applescript,
    local_media_path,
    split_text,
)
from imbridge.utils import ProcessResult

_OK = ProcessResult(returncode=0, stdout="", stderr="")


class TestEscape:
    def test_quotes_and_backslashes(self):
        assert escape_applescript('say "hi" \\o/') == 'say \\"hi\\" \\\\o/'

    def test_carriage_returns_dropped_newlines_kept(self):
        assert escape_applescript("a\r\nb") == "a\nb"


class TestScripts:
    def test_direct_text_targets_buddy(self):
        script = build_text_script("+15551234567", "hello")
        assert script == (
            'tell application "Messages" to send "hello" to buddy "+15551234567"'
            " of (service 1 whose service type is iMessage)"
        )

    def test_group_text_targets_chat_id(self):
        script = build_text_script("chat123", "hi all")
        assert 'to chat id "iMessage;+;chat123"' in script

    def test_email_handle_with_chat_prefix_targets_buddy(self):
        script = build_text_script("chatty@icloud.com", "hi")
        assert 'to buddy "chatty@icloud.com"' in script
        assert "chat id" not in script

    def test_explicit_chat_kind_overrides_guess(self):
        assert 'to buddy "chat123"' in build_text_script("chat123", "hi", group=False)
        assert 'chat id "iMessage;+;x@y.com"' in build_file_script("x@y.com", "/a.png", group=True)

    def test_text_is_escaped_in_script(self):
        script = build_text_script("a@b.com", 'he said "no"')
        assert 'send "he said \\"no\\""' in script

    def test_file_script(self):
        script = build_file_script("+15551234567", "/tmp/pic.jpg")
        assert 'send POSIX file "/tmp/pic.jpg" to targetRecipient' in script
        assert script.startswith('tell application "Messages"')
        assert script.endswith("end tell")


class TestSplitText:
    def test_short_text_single_chunk(self):
        assert split_text("hello", max_len=10) == ["hello"]

    def test_prefers_newline_boundaries(self):
        assert split_text("aaaa\nbbbb\ncccc", max_len=10) == ["aaaa\nbbbb", "cccc"]

    def test_hard_split_without_newlines(self):
        assert split_text("x" * 25, max_len=10) == ["x" * 10, "x" * 10, "x" * 5]


def test_local_media_path():
    assert local_media_path("/a.png", None) == "/a.png"
    assert local_media_path(None, "file:///tmp/b.png") == "/tmp/b.png"
    assert local_media_path(None, "https://example.com/c.png") is None


class TestOsascriptSender:
    @pytest.mark.asyncio
    async def test_send_text_success(self):
        with patch("imbridge.outbound.run_process", AsyncMock(return_value=_OK)) as run:
            assert await OsascriptSender(timeout_seconds=5).send_text("+15551234567", "hi") is True
        args, kwargs = run.call_args
        assert args[:2] == ("osascript", "-e")
        assert 'send "hi"' in args[2]
        assert kwargs["timeout_seconds"] == 5

    @pytest.mark.asyncio
    async def test_send_text_uses_given_chat_kind(self):
        with patch("imbridge.outbound.run_process", AsyncMock(return_value=_OK)) as run:
            await OsascriptSender().send_text("chatty@icloud.com", "hi", group=False)
        assert 'to buddy "chatty@icloud.com"' in run.call_args.args[2]

    @pytest.mark.asyncio
    async def test_nonzero_exit_returns_false(self):
        failed = ProcessResult(returncode=1, stdout="", stderr="execution error")
        with patch("imbridge.outbound.run_process", AsyncMock(return_value=failed)):
            assert await OsascriptSender().send_text("+15551234567", "hi") is False

    @pytest.mark.asyncio
    async def test_timeout_returns_false(self):
        timed_out = ProcessResult(returncode=None, stdout="", stderr="", timed_out=True)
        with patch("imbridge.outbound.run_process", AsyncMock(return_value=timed_out)):
            assert await OsascriptSender().send_file("+15551234567", "/tmp/x.png") is False

    @pytest.mark.asyncio
    async def test_missing_binary_returns_false(self):
        missing = ProcessResult(returncode=None, stdout="", stderr="", start_error="not found")
        with patch("imbridge.outbound.run_process", AsyncMock(return_value=missing)):
            assert await OsascriptSender().send_text("+15551234567", "hi") is False

    @pytest.mark.asyncio
    async def test_send_media_file_then_caption(self, tmp_path):
        photo = tmp_path / "p.jpg"
        photo.write_bytes(b"\xff")
        sender = OsascriptSender()
        sender.send_file = AsyncMock(return_value=True)
        sender.send_text = AsyncMock(return_value=True)

        ok = await sender.send_media("+15551234567", text="look", media_path=str(photo))

        assert ok is True
        sender.send_file.assert_awaited_once_with("+15551234567", str(photo))
        sender.send_text.assert_awaited_once_with("+15551234567", "look")

    @pytest.mark.asyncio
    async def test_send_media_remote_url_sent_as_text(self):
        sender = OsascriptSender()
        sender.send_file = AsyncMock(return_value=True)
        sender.send_text = AsyncMock(return_value=True)

        await sender.send_media("+15551234567", text="see", media_url="https://x.test/a.png")

        sender.send_file.assert_not_awaited()
        sender.send_text.assert_awaited_once_with("+15551234567", "see\nhttps://x.test/a.png")

    @pytest.mark.asyncio
    async def test_send_media_missing_file_still_sends_caption(self, tmp_path):
        sender = OsascriptSender()
        sender.send_file = AsyncMock(return_value=True)
        sender.send_text = AsyncMock(return_value=True)

        await sender.send_media("+15551234567", text="cap", media_path=str(tmp_path / "nope.png"))

        sender.send_file.assert_not_awaited()
        sender.send_text.assert_awaited_once_with("+15551234567", "cap")
