"""Outbound delivery through Messages.app via ``osascript``.

One attempt per call, no retry: every send returns a bool and never raises.
Callers log and move on.
"""

from __future__ import annotations

from pathlib import Path

from imbridge.logger import logger
from imbridge.utils import run_process

OSASCRIPT = "osascript"
DEFAULT_TEXT_CHUNK_LIMIT = 4000


def escape_applescript(text: str) -> str:
    """Escape for use inside an AppleScript string literal.

    Backslashes and double quotes are escaped, carriage returns dropped;
    ``\\n`` is kept so multi-line replies stay multi-line.
    """
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\r", "")


def is_group_target(target: str) -> bool:
    """Best guess for bare targets. Email handles are never group chats."""
    return target.startswith("chat") and "@" not in target


def _recipient_clause(target: str, group: bool | None = None) -> str:
    escaped = escape_applescript(target)
    if group is None:
        group = is_group_target(target)
    if group:
        return f'chat id "iMessage;+;{escaped}"'
    return f'buddy "{escaped}" of (service 1 whose service type is iMessage)'


def build_text_script(target: str, text: str, *, group: bool | None = None) -> str:
    return (
        f'tell application "Messages" to send "{escape_applescript(text)}"'
        f" to {_recipient_clause(target, group)}"
    )


def build_file_script(target: str, path: str, *, group: bool | None = None) -> str:
    return "\n".join(
        [
            'tell application "Messages"',
            f"  set targetRecipient to {_recipient_clause(target, group)}",
            f'  send POSIX file "{escape_applescript(path)}" to targetRecipient',
            "end tell",
        ]
    )


def split_text(text: str, *, max_len: int = DEFAULT_TEXT_CHUNK_LIMIT) -> list[str]:
    """Split text into chunks of at most ``max_len``, preferring newline breaks."""
    if len(text) <= max_len:
        return [text]

    chunks: list[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= max_len:
            chunks.append(remaining)
            break
        split_at = remaining.rfind("\n", 0, max_len)
        if split_at <= 0:
            split_at = max_len
        chunks.append(remaining[:split_at])
        remaining = remaining[split_at:].lstrip("\n")
    return chunks


def local_media_path(media_path: str | None, media_url: str | None) -> str | None:
    if media_path:
        return media_path
    if media_url and media_url.startswith("file://"):
        return media_url[len("file://") :]
    return None


class OsascriptSender:
    """Platform send primitive: ``send_text`` / ``send_file`` → bool."""

    def __init__(self, *, timeout_seconds: float = 30.0) -> None:
        self._timeout = timeout_seconds

    async def _run(self, script: str, *, target: str, label: str) -> bool:
        result = await run_process(OSASCRIPT, "-e", script, timeout_seconds=self._timeout)
        if result.ok:
            logger.info(f"Sent {label}", to=target)
            return True
        if result.timed_out:
            logger.error(f"{label.capitalize()} send timed out", to=target)
        else:
            logger.error(
                f"{label.capitalize()} send failed",
                to=target,
                exit_code=result.returncode,
                err=result.start_error or result.stderr[-500:],
            )
        return False

    async def send_text(self, target: str, text: str, *, group: bool | None = None) -> bool:
        script = build_text_script(target, text, group=group)
        return await self._run(script, target=target, label="text")

    async def send_file(self, target: str, path: str, *, group: bool | None = None) -> bool:
        script = build_file_script(target, path, group=group)
        return await self._run(script, target=target, label="media")

    async def send_media(
        self,
        target: str,
        *,
        text: str | None = None,
        media_path: str | None = None,
        media_url: str | None = None,
    ) -> bool:
        """Send a local file (then its caption), or fall back to the URL as text."""
        local = local_media_path(media_path, media_url)
        if local is None and media_url:
            return await self.send_text(target, f"{text}\n{media_url}" if text else media_url)

        success = True
        if local and Path(local).exists():
            success = await self.send_file(target, local)
        elif local:
            logger.warning("Media file missing, not sent", to=target, path=local)

        if text and success:
            return await self.send_text(target, text)
        return success
