"""iMessage channel descriptor.

What the host sees of this bridge: identity, capability flags, account
resolution, the per-account start hook and the direct send operations.
There is a single account (``default``); the bridge reads the local
Messages database of whichever macOS user runs it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from imbridge.config import IMessageChannelConfig, Settings
from imbridge.dispatch import CHANNEL_ID, DispatchHost
from imbridge.logger import logger
from imbridge.normalizer import normalize_phone
from imbridge.outbound import DEFAULT_TEXT_CHUNK_LIMIT, OsascriptSender, is_group_target
from imbridge.poller import AccountPoller
from imbridge.state import ActiveInstanceLease, WatermarkStore

DEFAULT_ACCOUNT_ID = "default"

StopFn = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class ChannelCapabilities:
    chat_types: tuple[str, ...] = ("direct", "group")
    media: bool = True
    replies: bool = True
    reactions: bool = False


@dataclass
class ResolvedAccount:
    account_id: str
    enabled: bool
    configured: bool
    config: IMessageChannelConfig
    settings: Settings


async def _noop() -> None:
    return None


class IMessageChannel:
    id = CHANNEL_ID
    label = "iMessage"
    capabilities = ChannelCapabilities()
    text_chunk_limit = DEFAULT_TEXT_CHUNK_LIMIT

    def __init__(self, sender: OsascriptSender | None = None) -> None:
        self._sender = sender or OsascriptSender()
        self.pollers: dict[str, AccountPoller] = {}

    # --- accounts ---

    def list_account_ids(self, settings: Settings) -> list[str]:
        return [DEFAULT_ACCOUNT_ID] if settings.channels.imessage.enabled else []

    def resolve_account(self, settings: Settings, account_id: str | None = None) -> ResolvedAccount:
        cfg = settings.channels.imessage
        return ResolvedAccount(
            account_id=account_id or DEFAULT_ACCOUNT_ID,
            enabled=cfg.enabled,
            configured=cfg.enabled,
            config=cfg,
            settings=settings,
        )

    def normalize_target(self, target: str) -> str:
        """Phone numbers become ``+<digits>``; emails and chat ids pass through."""
        target = target.strip()
        if "@" in target or is_group_target(target):
            return target
        return normalize_phone(target) or target

    async def start_account(
        self,
        account: ResolvedAccount,
        host: DispatchHost,
        abort: asyncio.Event | None = None,
    ) -> StopFn:
        """Start polling for ``account``. Returns the stop handle.

        When the message store can't be opened nothing is started and the
        returned handle does nothing.
        """
        settings = account.settings
        sender = OsascriptSender(timeout_seconds=settings.outbound.osascript_timeout_seconds)
        poller = AccountPoller(
            account.account_id,
            account.config,
            host,
            messages_db=settings.messages_db_path,
            address_book_dir=settings.address_book_dir,
            watermark_store=WatermarkStore(settings.state_path),
            lease=ActiveInstanceLease(settings.lease_path),
            sender=sender,
            text_chunk_limit=settings.outbound.text_chunk_limit,
        )
        if not await poller.start(abort):
            return _noop

        previous = self.pollers.get(account.account_id)
        self.pollers[account.account_id] = poller
        if previous is not None:
            logger.info("Replacing running poller", old=previous.instance_id, new=poller.instance_id)
            await previous.stop()
        return poller.stop

    # --- direct sends ---

    async def send_text(self, to: str, text: str) -> dict[str, Any]:
        ok = await self._sender.send_text(self.normalize_target(to), text)
        return _result(ok)

    async def send_media(
        self,
        to: str,
        text: str | None = None,
        media_path: str | None = None,
        media_url: str | None = None,
    ) -> dict[str, Any]:
        ok = await self._sender.send_media(
            self.normalize_target(to),
            text=text,
            media_path=media_path,
            media_url=media_url,
        )
        return _result(ok)


def _result(ok: bool) -> dict[str, Any]:
    if ok:
        return {"ok": True, "channel": CHANNEL_ID}
    return {"ok": False, "error": "Send failed"}
