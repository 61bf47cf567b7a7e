"""Service runner: resolve the dispatch host, start accounts, wait for a signal."""

from __future__ import annotations

import asyncio
import os
import signal

from imbridge.channel import IMessageChannel, StopFn
from imbridge.config import Settings, get_settings
from imbridge.logger import logger, set_level
from imbridge.plugin import get_plugin_manager, resolve_dispatch_host

# Graceful shutdown waits for in-flight sends; past this, exit hard.
SHUTDOWN_GRACE_SECONDS = 30


class BridgeApp:
    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.channel = IMessageChannel()
        self._abort = asyncio.Event()
        self._stops: list[StopFn] = []
        self._shutting_down = False

    async def _shutdown(self, sig_name: str) -> None:
        """Graceful shutdown handler. Second signal force-exits."""
        if self._shutting_down:
            logger.info("Force shutdown")
            os._exit(1)
        self._shutting_down = True
        logger.info("Shutdown signal received", signal=sig_name)
        asyncio.get_running_loop().call_later(SHUTDOWN_GRACE_SECONDS, lambda: os._exit(1))
        self._abort.set()

    async def start(self) -> int:
        """Start every enabled account. Returns how many are polling."""
        s = self.settings
        account_ids = self.channel.list_account_ids(s)
        if not account_ids:
            logger.warning("iMessage channel not enabled, nothing to do")
            return 0

        host = resolve_dispatch_host(get_plugin_manager(), s)
        if host is None:
            logger.error("No dispatch host available; configure [pipeline] command or install one")
            return 0

        for account_id in account_ids:
            account = self.channel.resolve_account(s, account_id)
            self._stops.append(await self.channel.start_account(account, host, self._abort))
        return len(self.channel.pollers)

    async def stop(self) -> None:
        self._abort.set()
        for stop in self._stops:
            await stop()
        self._stops.clear()

    async def run(self) -> None:
        set_level(self.settings.logging.level)
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda s=sig: asyncio.ensure_future(self._shutdown(s.name)),
            )

        if await self.start() == 0:
            return
        try:
            await self._abort.wait()
        finally:
            await self.stop()
            logger.info("Shutdown complete")
