"""Per-account poll loop.

One :class:`AccountPoller` owns everything a running instance needs: the
read-only store handle, the contact cache, its lease token and the
watermark.  Nothing is process-global, so an old instance left behind by a
hot reload can be torn down without touching the new one.

Tick order: lease check → read batch → persist watermark → normalize,
dispatch and deliver each row in turn.  The watermark is persisted before
dispatch, so a row whose dispatch fails (or crashes the process) is never
retried.  Ticks never overlap; the next one is scheduled only after the
previous one has finished, including all of its sends.
"""

from __future__ import annotations

import asyncio
import contextlib
from pathlib import Path

import aiosqlite

from imbridge.config import IMessageChannelConfig
from imbridge.contacts import ContactResolver
from imbridge.dispatch import DispatchBridge, DispatchHost
from imbridge.logger import logger
from imbridge.normalizer import MessageNormalizer, SenderPolicy
from imbridge.outbound import DEFAULT_TEXT_CHUNK_LIMIT, OsascriptSender, split_text
from imbridge.reader import ChangeReader
from imbridge.state import ActiveInstanceLease, Watermark, WatermarkStore, new_instance_id
from imbridge.store import MessageStoreUnavailable, get_max_row_id, open_readonly
from imbridge.types import ClassifiedRow, ReplyPayload


class AccountPoller:
    def __init__(
        self,
        account_id: str,
        config: IMessageChannelConfig,
        host: DispatchHost,
        *,
        messages_db: Path,
        address_book_dir: Path,
        watermark_store: WatermarkStore,
        lease: ActiveInstanceLease,
        sender: OsascriptSender,
        text_chunk_limit: int = DEFAULT_TEXT_CHUNK_LIMIT,
    ) -> None:
        self.account_id = account_id
        self.config = config
        self.instance_id = new_instance_id()
        self._messages_db = messages_db
        self._address_book_dir = address_book_dir
        self._watermark_store = watermark_store
        self._lease = lease
        self._sender = sender
        self._chunk_limit = text_chunk_limit
        self._log = logger.bind(instance=self.instance_id, account=account_id)

        self._db: aiosqlite.Connection | None = None
        self._contacts: ContactResolver | None = None
        self._reader: ChangeReader | None = None
        self._normalizer: MessageNormalizer | None = None
        self._bridge = DispatchBridge(host, account_id)
        self._watermark = Watermark()
        self._exclusive = True
        self._running = False
        self._released = True
        self._wake = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._abort_watcher: asyncio.Task[None] | None = None

    @property
    def interval(self) -> float:
        return self.config.poll_interval_ms / 1000

    @property
    def running(self) -> bool:
        return self._running

    @property
    def watermark(self) -> Watermark:
        return self._watermark

    # --- lifecycle ---

    async def open(self) -> bool:
        """Acquire resources and claim the lease without starting the timer.

        Returns False (and holds nothing) when the message store can't be opened.
        """
        try:
            self._db = await open_readonly(self._messages_db)
            max_id = await get_max_row_id(self._db)
        except (MessageStoreUnavailable, aiosqlite.Error) as exc:
            self._log.error("Cannot open message store", path=str(self._messages_db), err=str(exc))
            if self._db is not None:
                await self._db.close()
                self._db = None
            return False

        self._released = False
        self._exclusive = self._lease.claim(self.instance_id)
        if not self._exclusive:
            self._log.warning("Lease unavailable, running without exclusivity")

        self._watermark = self._watermark_store.load(max_id)
        if self.config.resolve_contact_names:
            self._contacts = ContactResolver(self._address_book_dir)
        self._reader = ChangeReader(
            self._db,
            SenderPolicy(self.config.dm_policy, self.config.allow_from),
            include_tapbacks=self.config.include_tapbacks,
        )
        self._normalizer = MessageNormalizer(self._db, contacts=self._contacts)
        self._running = True
        self._log.info(
            "Poller ready",
            poll_ms=self.config.poll_interval_ms,
            policy=self.config.dm_policy,
            allow=len(self.config.allow_from),
            tapbacks=self.config.include_tapbacks,
            row_id=self._watermark.last_seen_id,
        )
        return True

    async def start(self, abort: asyncio.Event | None = None) -> bool:
        """Open and begin polling in a background task."""
        if not await self.open():
            return False
        self._task = asyncio.create_task(self._loop(), name=f"imessage-poll-{self.instance_id}")
        if abort is not None:
            self._abort_watcher = asyncio.create_task(self._watch_abort(abort))
        return True

    async def stop(self) -> None:
        """Stop the timer and release resources. In-flight sends finish first."""
        self._running = False
        self._wake.set()
        task = self._task
        if task is not None and task is not asyncio.current_task():
            await task
        await self._release()

    async def wait(self) -> None:
        if self._task is not None:
            await self._task

    async def _watch_abort(self, abort: asyncio.Event) -> None:
        await abort.wait()
        self._abort_watcher = None
        await self.stop()

    async def _release(self) -> None:
        if self._released:
            return
        self._released = True
        self._running = False
        watcher, self._abort_watcher = self._abort_watcher, None
        if watcher is not None and watcher is not asyncio.current_task():
            watcher.cancel()
        if self._contacts is not None:
            await self._contacts.close()
        if self._db is not None:
            db, self._db = self._db, None
            try:
                await db.close()
            except Exception as exc:
                self._log.debug("Error closing message store", err=str(exc))
        self._log.info("Stopped and cleaned up")

    async def _loop(self) -> None:
        try:
            while self._running:
                try:
                    await self.tick()
                except Exception:
                    self._log.exception("Tick failed")
                if not self._running:
                    break
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._wake.wait(), timeout=self.interval)
        finally:
            await self._release()

    # --- one tick ---

    async def tick(self) -> None:
        if not self._running or self._reader is None:
            return
        if self._exclusive and not self._lease.is_active(self.instance_id):
            self._log.info("No longer active instance, stopping")
            self._running = False
            self._wake.set()
            return

        try:
            result = await self._reader.poll(self._watermark)
        except Exception as exc:
            self._log.error("Poll error", err=str(exc))
            return

        if result.watermark != self._watermark:
            self._watermark = result.watermark
            try:
                self._watermark_store.persist(self._watermark)
            except OSError as exc:
                self._log.error("Failed to persist watermark", err=str(exc))

        for classified in result.rows:
            await self._process(classified)

    async def _process(self, classified: ClassifiedRow) -> None:
        assert self._normalizer is not None
        row_id = classified.row.row_id
        try:
            event = await self._normalizer.normalize(classified)
        except Exception:
            self._log.exception("Failed to normalize message", row_id=row_id)
            return
        if event is None:
            return

        self._log.info(
            "Inbound message",
            row_id=row_id,
            sender=event.sender_name,
            chat=event.chat_kind,
            preview=event.body[:50],
            media=len(event.attachments),
        )

        async def deliver(payload: ReplyPayload, kind: str) -> None:
            target = event.reply_target
            group = event.is_group
            if payload.text:
                self._log.info("Delivering reply", kind=kind, to=target, preview=payload.text[:50])
                for chunk in split_text(payload.text, max_len=self._chunk_limit):
                    if not await self._sender.send_text(target, chunk, group=group):
                        self._log.warning("Reply text not delivered", row_id=row_id, to=target)
                        break
            if payload.media_path:
                if not Path(payload.media_path).exists():
                    self._log.warning("Reply media missing", path=payload.media_path)
                elif not await self._sender.send_file(target, payload.media_path, group=group):
                    self._log.warning("Reply media not delivered", row_id=row_id, to=target)

        await self._bridge.dispatch(event, deliver)
