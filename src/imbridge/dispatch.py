"""Dispatch bridge: hands one InboundEvent to the agent pipeline.

The pipeline (a :class:`DispatchHost`, provided by a plugin) receives a typed
:class:`InboundContext` and a :class:`ReplyDispatcher`.  It may call
``dispatcher.send()`` zero or more times, awaited or fire-and-forget via
``send_nowait()``.  The bridge waits for every send to settle, then marks the
dispatcher idle, and returns the payloads that were delivered in order.

Nothing raised by the pipeline or by a delivery escapes ``dispatch()``: one
bad event must never stall the poll loop or its siblings in the batch.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from imbridge.logger import logger
from imbridge.types import InboundEvent, ReplyPayload

CHANNEL_ID = "imessage"

DeliverFn = Callable[[ReplyPayload, str], Awaitable[None]]
ErrorFn = Callable[[BaseException], None]


@dataclass
class InboundContext:
    """Fixed field set handed across the dispatch boundary."""

    body: str
    raw_body: str
    from_id: str
    to: str
    session_key: str
    account_id: str
    chat_type: str
    conversation_label: str
    sender_name: str
    sender_id: str
    message_sid: str
    timestamp_ms: int
    provider: str = CHANNEL_ID
    command_authorized: bool = True
    media_paths: list[str] = field(default_factory=list)
    media_types: list[str] = field(default_factory=list)
    reply_to_id: str | None = None
    reply_to_body: str | None = None
    reply_to_sender: str | None = None

    @classmethod
    def from_event(cls, event: InboundEvent, account_id: str) -> InboundContext:
        if event.is_group:
            from_id = f"{CHANNEL_ID}:group:{event.reply_target}"
        else:
            from_id = f"{CHANNEL_ID}:{event.sender_id}"
        reply = event.reply_context
        return cls(
            body=event.body,
            raw_body=event.raw_body,
            from_id=from_id,
            to=event.sender_id,
            session_key=event.routing_key,
            account_id=account_id,
            chat_type=event.chat_kind,
            conversation_label=event.sender_name,
            sender_name=event.sender_name,
            sender_id=event.sender_id,
            message_sid=event.delivery_id,
            timestamp_ms=event.timestamp_ms,
            media_paths=[a.path for a in event.attachments],
            media_types=[a.mime_type for a in event.attachments],
            reply_to_id=reply.guid if reply else None,
            reply_to_body=reply.text if reply else None,
            reply_to_sender=reply.sender if reply else None,
        )

    def as_host_fields(self) -> dict[str, Any]:
        """PascalCase mapping for hosts that consume untyped context dicts."""
        fields: dict[str, Any] = {
            "Body": self.body,
            "RawBody": self.raw_body,
            "CommandBody": self.body,
            "BodyForAgent": self.body,
            "From": self.from_id,
            "To": self.to,
            "SessionKey": self.session_key,
            "AccountId": self.account_id,
            "ChatType": self.chat_type,
            "ConversationLabel": self.conversation_label,
            "SenderName": self.sender_name,
            "SenderId": self.sender_id,
            "Provider": self.provider,
            "Surface": self.provider,
            "MessageSid": self.message_sid,
            "Timestamp": self.timestamp_ms,
            "CommandAuthorized": self.command_authorized,
            "OriginatingChannel": self.provider,
            "OriginatingTo": self.to,
        }
        if self.media_paths:
            fields["MediaPaths"] = list(self.media_paths)
            fields["MediaTypes"] = list(self.media_types)
        if self.reply_to_body is not None:
            fields["ReplyToId"] = self.reply_to_id
            fields["ReplyToBody"] = self.reply_to_body
            fields["ReplyToSender"] = self.reply_to_sender
        return fields


class ReplyDispatcher:
    """Sender / mark-idle pair wrapping a delivery callback and an error callback.

    Deliveries run one at a time in call order, even when the pipeline fires
    them without awaiting.
    """

    def __init__(self, deliver: DeliverFn, on_error: ErrorFn) -> None:
        self._deliver = deliver
        self._on_error = on_error
        self._lock = asyncio.Lock()
        self._pending: set[asyncio.Task[None]] = set()
        self._idle = asyncio.Event()
        self.delivered: list[ReplyPayload] = []

    async def send(self, payload: ReplyPayload, kind: str = "final") -> None:
        async with self._lock:
            try:
                await self._deliver(payload, kind)
            except Exception as exc:
                self._on_error(exc)
                return
            self.delivered.append(payload)

    def send_nowait(self, payload: ReplyPayload, kind: str = "final") -> None:
        task = asyncio.ensure_future(self.send(payload, kind))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def wait_settled(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def mark_idle(self) -> None:
        self._idle.set()

    @property
    def is_idle(self) -> bool:
        return self._idle.is_set()


def create_reply_dispatcher(deliver: DeliverFn, on_error: ErrorFn) -> ReplyDispatcher:
    return ReplyDispatcher(deliver, on_error)


@runtime_checkable
class DispatchHost(Protocol):
    """The external agent pipeline.

    Optional: ``create_reply_dispatcher(deliver, on_error)``. Hosts that
    need their own dispatcher type (typing indicators, chunking) implement
    it.  It is NOT part of the protocol; check with getattr at call sites.
    """

    def finalize_inbound_context(self, ctx: InboundContext) -> InboundContext: ...

    async def dispatch_reply(self, ctx: InboundContext, dispatcher: ReplyDispatcher) -> None: ...


class DispatchBridge:
    def __init__(self, host: DispatchHost, account_id: str) -> None:
        self._host = host
        self._account_id = account_id

    def _make_dispatcher(
        self, event: InboundEvent, deliver: DeliverFn, on_error: ErrorFn
    ) -> ReplyDispatcher:
        factory = getattr(self._host, "create_reply_dispatcher", None)
        if factory is not None:
            try:
                return factory(deliver, on_error)
            except Exception:
                logger.exception("Host dispatcher factory failed", row_id=event.row_id)
        return create_reply_dispatcher(deliver, on_error)

    async def dispatch(self, event: InboundEvent, deliver: DeliverFn) -> list[ReplyPayload]:
        """Run the pipeline once for ``event``. Never raises."""

        def on_error(exc: BaseException) -> None:
            logger.error("Reply delivery failed", row_id=event.row_id, err=str(exc))

        dispatcher = self._make_dispatcher(event, deliver, on_error)
        try:
            ctx = self._host.finalize_inbound_context(
                InboundContext.from_event(event, self._account_id)
            )
            await self._host.dispatch_reply(ctx, dispatcher)
        except Exception:
            logger.exception("Dispatch error", row_id=event.row_id)
        finally:
            await dispatcher.wait_settled()
            dispatcher.mark_idle()
        return list(dispatcher.delivered)
