"""Sender policy and raw-row → InboundEvent normalization.

Phone normalization backs both allowlist matching and the contact-cache
key: ``(555) 123-4567``, ``555.123.4567`` and ``+15551234567`` all
collapse to the same value.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

import aiosqlite

from imbridge.logger import logger
from imbridge.store import get_attachments, get_message_by_guid
from imbridge.types import (
    ChatKind,
    ClassifiedRow,
    InboundEvent,
    QuotedMessage,
    RawRow,
    ReplyContext,
)
from imbridge.utils import generate_delivery_id, now_ms

if TYPE_CHECKING:
    from imbridge.contacts import ContactResolver

DEFAULT_COUNTRY_CODE = "1"
DIRECT_SESSION_KEY = "agent:main:main"
GROUP_SESSION_PREFIX = "agent:main:imessage:group:"
GROUP_CHAT_STYLE = 43
DIRECT_CHAT_STYLE = 45

_NON_PHONE_CHARS = re.compile(r"[^\d+]")


def normalize_phone(raw: str | None) -> str | None:
    """Canonical ``+<digits>`` form. Idempotent; returns None for empty input."""
    if not raw:
        return None
    n = _NON_PHONE_CHARS.sub("", raw)
    if not n:
        return None
    if n.startswith("+"):
        return n
    if len(n) == 10:
        return f"+{DEFAULT_COUNTRY_CODE}{n}"
    if len(n) == 11 and n.startswith(DEFAULT_COUNTRY_CODE):
        return f"+{n}"
    return f"+{n}"


class SenderPolicy:
    """Inbound sender filter built from ``dm_policy`` + ``allow_from``.

    - ``disabled``: nobody.
    - ``open``: everybody, ``allow_from`` is ignored.
    - ``allowlist``: exact or normalized-phone match; ``*`` admits everybody;
      an empty list admits nobody.
    """

    def __init__(self, dm_policy: str, allow_from: list[str]) -> None:
        self.dm_policy = dm_policy
        self._wildcard = "*" in allow_from
        self._exact = {a for a in allow_from if a != "*"}
        self._normalized = {
            n for a in self._exact if (n := normalize_phone(a)) is not None
        }

    def allows(self, sender: str | None) -> bool:
        if not sender or self.dm_policy == "disabled":
            return False
        if self.dm_policy == "open" or self._wildcard:
            return True
        if sender in self._exact:
            return True
        normalized = normalize_phone(sender)
        return normalized is not None and normalized in self._normalized


def is_group(row: RawRow) -> bool:
    """Trust the chat style when the store has one; guess from the identifier otherwise."""
    if row.chat_style == GROUP_CHAT_STYLE:
        return True
    if row.chat_style == DIRECT_CHAT_STYLE:
        return False
    return bool(row.chat_identifier and row.chat_identifier.startswith("chat"))


def routing_key(kind: ChatKind, chat_id: str) -> str:
    """All direct chats share the owner's main session; each group is isolated."""
    if kind == "group":
        return f"{GROUP_SESSION_PREFIX}{chat_id}"
    return DIRECT_SESSION_KEY


def strip_message_guid(ref: str) -> str:
    """Reduce an association/thread reference to a bare message GUID.

    References look like ``p:0/<GUID>`` (message part) or ``bp:<GUID>``.
    """
    guid = ref.rsplit("/", 1)[-1]
    if guid.startswith("bp:"):
        guid = guid[3:]
    return guid


async def lookup_quoted(db: aiosqlite.Connection, ref: str | None) -> QuotedMessage | None:
    if not ref:
        return None
    return await get_message_by_guid(db, strip_message_guid(ref))


class MessageNormalizer:
    """Builds :class:`InboundEvent` objects for one account."""

    def __init__(
        self,
        db: aiosqlite.Connection,
        *,
        contacts: ContactResolver | None = None,
    ) -> None:
        self._db = db
        self._contacts = contacts

    async def display_name(self, handle: str) -> str:
        if self._contacts is None:
            return handle
        try:
            name = await self._contacts.resolve(handle)
        except Exception as exc:
            logger.debug("Contact resolution failed", sender=handle, err=str(exc))
            return handle
        return name or handle

    async def reply_context(self, ref: str | None) -> ReplyContext | None:
        """Best-effort quoted-message context; None when the original is gone."""
        original = await lookup_quoted(self._db, ref)
        if original is None or not original.text:
            return None
        sender = "me"
        if not original.is_from_me and original.sender:
            sender = await self.display_name(original.sender)
        return ReplyContext(
            guid=original.guid,
            text=original.text,
            sender=sender,
            is_from_me=original.is_from_me,
        )

    async def normalize(self, classified: ClassifiedRow) -> InboundEvent | None:
        """Return the event for a row, or None when nothing is left to deliver."""
        row = classified.row
        sender = row.sender or ""
        kind: ChatKind = "group" if is_group(row) else "direct"
        chat_id = row.chat_identifier if kind == "group" and row.chat_identifier else sender

        attachments = await get_attachments(self._db, row.row_id) if row.has_attachments else []
        if attachments:
            logger.info(
                "Message has attachments",
                row_id=row.row_id,
                types=[a.mime_type for a in attachments],
            )

        body = classified.tapback_text or row.text or ""
        if not body.strip() and not attachments:
            return None

        reply = None
        if row.thread_originator_guid and not classified.tapback_text:
            reply = await self.reply_context(row.thread_originator_guid)

        return InboundEvent(
            row_id=row.row_id,
            sender_id=sender,
            sender_name=await self.display_name(sender),
            routing_key=routing_key(kind, chat_id),
            chat_kind=kind,
            reply_target=chat_id,
            body=body,
            raw_body=row.text or "",
            delivery_id=generate_delivery_id(),
            timestamp_ms=now_ms(),
            attachments=attachments,
            reply_context=reply,
        )
