"""Data models for imbridge."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

ChatKind = Literal["direct", "group"]


@dataclass
class RawRow:
    """One row of the ``message`` table joined with sender and chat metadata."""

    row_id: int  # chat.db ROWID, monotonic
    guid: str
    text: str | None
    is_from_me: bool
    associated_message_type: int = 0  # 0 = plain, 2000-2005 add reaction, 3000-3005 remove
    associated_message_guid: str | None = None
    thread_originator_guid: str | None = None  # set on inline replies
    has_attachments: bool = False
    sender: str | None = None  # handle.id (phone number or email)
    chat_identifier: str | None = None
    chat_style: int | None = None  # 43 = group, 45 = direct


@dataclass
class Attachment:
    path: str
    mime_type: str
    size: int | None = None
    name: str = ""


@dataclass
class QuotedMessage:
    """A message looked up by GUID: the target of a reply or tapback."""

    guid: str
    row_id: int
    text: str | None
    is_from_me: bool
    sender: str | None = None


@dataclass
class ReplyContext:
    guid: str
    text: str
    sender: str  # display name, or "me" for our own messages
    is_from_me: bool


@dataclass
class ClassifiedRow:
    """A row that survived filtering, with its derived tapback text (if any)."""

    row: RawRow
    tapback_text: str | None = None


@dataclass
class InboundEvent:
    """Canonical normalized message handed to the dispatch bridge."""

    row_id: int
    sender_id: str
    sender_name: str
    routing_key: str
    chat_kind: ChatKind
    reply_target: str  # group chat identifier or the sender handle
    body: str
    raw_body: str
    delivery_id: str
    timestamp_ms: int
    attachments: list[Attachment] = field(default_factory=list)
    reply_context: ReplyContext | None = None

    @property
    def is_group(self) -> bool:
        return self.chat_kind == "group"


@dataclass
class ReplyPayload:
    text: str | None = None
    media_path: str | None = None
