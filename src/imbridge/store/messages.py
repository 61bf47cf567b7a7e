"""Queries against the Messages ``chat.db`` schema."""

from __future__ import annotations

import os
import sqlite3
from pathlib import Path

import aiosqlite

from imbridge.logger import logger
from imbridge.types import Attachment, QuotedMessage, RawRow

BATCH_LIMIT = 20

# Only ``message.text`` is read. Newer macOS releases often leave it NULL and
# keep the body in the ``attributedBody`` typedstream blob; such rows arrive
# with an empty body and are dropped unless they carry attachments.
_ROWS_SINCE_SQL = """
SELECT m.ROWID AS row_id, m.guid, m.text, m.is_from_me,
       m.associated_message_type, m.associated_message_guid,
       m.thread_originator_guid, m.cache_has_attachments,
       h.id AS sender, c.chat_identifier, c.style
FROM message m
LEFT JOIN handle h ON m.handle_id = h.ROWID
LEFT JOIN chat_message_join cmj ON m.ROWID = cmj.message_id
LEFT JOIN chat c ON cmj.chat_id = c.ROWID
WHERE m.ROWID > ? AND m.is_from_me = 0
GROUP BY m.ROWID
ORDER BY m.ROWID
LIMIT ?
"""

_ATTACHMENTS_SQL = """
SELECT a.filename, a.mime_type, a.total_bytes, a.transfer_name, a.uti
FROM attachment a
JOIN message_attachment_join maj ON a.ROWID = maj.attachment_id
WHERE maj.message_id = ?
"""

_BY_GUID_SQL = """
SELECT m.guid, m.ROWID AS row_id, m.text, m.is_from_me, h.id AS sender
FROM message m
LEFT JOIN handle h ON m.handle_id = h.ROWID
WHERE m.guid = ?
LIMIT 1
"""

_UTI_MIME: list[tuple[tuple[str, ...], str]] = [
    (("jpeg", "jpg"), "image/jpeg"),
    (("png",), "image/png"),
    (("gif",), "image/gif"),
    (("heic",), "image/heic"),
    (("mp4", "movie"), "video/mp4"),
    (("m4a", "audio"), "audio/m4a"),
    (("pdf",), "application/pdf"),
]

_EXT_MIME = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".heic": "image/heic",
    ".webp": "image/webp",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
    ".m4a": "audio/m4a",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".pdf": "application/pdf",
}


async def get_max_row_id(db: aiosqlite.Connection) -> int:
    cursor = await db.execute("SELECT MAX(ROWID) AS m FROM message")
    row = await cursor.fetchone()
    return (row["m"] if row else None) or 0


def _to_raw_row(row: aiosqlite.Row) -> RawRow:
    return RawRow(
        row_id=row["row_id"],
        guid=row["guid"] or "",
        text=row["text"],
        is_from_me=bool(row["is_from_me"]),
        associated_message_type=row["associated_message_type"] or 0,
        associated_message_guid=row["associated_message_guid"],
        thread_originator_guid=row["thread_originator_guid"],
        has_attachments=bool(row["cache_has_attachments"]),
        sender=row["sender"],
        chat_identifier=row["chat_identifier"],
        chat_style=row["style"],
    )


async def fetch_rows_since(
    db: aiosqlite.Connection, last_row_id: int, limit: int = BATCH_LIMIT
) -> list[RawRow]:
    """Inbound rows after ``last_row_id``, ascending, at most ``limit``.

    Query errors propagate; the caller aborts the tick without advancing.
    """
    cursor = await db.execute(_ROWS_SINCE_SQL, (last_row_id, limit))
    rows = await cursor.fetchall()
    return [_to_raw_row(r) for r in rows]


def guess_mime_type(uti: str | None, filepath: str | None) -> str:
    """Best-effort MIME type from the attachment's UTI, then its extension."""
    if uti:
        for needles, mime in _UTI_MIME:
            if any(n in uti for n in needles):
                return mime
    ext = os.path.splitext(filepath or "")[1].lower()
    return _EXT_MIME.get(ext, "application/octet-stream")


async def get_attachments(db: aiosqlite.Connection, row_id: int) -> list[Attachment]:
    """Attachments for a message that still exist on disk. Errors yield []."""
    try:
        cursor = await db.execute(_ATTACHMENTS_SQL, (row_id,))
        rows = await cursor.fetchall()
    except sqlite3.Error as exc:
        logger.debug("Attachment query failed", row_id=row_id, err=str(exc))
        return []

    attachments: list[Attachment] = []
    for row in rows:
        filepath = row["filename"]
        if not filepath:
            continue
        if filepath.startswith("~/"):
            filepath = str(Path.home() / filepath[2:])
        if not Path(filepath).exists():
            continue
        attachments.append(
            Attachment(
                path=filepath,
                mime_type=row["mime_type"] or guess_mime_type(row["uti"], filepath),
                size=row["total_bytes"],
                name=row["transfer_name"] or Path(filepath).name,
            )
        )
    return attachments


async def get_message_by_guid(db: aiosqlite.Connection, guid: str) -> QuotedMessage | None:
    """Look up a single message by GUID. Errors yield None."""
    try:
        cursor = await db.execute(_BY_GUID_SQL, (guid,))
        row = await cursor.fetchone()
    except sqlite3.Error as exc:
        logger.debug("Message lookup failed", guid=guid, err=str(exc))
        return None
    if row is None:
        return None
    return QuotedMessage(
        guid=row["guid"],
        row_id=row["row_id"],
        text=row["text"],
        is_from_me=bool(row["is_from_me"]),
        sender=row["sender"],
    )
