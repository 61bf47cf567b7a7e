"""Change reader: turns the append-only ``message`` table into batches.

Each poll reads at most one batch past the watermark, in ROWID order.  The
watermark moves to the highest ROWID in the batch even when every row is
filtered out, so a filtered row is never scanned twice.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

import aiosqlite

from imbridge.logger import logger
from imbridge.normalizer import SenderPolicy, lookup_quoted
from imbridge.state import Watermark
from imbridge.store import BATCH_LIMIT, fetch_rows_since
from imbridge.types import ClassifiedRow, RawRow

# associated_message_type values for tapbacks; 3000-3005 are the removals.
TAPBACK_EMOJI: dict[int, str] = {
    2000: "❤️",  # love
    2001: "👍",  # like
    2002: "👎",  # dislike
    2003: "😂",  # laugh
    2004: "‼️",  # emphasis
    2005: "❓",  # question
}
REACTION_RANGE = range(2000, 4000)
REMOVAL_RANGE = range(3000, 4000)


class RowKind(StrEnum):
    PLAIN = "plain"
    TAPBACK = "tapback"
    TAPBACK_REMOVED = "tapback_removed"
    TAPBACK_UNKNOWN = "tapback_unknown"


def classify(row: RawRow) -> RowKind:
    kind = row.associated_message_type
    if kind not in REACTION_RANGE:
        return RowKind.PLAIN
    if kind in REMOVAL_RANGE:
        return RowKind.TAPBACK_REMOVED
    if kind in TAPBACK_EMOJI:
        return RowKind.TAPBACK
    return RowKind.TAPBACK_UNKNOWN


def tapback_text(emoji: str, original_text: str | None) -> str:
    return f'{emoji} reacted to: "{original_text or "message"}"'


@dataclass
class PollResult:
    watermark: Watermark
    rows: list[ClassifiedRow] = field(default_factory=list)
    scanned: int = 0


class ChangeReader:
    def __init__(
        self,
        db: aiosqlite.Connection,
        policy: SenderPolicy,
        *,
        include_tapbacks: bool = True,
        batch_limit: int = BATCH_LIMIT,
    ) -> None:
        self._db = db
        self._policy = policy
        self._include_tapbacks = include_tapbacks
        self._batch_limit = batch_limit

    async def poll(self, watermark: Watermark) -> PollResult:
        """Read and filter one batch. Store errors propagate to the caller."""
        rows = await fetch_rows_since(self._db, watermark.last_seen_id, self._batch_limit)
        result = PollResult(watermark=watermark, scanned=len(rows))

        for row in rows:
            wm = result.watermark.raise_to(row.row_id)
            result.watermark = wm
            if not row.sender:
                continue
            if not self._policy.allows(row.sender):
                logger.debug("Sender not allowed", row_id=row.row_id, sender=row.sender)
                continue
            if wm.has_seen(row.row_id):
                continue
            result.watermark = wm.advance(row.row_id)

            classified = await self._classify(row)
            if classified is not None:
                result.rows.append(classified)

        return result

    async def _classify(self, row: RawRow) -> ClassifiedRow | None:
        kind = classify(row)
        text: str | None = None
        if kind is not RowKind.PLAIN:
            if not self._include_tapbacks or kind is not RowKind.TAPBACK:
                return None
            original = await lookup_quoted(self._db, row.associated_message_guid)
            text = tapback_text(
                TAPBACK_EMOJI[row.associated_message_type],
                original.text if original else None,
            )

        if not (row.text or "").strip() and not row.has_attachments and not text:
            return None
        return ClassifiedRow(row=row, tapback_text=text)
