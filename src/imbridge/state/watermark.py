"""Watermark persistence: last seen ROWID plus a short dedup window.

On disk::

    {"lastRowId": 1234, "processedIds": [1230, 1232, 1234]}

A missing or unreadable file is treated as "no state": the caller supplies
the store's current max ROWID so historical backlog is never replayed.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from pathlib import Path

from imbridge.logger import logger
from imbridge.utils import write_json_atomic

RECENT_IDS_LIMIT = 100


@dataclass(frozen=True)
class Watermark:
    last_seen_id: int = 0
    recent_ids: tuple[int, ...] = ()

    def raise_to(self, row_id: int) -> Watermark:
        """Move ``last_seen_id`` forward without recording the row."""
        if row_id <= self.last_seen_id:
            return self
        return replace(self, last_seen_id=row_id)

    def advance(self, row_id: int) -> Watermark:
        """Raise the watermark and record ``row_id`` in the dedup window."""
        recent = self.recent_ids
        if row_id not in recent:
            recent = (*recent, row_id)[-RECENT_IDS_LIMIT:]
        return Watermark(last_seen_id=max(self.last_seen_id, row_id), recent_ids=recent)

    def has_seen(self, row_id: int) -> bool:
        return row_id in self.recent_ids

    def to_dict(self) -> dict:
        return {"lastRowId": self.last_seen_id, "processedIds": list(self.recent_ids)}


def _parse(raw: object) -> Watermark | None:
    if not isinstance(raw, dict):
        return None
    last = raw.get("lastRowId")
    if not isinstance(last, int) or isinstance(last, bool) or last <= 0:
        return None
    processed = raw.get("processedIds") or []
    if not isinstance(processed, list):
        processed = []
    recent = tuple(i for i in processed if isinstance(i, int) and not isinstance(i, bool))
    return Watermark(last_seen_id=last, recent_ids=recent[-RECENT_IDS_LIMIT:])


class WatermarkStore:
    """Loads and atomically persists a :class:`Watermark` at a fixed path."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def read(self) -> Watermark | None:
        """Return the persisted watermark, or None if absent or corrupt."""
        try:
            raw = json.loads(self.path.read_text())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable watermark state", path=str(self.path), err=str(exc))
            return None
        watermark = _parse(raw)
        if watermark is None:
            logger.warning("Ignoring malformed watermark state", path=str(self.path))
        return watermark

    def load(self, fallback_max_id: int) -> Watermark:
        watermark = self.read()
        if watermark is None:
            logger.info("Initialized watermark from store max", row_id=fallback_max_id)
            return Watermark(last_seen_id=fallback_max_id)
        return watermark

    def persist(self, watermark: Watermark) -> None:
        write_json_atomic(self.path, watermark.to_dict(), indent=2)
