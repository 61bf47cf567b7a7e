"""Read-only connection helpers."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import aiosqlite


class MessageStoreUnavailable(RuntimeError):
    """The store file is missing or cannot be opened (permissions, Full Disk Access)."""


async def open_readonly(path: Path) -> aiosqlite.Connection:
    """Open ``path`` read-only. Raises MessageStoreUnavailable on failure."""
    if not path.exists():
        raise MessageStoreUnavailable(f"Database not found: {path}")
    uri = f"{path.resolve().as_uri()}?mode=ro"
    try:
        db = await aiosqlite.connect(uri, uri=True)
    except (sqlite3.Error, OSError) as exc:
        raise MessageStoreUnavailable(f"Cannot open {path}: {exc}") from exc
    db.row_factory = aiosqlite.Row
    try:
        # Opening is lazy; touch the schema so permission errors surface here.
        await db.execute("SELECT 1 FROM sqlite_master LIMIT 1")
    except sqlite3.Error as exc:
        await db.close()
        raise MessageStoreUnavailable(f"Cannot read {path}: {exc}") from exc
    return db
