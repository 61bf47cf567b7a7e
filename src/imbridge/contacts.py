"""Contact-name resolution with a bounded, per-poller TTL cache.

Misses are cached too (so an unknown number doesn't hit the AddressBook on
every message), but with a shorter TTL than hits.  The trailing-digit match
can pair two different numbers that share their last seven digits, so hits
expire as well rather than living for the life of the process.
"""

from __future__ import annotations

import time
from pathlib import Path

import aiosqlite

from imbridge.logger import logger
from imbridge.normalizer import normalize_phone
from imbridge.store import MessageStoreUnavailable, find_address_book, lookup_contact_name
from imbridge.store.connection import open_readonly

_MISSING = object()


class _TtlCache:
    """Bounded cache with per-entry TTL.

    Evicts expired entries lazily on get/put.  Hard-caps at ``max_size``
    entries to bound memory regardless of TTL.
    """

    def __init__(self, max_size: int = 512) -> None:
        self._max_size = max_size
        self._data: dict[str, tuple[str | None, float]] = {}  # key → (value, expiry_mono)

    def get(self, key: str) -> str | None | object:
        """Return the cached value (possibly None), or ``_MISSING``."""
        entry = self._data.get(key)
        if entry is None:
            return _MISSING
        value, expiry = entry
        if time.monotonic() > expiry:
            del self._data[key]
            return _MISSING
        return value

    def put(self, key: str, value: str | None, ttl_seconds: float) -> None:
        if len(self._data) >= self._max_size:
            self._evict_expired()
        # If still at capacity after eviction, drop oldest entry
        if len(self._data) >= self._max_size:
            oldest_key = next(iter(self._data))
            del self._data[oldest_key]
        self._data[key] = (value, time.monotonic() + ttl_seconds)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def _evict_expired(self) -> None:
        now = time.monotonic()
        self._data = {k: v for k, v in self._data.items() if v[1] > now}


class ContactResolver:
    """Phone → display name via the AddressBook, owned by one poller instance."""

    def __init__(
        self,
        sources_dir: Path,
        *,
        hit_ttl_seconds: float = 3600,
        miss_ttl_seconds: float = 600,
        max_size: int = 512,
    ) -> None:
        self._sources_dir = sources_dir
        self._hit_ttl = hit_ttl_seconds
        self._miss_ttl = miss_ttl_seconds
        self._cache = _TtlCache(max_size=max_size)
        self._db: aiosqlite.Connection | None = None
        self._unavailable = False

    async def _get_db(self) -> aiosqlite.Connection | None:
        if self._db is not None or self._unavailable:
            return self._db
        path = find_address_book(self._sources_dir)
        if path is None:
            logger.debug("No AddressBook source found", sources=str(self._sources_dir))
            self._unavailable = True
            return None
        try:
            self._db = await open_readonly(path)
        except MessageStoreUnavailable as exc:
            logger.debug("Cannot open AddressBook", err=str(exc))
            self._unavailable = True
        return self._db

    async def resolve(self, phone: str | None) -> str | None:
        if not phone:
            return None
        key = normalize_phone(phone) or phone
        cached = self._cache.get(key)
        if cached is not _MISSING:
            return cached  # type: ignore[return-value]

        db = await self._get_db()
        if db is None:
            return None
        name = await lookup_contact_name(db, phone)
        self._cache.put(key, name, self._hit_ttl if name else self._miss_ttl)
        return name

    async def close(self) -> None:
        self._cache.clear()
        if self._db is not None:
            db, self._db = self._db, None
            try:
                await db.close()
            except Exception as exc:
                logger.debug("Error closing AddressBook", err=str(exc))
