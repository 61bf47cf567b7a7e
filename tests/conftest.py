"""Shared test fixtures for imbridge."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from imbridge.store import open_readonly

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, not fixtures; importable by test files)
# ---------------------------------------------------------------------------

# Cached property names that must be set via __dict__ (not model_construct).
_CACHED_PROPERTY_NAMES = frozenset(
    {
        "messages_db_path",
        "address_book_dir",
        "state_path",
        "lease_path",
    }
)


def make_settings(**overrides):
    """Create a Settings object with sensible defaults for testing.

    Accepts both model fields (channels, outbound, etc.) and cached property
    overrides (messages_db_path, state_path, etc.).

    Usage::

        s = make_settings(state_path=tmp_path / "state.json")
        s = make_settings(channels=ChannelsConfig(imessage=IMessageChannelConfig(enabled=True)))
    """
    from imbridge.config import (
        ChannelsConfig,
        LoggingConfig,
        OutboundConfig,
        PathsConfig,
        PipelineConfig,
        Settings,
    )

    cached = {k: overrides.pop(k) for k in list(overrides) if k in _CACHED_PROPERTY_NAMES}

    defaults = {
        "channels": ChannelsConfig(),
        "paths": PathsConfig(),
        "outbound": OutboundConfig(),
        "pipeline": PipelineConfig(),
        "logging": LoggingConfig(),
        "plugins": {},
    }
    defaults.update(overrides)
    s = Settings.model_construct(**defaults)

    for key, value in cached.items():
        s.__dict__[key] = value

    return s


_CHAT_DB_SCHEMA = """
CREATE TABLE handle (ROWID INTEGER PRIMARY KEY AUTOINCREMENT, id TEXT NOT NULL);
CREATE TABLE chat (
    ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
    chat_identifier TEXT,
    style INTEGER
);
CREATE TABLE message (
    ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
    guid TEXT UNIQUE NOT NULL,
    text TEXT,
    handle_id INTEGER DEFAULT 0,
    is_from_me INTEGER DEFAULT 0,
    associated_message_type INTEGER DEFAULT 0,
    associated_message_guid TEXT,
    thread_originator_guid TEXT,
    cache_has_attachments INTEGER DEFAULT 0
);
CREATE TABLE chat_message_join (chat_id INTEGER, message_id INTEGER);
CREATE TABLE attachment (
    ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
    filename TEXT,
    mime_type TEXT,
    total_bytes INTEGER,
    transfer_name TEXT,
    uti TEXT
);
CREATE TABLE message_attachment_join (message_id INTEGER, attachment_id INTEGER);
"""


class FakeChatDb:
    """Writable stand-in for ``~/Library/Messages/chat.db`` with the columns we read."""

    def __init__(self, path: Path) -> None:
        self.path = path
        conn = sqlite3.connect(path)
        conn.executescript(_CHAT_DB_SCHEMA)
        conn.commit()
        conn.close()
        self._handles: dict[str, int] = {}
        self._chats: dict[str, int] = {}
        self._seq = 0

    def _exec(self, sql: str, params: tuple = ()) -> int:
        conn = sqlite3.connect(self.path)
        try:
            cur = conn.execute(sql, params)
            conn.commit()
            return cur.lastrowid or 0
        finally:
            conn.close()

    def handle(self, handle_id: str) -> int:
        if handle_id not in self._handles:
            self._handles[handle_id] = self._exec("INSERT INTO handle (id) VALUES (?)", (handle_id,))
        return self._handles[handle_id]

    def chat(self, identifier: str, *, style: int = 45) -> int:
        if identifier not in self._chats:
            self._chats[identifier] = self._exec(
                "INSERT INTO chat (chat_identifier, style) VALUES (?, ?)", (identifier, style)
            )
        return self._chats[identifier]

    def add_message(
        self,
        text: str | None,
        *,
        sender: str | None = "+15551234567",
        row_id: int | None = None,
        guid: str | None = None,
        is_from_me: bool = False,
        group: str | None = None,
        associated_message_type: int = 0,
        associated_message_guid: str | None = None,
        thread_originator_guid: str | None = None,
        attachments: list[dict] | None = None,
    ) -> int:
        self._seq += 1
        handle_id = self.handle(sender) if sender else 0
        rowid = self._exec(
            "INSERT INTO message (ROWID, guid, text, handle_id, is_from_me,"
            " associated_message_type, associated_message_guid, thread_originator_guid,"
            " cache_has_attachments) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                row_id,
                guid or f"GUID-{self._seq}",
                text,
                handle_id,
                int(is_from_me),
                associated_message_type,
                associated_message_guid,
                thread_originator_guid,
                int(bool(attachments)),
            ),
        )
        if group is not None:
            chat_id = self.chat(group, style=43)
        elif sender:
            chat_id = self.chat(sender)
        else:
            chat_id = None
        if chat_id is not None:
            self._exec(
                "INSERT INTO chat_message_join (chat_id, message_id) VALUES (?, ?)",
                (chat_id, rowid),
            )
        for att in attachments or []:
            att_id = self._exec(
                "INSERT INTO attachment (filename, mime_type, total_bytes, transfer_name, uti)"
                " VALUES (?, ?, ?, ?, ?)",
                (
                    att.get("filename"),
                    att.get("mime_type"),
                    att.get("total_bytes"),
                    att.get("transfer_name"),
                    att.get("uti"),
                ),
            )
            self._exec(
                "INSERT INTO message_attachment_join (message_id, attachment_id) VALUES (?, ?)",
                (rowid, att_id),
            )
        return rowid


def make_address_book(sources_dir: Path, contacts: list[tuple[str, str | None, str | None, str | None]]):
    """Create one AddressBook source. ``contacts`` is (number, first, last, org)."""
    source = sources_dir / "ABCD-1234"
    source.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(source / "AddressBook-v22.abcddb")
    conn.executescript(
        """
        CREATE TABLE ZABCDRECORD (
            Z_PK INTEGER PRIMARY KEY, ZFIRSTNAME TEXT, ZLASTNAME TEXT, ZORGANIZATION TEXT
        );
        CREATE TABLE ZABCDPHONENUMBER (Z_PK INTEGER PRIMARY KEY, ZOWNER INTEGER, ZFULLNUMBER TEXT);
        """
    )
    for pk, (number, first, last, org) in enumerate(contacts, start=1):
        conn.execute(
            "INSERT INTO ZABCDRECORD (Z_PK, ZFIRSTNAME, ZLASTNAME, ZORGANIZATION) VALUES (?, ?, ?, ?)",
            (pk, first, last, org),
        )
        conn.execute(
            "INSERT INTO ZABCDPHONENUMBER (ZOWNER, ZFULLNUMBER) VALUES (?, ?)",
            (pk, number),
        )
    conn.commit()
    conn.close()
    return source / "AddressBook-v22.abcddb"


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Ensure each test starts with a clean Settings singleton.

    Uses ``make_settings()`` to build from pure defaults: no config.toml,
    no .env, no file I/O. Tests are fully isolated from production config.
    """
    safe = make_settings()
    monkeypatch.setattr("imbridge.config._settings", safe)


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def chat_db(tmp_path):
    return FakeChatDb(tmp_path / "chat.db")


@pytest.fixture
async def store(chat_db):
    """Read-only aiosqlite connection to ``chat_db``."""
    db = await open_readonly(chat_db.path)
    yield db
    await db.close()
