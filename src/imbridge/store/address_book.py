"""AddressBook lookups.

macOS keeps one ``AddressBook-v22.abcddb`` per account source under
``~/Library/Application Support/AddressBook/Sources/<uuid>/``.  Phone
numbers are stored in whatever format the user typed, so lookups match on
the trailing seven digits only.
"""

from __future__ import annotations

import re
import sqlite3
from pathlib import Path

import aiosqlite

from imbridge.logger import logger

ADDRESS_BOOK_FILENAME = "AddressBook-v22.abcddb"
MATCH_DIGITS = 7

_LOOKUP_SQL = """
SELECT r.ZFIRSTNAME, r.ZLASTNAME, r.ZORGANIZATION
FROM ZABCDPHONENUMBER p
JOIN ZABCDRECORD r ON p.ZOWNER = r.Z_PK
WHERE REPLACE(REPLACE(REPLACE(REPLACE(REPLACE(REPLACE(
        p.ZFULLNUMBER, ' ', ''), '-', ''), '(', ''), ')', ''), '.', ''), '+', '') LIKE ?
LIMIT 1
"""


def find_address_book(sources_dir: Path) -> Path | None:
    """Return the first source database under ``sources_dir``, if any."""
    try:
        sources = sorted(sources_dir.iterdir())
    except OSError:
        return None
    for source in sources:
        candidate = source / ADDRESS_BOOK_FILENAME
        if candidate.exists():
            return candidate
    return None


async def lookup_contact_name(db: aiosqlite.Connection, phone: str) -> str | None:
    """Resolve a phone number to "First Last" (or organization). Errors yield None."""
    digits = re.sub(r"\D", "", phone)[-MATCH_DIGITS:]
    if not digits:
        return None
    try:
        cursor = await db.execute(_LOOKUP_SQL, (f"%{digits}",))
        row = await cursor.fetchone()
    except sqlite3.Error as exc:
        logger.debug("Contact lookup failed", err=str(exc))
        return None
    if row is None:
        return None
    first, last, org = row[0], row[1], row[2]
    name = " ".join(part for part in (first, last) if part) or org
    return name or None
