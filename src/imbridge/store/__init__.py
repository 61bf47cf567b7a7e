"""Read-only access to the Messages and AddressBook SQLite stores.

All functions are async using aiosqlite. Connections are opened with
``mode=ro`` and never written to. Both databases are owned by macOS.

  connection    opening read-only handles
  messages      message rows, attachments, GUID lookups
  address_book  contact name lookup by trailing phone digits
"""

from imbridge.store.address_book import find_address_book, lookup_contact_name
from imbridge.store.connection import MessageStoreUnavailable, open_readonly
from imbridge.store.messages import (
    BATCH_LIMIT,
    fetch_rows_since,
    get_attachments,
    get_max_row_id,
    get_message_by_guid,
    guess_mime_type,
)

__all__ = [
    "BATCH_LIMIT",
    "MessageStoreUnavailable",
    "fetch_rows_since",
    "find_address_book",
    "get_attachments",
    "get_max_row_id",
    "get_message_by_guid",
    "guess_mime_type",
    "lookup_contact_name",
    "open_readonly",
]
