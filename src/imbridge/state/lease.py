"""Active-instance lease, last writer wins.

Hot reloads can start a new poller before the old one has torn down.  Each
new instance overwrites the lease file with its own token; every tick of
every instance re-reads it, and an instance that no longer owns the lease
stops itself.  This is local, single-host arbitration with no locking: the
overlap is bounded by one poll interval, not prevented.
"""

from __future__ import annotations

import secrets
from pathlib import Path

from imbridge.logger import logger


def new_instance_id() -> str:
    return secrets.token_hex(4)


class ActiveInstanceLease:
    def __init__(self, path: Path) -> None:
        self.path = path

    def claim(self, owner_id: str) -> bool:
        """Unconditionally take the lease. Returns False if the file is unwritable."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(owner_id, encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to claim active instance", instance=owner_id, err=str(exc))
            return False
        logger.info("Claimed active instance", instance=owner_id)
        return True

    def current_owner(self) -> str | None:
        try:
            return self.path.read_text(encoding="utf-8").strip() or None
        except OSError:
            return None

    def is_active(self, owner_id: str) -> bool:
        return self.current_owner() == owner_id
