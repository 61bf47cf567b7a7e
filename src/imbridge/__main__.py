"""Entry point for `python -m imbridge` / `imbridge`.

Subcommands:
    imbridge            Run the bridge (default)
    imbridge run        Same as above
    imbridge status     Show the persisted watermark and the lease owner
"""

from __future__ import annotations

import argparse
import asyncio
import json


def _run() -> None:
    from imbridge.app import BridgeApp

    asyncio.run(BridgeApp().run())


def _status(as_json: bool) -> None:
    from imbridge.config import get_settings
    from imbridge.state import ActiveInstanceLease, WatermarkStore

    s = get_settings()
    watermark = WatermarkStore(s.state_path).read()
    owner = ActiveInstanceLease(s.lease_path).current_owner()
    status = {
        "enabled": s.channels.imessage.enabled,
        "messagesDb": str(s.messages_db_path),
        "stateFile": str(s.state_path),
        "watermark": watermark.to_dict() if watermark else None,
        "activeInstance": owner,
    }
    if as_json:
        print(json.dumps(status, indent=2))
        return

    print(f"iMessage channel: {'enabled' if status['enabled'] else 'disabled'}")
    print(f"Messages DB:      {status['messagesDb']}")
    if watermark is None:
        print("Watermark:        none (next start begins at the newest message)")
    else:
        print(
            f"Watermark:        row {watermark.last_seen_id}"
            f" ({len(watermark.recent_ids)} recent ids)"
        )
    print(f"Active instance:  {owner or 'none'}")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="imbridge",
        description="Bridge iMessage into an agent pipeline",
    )
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="Poll Messages and dispatch new messages (default)")
    status = sub.add_parser("status", help="Show the persisted watermark and lease owner")
    status.add_argument("--json", action="store_true", help="Print status as JSON")

    args = parser.parse_args()

    match args.command:
        case "status":
            _status(args.json)
        case _:
            _run()


if __name__ == "__main__":
    main()
