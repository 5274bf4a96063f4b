"""Entry point for `python -m fleetbot` / `fleetbot`.

Flags:
    --qr / --code [PHONE]   link the primary account while starting
    --self                  only owners can run commands
    --nyimak                observe only, never run commands
    --pconly / --gconly     private chats only / groups only
    --restrict              enable admin-tagged plugins' before hooks
    --autoread              mark every processed message read
    --queque                serialize commands of ordinary users
    --server                serve GET /status
    --db=URL                database url (json path, sqlite:///, https://)
    --prefix=CHARS          command prefix characters
    --test                  no periodic database flush
    --autocleartmp          delete stale tmp files on every flush
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Any


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fleetbot",
        description="Multi-account WhatsApp command bot",
    )
    link = parser.add_mutually_exclusive_group()
    link.add_argument("--qr", action="store_true", help="Link the primary account with a QR code")
    link.add_argument(
        "--code",
        nargs="?",
        const="",
        metavar="PHONE",
        help="Link the primary account with a pairing code",
    )
    parser.add_argument("--mobile", action="store_true", help="Mobile client pairing")
    parser.add_argument("--test", action="store_true", help="Disable the periodic database flush")
    parser.add_argument("--self", dest="self_only", action="store_true", help="Owners only")
    parser.add_argument("--nyimak", action="store_true", help="Observe only")
    scope = parser.add_mutually_exclusive_group()
    scope.add_argument("--pconly", action="store_true", help="Private chats only")
    scope.add_argument("--gconly", action="store_true", help="Group chats only")
    parser.add_argument("--restrict", action="store_true", help="Run admin-tagged hooks")
    parser.add_argument("--autoread", action="store_true", help="Mark messages read")
    parser.add_argument("--queque", action="store_true", help="Serialize ordinary users' commands")
    parser.add_argument("--server", action="store_true", help="Serve GET /status")
    parser.add_argument("--db", metavar="URL", help="Database url")
    parser.add_argument("--prefix", metavar="CHARS", help="Command prefix characters")
    parser.add_argument("--autocleartmp", action="store_true", help="Delete stale tmp files")
    return parser


def overrides_from_args(args: argparse.Namespace) -> dict[str, dict[str, Any]]:
    """Map parsed flags onto config sections for ``apply_overrides``."""
    runtime: dict[str, Any] = {
        name: True
        for name in (
            "mobile",
            "test",
            "self_only",
            "nyimak",
            "pconly",
            "gconly",
            "restrict",
            "autoread",
            "queque",
            "server",
            "autocleartmp",
        )
        if getattr(args, name)
    }
    if args.qr:
        runtime["pairing"] = "qr"
    elif args.code is not None:
        runtime["pairing"] = "code"
        runtime["pairing_number"] = "".join(ch for ch in args.code if ch.isdigit()) or None

    sections: dict[str, dict[str, Any]] = {"runtime": runtime}
    if args.db:
        sections["database"] = {"url": args.db}
    if args.prefix:
        sections["bot"] = {"prefix": args.prefix}
    return sections


def main(argv: list[str] | None = None) -> None:
    args = _parser().parse_args(argv)
    if args.code == "":
        args.code = input("WhatsApp number with country code (e.g. 391234567890): ")

    from fleetbot.app import FleetbotApp
    from fleetbot.config import apply_overrides
    from fleetbot.logger import set_level

    settings = apply_overrides(**overrides_from_args(args))
    set_level(settings.logging.level)
    asyncio.run(FleetbotApp(settings).run())


if __name__ == "__main__":
    main()
