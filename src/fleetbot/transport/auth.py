"""WhatsApp linking helper.

Links an account once and leaves the neonize credential store in its
session directory. ``fleetbot --qr`` / ``--code`` do the same inline while
the bot starts; this standalone command is for linking fleet accounts.

Usage:
    fleetbot-link                      # primary account, QR code
    fleetbot-link --fleet alice        # fleet/alice, QR code
    fleetbot-link --code 391234567890  # pairing code instead of QR
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import io
import sys
from pathlib import Path

import qrcode
from neonize.aioze import client as neonize_client
from neonize.aioze import events as neonize_events
from neonize.aioze.client import NewAClient
from neonize.events import ConnectedEv, ConnectFailureEv, LoggedOutEv, PairStatusEv

from fleetbot.config import get_settings


def print_qr(qr_data: bytes | str) -> None:
    """Render a QR payload as terminal blocks."""
    qr = qrcode.QRCode(border=1)
    qr.add_data(qr_data)
    qr.make()
    buf = io.StringIO()
    qr.print_ascii(out=buf, invert=True)
    print(buf.getvalue(), flush=True)


async def link_account(auth_dir: Path, *, phone: str | None = None) -> int:
    """Link a WhatsApp account into ``auth_dir``. Returns a process exit code."""
    # Neonize keeps module-level loop references; patch both modules so events
    # and internal tasks bind to this running loop.
    loop = asyncio.get_running_loop()
    neonize_events.event_global_loop = loop
    neonize_client.event_global_loop = loop

    auth_dir.mkdir(parents=True, exist_ok=True)
    creds = auth_dir / get_settings().sessions.credentials_file
    client = NewAClient(str(creds))

    if await client.is_logged_in:
        print(f"[OK] Already linked ({creds})")
        print("     Delete the credential store to force re-linking.")
        return 0

    print("Linking WhatsApp account...")
    print("  1. Open WhatsApp on your phone")
    print("  2. Tap Settings -> Linked Devices -> Link a Device")
    print("  3. Scan the QR code below, or choose 'Link with phone number instead'")
    print()

    done = asyncio.Event()
    exit_code = 0

    @client.event.qr
    async def on_qr(_client: NewAClient, qr_data: bytes) -> None:
        if phone is None:
            print_qr(qr_data)

    @client.event(ConnectedEv)
    async def on_connected(_client: NewAClient, _ev: ConnectedEv) -> None:
        print()
        print("[OK] Linked")
        print(f"     Credentials saved to {creds}")
        done.set()

    @client.event(PairStatusEv)
    async def on_pair_status(_client: NewAClient, ev: PairStatusEv) -> None:
        print(f"  Paired as {ev.ID.User}")

    @client.event(LoggedOutEv)
    async def on_logged_out(_client: NewAClient, _ev: LoggedOutEv) -> None:
        nonlocal exit_code
        print()
        print("[ERROR] Logged out. Delete the credential store and try again.")
        exit_code = 1
        done.set()

    @client.event(ConnectFailureEv)
    async def on_connect_failure(_client: NewAClient, _ev: ConnectFailureEv) -> None:
        nonlocal exit_code
        print()
        print("[ERROR] Connection failed. Please try again.")
        exit_code = 1
        done.set()

    await client.connect()
    idle_task = asyncio.ensure_future(client.idle())
    if phone is not None:
        code = await client.PairPhone(phone, True)
        print(f"Pairing code: {code}", flush=True)
    await done.wait()

    idle_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await idle_task
    return exit_code


def main() -> None:
    parser = argparse.ArgumentParser(prog="fleetbot-link", description="Link a WhatsApp account")
    parser.add_argument("--fleet", metavar="NAME", help="link a fleet account under fleet/NAME")
    parser.add_argument("--code", metavar="PHONE", help="use a pairing code for this number")
    args = parser.parse_args()

    s = get_settings()
    auth_dir = s.fleet_dir / args.fleet if args.fleet else s.auth_dir
    try:
        sys.exit(asyncio.run(link_account(auth_dir, phone=args.code)))
    except KeyboardInterrupt:
        print()
        print("Linking cancelled.")
        sys.exit(1)


if __name__ == "__main__":
    main()
