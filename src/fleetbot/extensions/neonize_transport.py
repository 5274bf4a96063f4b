"""Built-in extension providing the neonize WhatsApp transport."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from fleetbot.extensions import hookimpl


class NeonizeTransportExtension:
    @hookimpl
    def fleetbot_create_transport(
        self,
        account_id: str,
        auth_dir: Path,
        chats: dict[str, Any],
        settings: Any,
    ) -> Any | None:
        # Imported lazily: neonize loads its Go shared library on import
        from fleetbot.transport.neonize import NeonizeTransport

        runtime = settings.runtime
        # Interactive linking only applies to the primary account
        primary = account_id == "primary"
        return NeonizeTransport(
            account_id,
            auth_dir,
            chats,
            credentials_file=settings.sessions.credentials_file,
            pairing=runtime.pairing if primary else None,
            pairing_number=runtime.pairing_number if primary else None,
        )
