"""Pluggy hook specifications for fleetbot extensions.

All hooks use the "fleetbot" namespace and are validated by pluggy at
registration time.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pluggy

hookspec = pluggy.HookspecMarker("fleetbot")


class FleetbotSpec:
    """Hook specifications for fleetbot extensions."""

    @hookspec(firstresult=True)
    def fleetbot_create_transport(
        self,
        account_id: str,
        auth_dir: Path,
        chats: dict[str, Any],
        settings: Any,
    ) -> Any | None:
        """Build the transport for one account.

        The first non-None result wins. Return None to let another extension
        (normally the built-in neonize one) handle it.
        """

    @hookspec
    def fleetbot_present_message(self, msg: Any, account_id: str, plugin: str | None) -> None:
        """Observe a message after the pipeline has finished with it.

        Called once per processed message; ``msg.error`` is set when the
        plugin body raised. Exceptions are logged and ignored.
        """
