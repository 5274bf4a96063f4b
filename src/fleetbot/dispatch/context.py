"""What a plugin hook receives alongside the message."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from fleetbot.dispatch.prefix import ParsedCommand
from fleetbot.i18n import Translator
from fleetbot.permissions import PermissionFlags
from fleetbot.system_checks import ToolSupport
from fleetbot.types import GroupMetadata, InboundMessage

if TYPE_CHECKING:
    from fleetbot.config import Settings
    from fleetbot.plugins.module import PluginModule
    from fleetbot.plugins.registry import PluginRegistry
    from fleetbot.state.store import DocumentStore
    from fleetbot.transport.base import Transport


@dataclass
class HandlerContext:
    """Per-message view handed to ``all``/``before``/``handler``/``after``/``fail``.

    Built fresh for every message; the transport is the one that delivered
    the message, looked up by account id when dispatch started.
    """

    account_id: str
    transport: Transport
    store: DocumentStore
    settings: Settings
    registry: PluginRegistry
    flags: PermissionFlags
    user: dict[str, Any]
    chat: dict[str, Any]
    bot_settings: dict[str, Any]
    group_metadata: GroupMetadata | None = None
    parsed: ParsedCommand | None = None
    plugin: PluginModule | None = None
    secrets: Mapping[str, str] = field(default_factory=dict)
    translator: Translator = field(default_factory=Translator)
    language: str = "en"
    support: ToolSupport = field(default_factory=ToolSupport)

    # --- Parsed command ---

    @property
    def command(self) -> str:
        return self.parsed.command if self.parsed else ""

    @property
    def args(self) -> list[str]:
        return self.parsed.args if self.parsed else []

    @property
    def text(self) -> str:
        return self.parsed.text if self.parsed else ""

    @property
    def used_prefix(self) -> str:
        return self.parsed.prefix if self.parsed else ""

    # --- Permission shortcuts ---

    @property
    def is_owner(self) -> bool:
        return self.flags.is_owner

    @property
    def is_admin(self) -> bool:
        return self.flags.is_admin

    @property
    def is_bot_admin(self) -> bool:
        return self.flags.is_bot_admin

    @property
    def participants(self) -> list[Any]:
        return self.group_metadata.participants if self.group_metadata else []

    # --- Helpers ---

    def t(self, key: str, **values: Any) -> str:
        """Catalogue text for ``key`` in this message's language."""
        return self.translator.text(key, self.language, **values)

    async def reply(self, msg: InboundMessage, text: str, **kwargs: Any) -> Any:
        """Send ``text`` to the message's chat, quoting it."""
        return await self.transport.send_message(msg.chat, text, quoted=msg.raw, **kwargs)

    async def send(self, chat: str, text: str, **kwargs: Any) -> Any:
        return await self.transport.send_message(chat, text, **kwargs)
