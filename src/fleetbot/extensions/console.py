"""Built-in presenter: one structured log line per processed message."""

from __future__ import annotations

from typing import Any

from fleetbot.extensions import hookimpl
from fleetbot.logger import logger


class ConsolePresenterExtension:
    @hookimpl
    def fleetbot_present_message(self, msg: Any, account_id: str, plugin: str | None) -> None:
        text = msg.text if len(msg.text) <= 120 else msg.text[:119] + "…"
        fields: dict[str, Any] = {
            "account": account_id,
            "chat": msg.chat,
            "sender": msg.sender,
            "name": msg.push_name or None,
            "text": text,
        }
        if plugin:
            fields["plugin"] = plugin
            fields["exp"] = msg.exp
        if msg.error is not None:
            logger.warning("Command failed", error=str(msg.error), **fields)
        elif plugin:
            logger.info("Command", **fields)
        else:
            logger.debug("Message", **fields)
