"""Per-user, per-chat and per-plugin counters kept in the document store."""

from __future__ import annotations

import copy
import time
from typing import Any

from fleetbot.state.store import DocumentStore
from fleetbot.types import (
    BOT_SETTINGS_DEFAULTS,
    CHAT_DEFAULTS,
    USAGE_DEFAULTS,
    USER_DEFAULTS,
    InboundMessage,
)


def _ensure(collection: dict[str, Any], key: str, defaults: dict[str, Any]) -> dict[str, Any]:
    record = collection.get(key)
    if not isinstance(record, dict):
        record = collection[key] = {}
    for field, default in defaults.items():
        if field not in record:
            record[field] = copy.deepcopy(default)
    return record


def ensure_records(
    store: DocumentStore,
    *,
    sender: str,
    chat: str,
    bot_id: str,
    name: str = "",
) -> tuple[dict[str, Any], dict[str, Any], dict[str, Any]]:
    """Create missing user/chat/bot-settings records. Existing fields are never touched."""
    user = _ensure(store.users, sender, USER_DEFAULTS)
    if name and not user.get("name"):
        user["name"] = name
    chat_record = _ensure(store.chats, chat, CHAT_DEFAULTS)
    bot_settings = _ensure(store.settings, bot_id, BOT_SETTINGS_DEFAULTS)
    return user, chat_record, bot_settings


def settle(
    user: dict[str, Any],
    chat: dict[str, Any] | None,
    msg: InboundMessage,
    *,
    premium: bool,
) -> None:
    """Apply the message's earned exp and costs, and count it.

    Guards already refused plugins the sender cannot afford, so clamping at
    zero only matters for records edited while the plugin ran.
    """
    user["exp"] = user.get("exp", 0) + msg.exp
    if msg.money:
        user["money"] = max(0, user.get("money", 0) - msg.money)
    if msg.limit and not premium:
        user["limit"] = max(0, user.get("limit", 0) - msg.limit)
    user["messaggi"] = user.get("messaggi", 0) + 1
    if chat is not None:
        chat["messaggi"] = chat.get("messaggi", 0) + 1


def record_usage(
    stats: dict[str, Any],
    plugin: str,
    *,
    success: bool,
    now_ms: int | None = None,
) -> dict[str, Any]:
    now = now_ms if now_ms is not None else int(time.time() * 1000)
    stat = _ensure(stats, plugin, USAGE_DEFAULTS)
    stat["total"] += 1
    stat["last"] = now
    if success:
        stat["success"] += 1
        stat["last_success"] = now
    return stat
