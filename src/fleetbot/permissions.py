"""Permission flags and cached group metadata.

Owner/moderator/premium flags come from configuration and the user's
record. Group flags (admin, bot admin, super admin) come from group metadata,
fetched through the transport at most once per TTL per chat. A failed fetch
degrades to empty metadata so every group flag is simply false.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from fleetbot.config import Settings
from fleetbot.jid import JidDecoder, number_of
from fleetbot.logger import logger
from fleetbot.types import GroupMetadata, InboundMessage
from fleetbot.utils import TTLCache

type MetadataFetcher = Callable[[str], Awaitable[GroupMetadata]]


@dataclass(frozen=True)
class PermissionFlags:
    is_rowner: bool = False
    is_owner: bool = False
    is_mods: bool = False
    is_prems: bool = False
    is_admin: bool = False
    is_bot_admin: bool = False
    is_super_admin: bool = False


class GroupMetadataCache:
    def __init__(
        self,
        ttl: float = 300.0,
        max_size: int = 500,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cache: TTLCache[str, GroupMetadata] = TTLCache(ttl, max_size, clock=clock)

    async def get(self, chat: str, fetch: MetadataFetcher) -> GroupMetadata:
        cached = self._cache.get(chat)
        if cached is not None:
            return cached
        try:
            meta = await fetch(chat)
        except Exception as exc:
            logger.debug("Group metadata fetch failed", chat=chat, error=str(exc))
            return GroupMetadata.empty(chat)
        self._cache.set(chat, meta)
        return meta

    def invalidate(self, chat: str) -> None:
        self._cache.invalidate(chat)

    def clear(self) -> None:
        self._cache.clear()


class PermissionResolver:
    def __init__(
        self,
        settings: Settings,
        decoder: JidDecoder,
        metadata: GroupMetadataCache,
    ) -> None:
        self._settings = settings
        self.decoder = decoder
        self.metadata = metadata

    def sender_flags(
        self,
        sender: str,
        *,
        from_me: bool,
        bot_jid: str,
        user: dict[str, Any] | None = None,
    ) -> PermissionFlags:
        """Flags that do not depend on the chat."""
        s = self._settings
        number = number_of(self.decoder.decode(sender))
        bot_number = number_of(self.decoder.decode(bot_jid)) if bot_jid else ""
        is_rowner = bool(number) and (number == bot_number or s.is_real_owner(number))
        is_owner = is_rowner or from_me
        is_mods = is_owner or s.is_mod(number)
        is_prems = is_rowner or s.is_prem(number) or bool(user and user.get("premium"))
        return PermissionFlags(
            is_rowner=is_rowner,
            is_owner=is_owner,
            is_mods=is_mods,
            is_prems=is_prems,
        )

    async def resolve(
        self,
        msg: InboundMessage,
        *,
        bot_jid: str,
        fetch: MetadataFetcher,
        user: dict[str, Any] | None = None,
    ) -> tuple[PermissionFlags, GroupMetadata | None]:
        """All flags for ``msg``; group metadata is returned for group chats only."""
        flags = self.sender_flags(msg.sender, from_me=msg.from_me, bot_jid=bot_jid, user=user)
        if not msg.is_group:
            return flags, None

        meta = await self.metadata.get(msg.chat, fetch)
        sender = self.decoder.decode(msg.sender)
        me = self.decoder.decode(bot_jid)
        sender_role: str | None = None
        bot_role: str | None = None
        for p in meta.participants:
            pid = self.decoder.decode(p.id)
            if pid == sender:
                sender_role = p.admin
            if pid == me:
                bot_role = p.admin

        is_super_admin = sender_role == "superadmin"
        return (
            PermissionFlags(
                is_rowner=flags.is_rowner,
                is_owner=flags.is_owner,
                is_mods=flags.is_mods,
                is_prems=flags.is_prems,
                is_admin=is_super_admin or sender_role == "admin",
                is_bot_admin=bot_role in ("admin", "superadmin"),
                is_super_admin=is_super_admin,
            ),
            meta,
        )
