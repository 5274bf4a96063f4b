"""Guard chain applied to the matched plugin before its body runs.

Checks run in a fixed order and the first failure wins, so a sender missing
several requirements always gets the same rejection.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fleetbot.errors import GuardKind
from fleetbot.permissions import PermissionFlags
from fleetbot.plugins.module import PluginModule


@dataclass(frozen=True)
class GuardInput:
    flags: PermissionFlags
    is_group: bool
    user: dict[str, Any]
    chat: dict[str, Any]
    exp: int  # what the plugin would award
    exp_ceiling: int


def first_failure(plugin: PluginModule, g: GuardInput) -> GuardKind | None:
    """The first guard ``plugin`` fails for this sender, or None if it may run."""
    f = g.flags
    req = plugin.requires

    if (g.chat.get("banned") or g.user.get("banned")) and not f.is_rowner:
        return GuardKind.BANNED
    if g.is_group and g.chat.get("admin_only") and not (f.is_admin or f.is_owner):
        return GuardKind.ADMIN_MODE

    if req.rowner and req.owner and not (f.is_rowner or f.is_owner):
        return GuardKind.OWNER
    if req.rowner and not f.is_rowner:
        return GuardKind.ROWNER
    if req.owner and not f.is_owner:
        return GuardKind.OWNER
    if req.mods and not f.is_mods:
        return GuardKind.MODS
    if req.premium and not f.is_prems:
        return GuardKind.PREMIUM

    if req.group and not g.is_group:
        return GuardKind.GROUP
    if req.bot_admin and not f.is_bot_admin:
        return GuardKind.BOT_ADMIN
    if req.admin and not f.is_admin:
        return GuardKind.ADMIN
    if req.private and g.is_group:
        return GuardKind.PRIVATE
    if req.register and not g.user.get("registered"):
        return GuardKind.UNREG

    if g.exp > g.exp_ceiling:
        return GuardKind.EXP_CEILING
    if plugin.money and g.user.get("money", 0) < plugin.money:
        return GuardKind.MONEY
    if plugin.limit and not f.is_prems and g.user.get("limit", 0) < plugin.limit:
        return GuardKind.LIMIT
    if plugin.level > g.user.get("level", 0):
        return GuardKind.LEVEL
    return None
