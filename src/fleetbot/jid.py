"""JID normalization.

WhatsApp addresses arrive in several shapes for the same account: with a
device suffix (``123:4@s.whatsapp.net``) or as a linked-id (``123@lid``).
Every comparison in the runtime goes through ``JidDecoder.decode`` so that
owners, admins and ledger keys line up.
"""

from __future__ import annotations

from fleetbot.utils import TTLCache

USER_SERVER = "s.whatsapp.net"
GROUP_SERVER = "g.us"


def _decode(jid: str) -> str:
    if not jid:
        return jid
    if "@" not in jid:
        digits = "".join(ch for ch in jid if ch.isdigit())
        return f"{digits}@{USER_SERVER}" if digits else jid
    user, server = jid.split("@", 1)
    user = user.split(":", 1)[0]
    if server == "lid":
        server = USER_SERVER
    return f"{user}@{server}"


class JidDecoder:
    """Cached ``decode``; one instance per pipeline."""

    def __init__(self, ttl: float = 600.0, max_size: int = 1000) -> None:
        self._cache: TTLCache[str, str] = TTLCache(ttl, max_size)

    def decode(self, jid: str | None) -> str:
        if not jid:
            return ""
        cached = self._cache.get(jid)
        if cached is not None:
            return cached
        decoded = _decode(jid)
        self._cache.set(jid, decoded)
        return decoded


def number_of(jid: str) -> str:
    """The phone-number part of a user JID."""
    return jid.split("@", 1)[0].split(":", 1)[0]


def user_jid(number: str) -> str:
    return _decode(number)
