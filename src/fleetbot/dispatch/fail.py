"""Default notices for guard rejections."""

from __future__ import annotations

from fleetbot.errors import GuardKind
from fleetbot.i18n import Translator

# Rejections that are not announced in the chat
SILENT = frozenset({GuardKind.BANNED, GuardKind.ADMIN_MODE})


def notice_key(kind: GuardKind) -> str:
    return f"guard.{kind.value}"


def notice_for(kind: GuardKind, translator: Translator, lang: str | None = None) -> str | None:
    """Text to send for ``kind`` in ``lang``, or None when the rejection is silent."""
    if kind in SILENT:
        return None
    return translator.text(notice_key(kind), lang)
