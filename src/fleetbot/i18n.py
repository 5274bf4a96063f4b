"""User-facing text in more than one language.

Every notice the bot writes on its own (guard rejections, group events,
antidelete, anti-call, anti-spam) is looked up here by key. The language
for a message is the sender's ``language`` field, then the chat's, then
``bot.language``. A key missing from that language falls back to the
default language, and finally to the key itself.

Usage::

    from fleetbot.i18n import Translator

    t = Translator("en")
    lang = t.language_for(user_record, chat_record)
    t.text("group.welcome", lang, user="39123", subject="Friends")
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from fleetbot.logger import logger

CATALOGUE: dict[str, dict[str, str]] = {
    "en": {
        # Guard rejections, keyed by GuardKind value
        "guard.rowner": "🔒 Only the bot's creator can use this command.",
        "guard.owner": "🔒 Only the bot owners can use this command.",
        "guard.mods": "🛡️ Only moderators can use this command.",
        "guard.premium": "💎 This command is for premium users.",
        "guard.group": "👥 This command only works in groups.",
        "guard.private": "💬 This command only works in private chat.",
        "guard.admin": "👑 Only group admins can use this command.",
        "guard.botAdmin": "🤖 Make the bot an admin first.",
        "guard.unreg": "📝 Register first to use this command.",
        "guard.exp_ceiling": "⚠️ This command awards too much exp and has been blocked.",
        "guard.money": "💰 You don't have enough money for this command.",
        "guard.limit": "📉 You ran out of limit for this command.",
        "guard.level": "⭐ Your level is too low for this command.",
        "spam.suspended": (
            "⚠️ @{user} is sending commands too fast. "
            "Commands in this chat are paused for {seconds}s."
        ),
        "group.welcome": "👋 Welcome @{user} to *{subject}*!",
        "group.bye": "👋 @{user} left the group.",
        "group.promote": "👑 @{user} is now an admin.",
        "group.demote": "📉 @{user} is no longer an admin.",
        "group.unnamed": "this group",
        "group.subject": "✏️ Group name changed to *{subject}*",
        "group.desc": "📝 Group description updated",
        "group.icon": "🖼️ Group icon changed",
        "group.revoke": "🔗 Invite link was reset",
        "group.announce_on": "🔒 Only admins can send messages now",
        "group.announce_off": "🔓 Everyone can send messages now",
        "group.restrict_on": "⚙️ Only admins can edit group info now",
        "group.restrict_off": "⚙️ Everyone can edit group info now",
        "antidelete.notice": "🗑️ @{user} deleted a message:\n\n{text}",
        "call.blocked": "📵 @{user} calls are not allowed. You have been blocked.",
        "language.current": "🌐 Language: *{language}*. Available: {languages}",
        "language.set": "🌐 Language set to *{language}*.",
        "language.unknown": "❌ Unknown language. Available: {languages}",
    },
    "it": {
        "guard.rowner": "🔒 Solo il creatore del bot può usare questo comando.",
        "guard.owner": "🔒 Solo i proprietari del bot possono usare questo comando.",
        "guard.mods": "🛡️ Solo i moderatori possono usare questo comando.",
        "guard.premium": "💎 Questo comando è riservato agli utenti premium.",
        "guard.group": "👥 Questo comando funziona solo nei gruppi.",
        "guard.private": "💬 Questo comando funziona solo in privato.",
        "guard.admin": "👑 Solo gli admin del gruppo possono usare questo comando.",
        "guard.botAdmin": "🤖 Prima rendi admin il bot.",
        "guard.unreg": "📝 Registrati per usare questo comando.",
        "guard.exp_ceiling": "⚠️ Questo comando assegna troppa exp ed è stato bloccato.",
        "guard.money": "💰 Non hai abbastanza soldi per questo comando.",
        "guard.limit": "📉 Hai esaurito il limite per questo comando.",
        "guard.level": "⭐ Il tuo livello è troppo basso per questo comando.",
        "spam.suspended": (
            "⚠️ @{user} sta inviando comandi troppo velocemente. "
            "I comandi in questa chat sono sospesi per {seconds}s."
        ),
        "group.welcome": "👋 Benvenuto @{user} in *{subject}*!",
        "group.bye": "👋 @{user} ha lasciato il gruppo.",
        "group.promote": "👑 @{user} ora è admin.",
        "group.demote": "📉 @{user} non è più admin.",
        "group.unnamed": "questo gruppo",
        "group.subject": "✏️ Nome del gruppo cambiato in *{subject}*",
        "group.desc": "📝 Descrizione del gruppo aggiornata",
        "group.icon": "🖼️ Immagine del gruppo cambiata",
        "group.revoke": "🔗 Il link d'invito è stato reimpostato",
        "group.announce_on": "🔒 Ora solo gli admin possono scrivere",
        "group.announce_off": "🔓 Ora tutti possono scrivere",
        "group.restrict_on": "⚙️ Ora solo gli admin possono modificare le info del gruppo",
        "group.restrict_off": "⚙️ Ora tutti possono modificare le info del gruppo",
        "antidelete.notice": "🗑️ @{user} ha eliminato un messaggio:\n\n{text}",
        "call.blocked": "📵 @{user} le chiamate non sono consentite. Sei stato bloccato.",
        "language.current": "🌐 Lingua: *{language}*. Disponibili: {languages}",
        "language.set": "🌐 Lingua impostata su *{language}*.",
        "language.unknown": "❌ Lingua sconosciuta. Disponibili: {languages}",
    },
}

LANGUAGES = frozenset(CATALOGUE)


class _KeepMissing(dict[str, Any]):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def fill(template: str, **values: Any) -> str:
    """Substitute ``{name}`` placeholders. Unknown names are left as written."""
    try:
        return template.format_map(_KeepMissing(values))
    except (ValueError, IndexError, AttributeError) as exc:
        # Stray braces in a chat-supplied template
        logger.debug("Template not formatted", error=str(exc))
        return template


class Translator:
    def __init__(
        self,
        default: str = "en",
        catalogue: Mapping[str, Mapping[str, str]] = CATALOGUE,
    ) -> None:
        if default not in catalogue:
            raise ValueError(f"unknown default language: {default!r}")
        self.default = default
        self._catalogue = catalogue

    @property
    def languages(self) -> list[str]:
        return sorted(self._catalogue)

    def supports(self, lang: str | None) -> bool:
        return isinstance(lang, str) and lang in self._catalogue

    def language_for(
        self,
        user: Mapping[str, Any] | None = None,
        chat: Mapping[str, Any] | None = None,
    ) -> str:
        """The sender's language, else the chat's, else the default."""
        for record in (user, chat):
            lang = record.get("language") if record else None
            if self.supports(lang):
                return lang
        return self.default

    def text(self, key: str, lang: str | None = None, /, **values: Any) -> str:
        template = self._catalogue.get(lang or self.default, {}).get(key)
        if template is None:
            template = self._catalogue[self.default].get(key)
        if template is None:
            logger.debug("Missing text", key=key, language=lang)
            return key
        return fill(template, **values)

    def set_language(self, record: dict[str, Any], lang: str) -> bool:
        """Store ``lang`` on a user or chat record. False if it is not available."""
        lang = lang.strip().lower()
        if not self.supports(lang):
            return False
        record["language"] = lang
        return True
