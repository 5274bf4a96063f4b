"""Message dispatch pipeline.

Turns one inbound message into at most one plugin execution plus
bookkeeping. The pipeline owns the mutable runtime state shared by all
sessions (anti-spam windows, metadata caches, the command queue) and looks
sessions up by account id for every message; it never keeps a session.

Order of work for each message:

1. remember it (best effort, for antidelete)
2. drop ignored senders
3. anti-spam gate (group commands from non-owners)
4. normalize: base exp award, echo detection
5. ensure user/chat/bot-settings records
6. permission flags and group metadata
7. phase 1 hooks: ``all`` then ``before`` for every plugin, in name order;
   afterwards echoes and runtime mode filters stop the message
8. phase 2: the first plugin (name order) whose matcher accepts the command
9. guard chain on that plugin
10. run its body; errors are redacted and replied to the chat
11. ``after``
12. bookkeeping: queue release, mute enforcement, ledger, usage stats,
    presenter hook, auto-read
"""

from __future__ import annotations

import random
import re
from collections.abc import Callable
from dataclasses import replace
from typing import Any, Protocol

from fleetbot.antispam import AntiSpam, SpamVerdict
from fleetbot.config import Settings
from fleetbot.dispatch.context import HandlerContext
from fleetbot.dispatch.fail import notice_for
from fleetbot.dispatch.guards import GuardInput, first_failure
from fleetbot.dispatch.prefix import (
    PrefixRule,
    build_prefix,
    effective_prefix,
    match_prefix,
    parse_command,
)
from fleetbot.dispatch.queue import CommandQueue
from fleetbot.errors import GuardKind, GuardRejection, PluginExecutionError
from fleetbot.i18n import Translator
from fleetbot.jid import JidDecoder, number_of
from fleetbot.ledger import ensure_records, record_usage, settle
from fleetbot.logger import logger
from fleetbot.permissions import GroupMetadataCache, PermissionFlags, PermissionResolver
from fleetbot.plugins.module import PluginModule, matches
from fleetbot.plugins.registry import PluginRegistry
from fleetbot.state.store import DocumentStore
from fleetbot.system_checks import ToolSupport
from fleetbot.transport.base import Transport
from fleetbot.types import InboundMessage
from fleetbot.utils import maybe_await, redact

# Message ids generated by WhatsApp client libraries (our own sends echo back)
_ECHO_ID = re.compile(r"^(?:3EB0[0-9A-F]{18}|BAE5[0-9A-F]{12})$")


class SessionView(Protocol):
    """What the pipeline needs from a live session."""

    transport: Transport
    prefix: PrefixRule | None


type SessionLookup = Callable[[str], SessionView | None]
type Presenter = Callable[..., Any]


class DispatchPipeline:
    def __init__(
        self,
        settings: Settings,
        store: DocumentStore,
        registry: PluginRegistry,
        lookup: SessionLookup,
        *,
        presenter: Presenter | None = None,
        antispam: AntiSpam | None = None,
        resolver: PermissionResolver | None = None,
        rng: random.Random | None = None,
        support: ToolSupport | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.registry = registry
        self._lookup = lookup
        self._present = presenter
        self._rng = rng or random.Random()
        self.antispam = antispam or AntiSpam(
            settings.antispam.window_seconds,
            settings.antispam.threshold,
            settings.antispam.suspension_seconds,
        )
        self.resolver = resolver or PermissionResolver(
            settings,
            JidDecoder(settings.cache.jid_ttl, settings.cache.jid_max),
            GroupMetadataCache(
                settings.cache.group_metadata_ttl, settings.cache.group_metadata_max
            ),
        )
        self.queue = CommandQueue()
        self.translator = Translator(settings.bot.language)
        self.support = support or ToolSupport()
        self.global_prefix: PrefixRule = build_prefix(settings.bot.prefix)
        self._secrets = settings.secret_values
        self._secret_map = {
            name: value.get_secret_value() for name, value in settings.secrets.api_keys.items()
        }

    @property
    def decoder(self) -> JidDecoder:
        return self.resolver.decoder

    @property
    def metadata(self) -> GroupMetadataCache:
        return self.resolver.metadata

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def handle(self, msg: InboundMessage) -> None:
        session = self._lookup(msg.account_id)
        if session is None:
            logger.debug("Message for unknown session dropped", account=msg.account_id)
            return
        transport = session.transport
        s = self.settings

        msg.sender = self.decoder.decode(msg.sender)
        msg.text = msg.text or ""
        self._remember(msg)

        bot_jid = transport.user_jid
        bot_id = self.decoder.decode(bot_jid) or msg.account_id
        if self._is_ignored(msg, bot_id):
            return

        if msg.is_group and not msg.from_me and msg.text:
            if not await self._spam_gate(msg, session, bot_jid):
                return

        msg.exp = self._rng.randint(1, 10)
        msg.is_echo = bool(_ECHO_ID.match(msg.id))

        user, chat, bot_settings = ensure_records(
            self.store,
            sender=msg.sender,
            chat=msg.chat,
            bot_id=bot_id,
            name=msg.push_name,
        )
        flags = self.resolver.sender_flags(
            msg.sender, from_me=msg.from_me, bot_jid=bot_jid, user=user
        )
        token: str | None = None
        succeeded = False
        try:
            flags, meta = await self.resolver.resolve(
                msg, bot_jid=bot_jid, fetch=transport.group_metadata, user=user
            )
            ctx = HandlerContext(
                account_id=msg.account_id,
                transport=transport,
                store=self.store,
                settings=s,
                registry=self.registry,
                flags=flags,
                user=user,
                chat=chat,
                bot_settings=bot_settings,
                group_metadata=meta,
                secrets=self._secret_map,
                translator=self.translator,
                language=self.translator.language_for(user, chat),
                support=self.support,
            )
            plugins = self.registry.plugins
            restrict = s.runtime.restrict or bool(bot_settings.get("restrict"))
            await self._phase_one(plugins, msg, ctx, session.prefix, restrict=restrict)

            if msg.is_echo or not self._mode_allows(msg, flags):
                return
            if s.runtime.queque and msg.text and not (flags.is_mods or flags.is_prems):
                key = f"{msg.account_id}:{msg.id}"
                if key in self.queue:
                    logger.debug("Duplicate delivery dropped", account=msg.account_id, id=msg.id)
                    return
                await self.queue.acquire(key)
                token = key

            succeeded = await self._phase_two(plugins, msg, ctx, session.prefix)
        finally:
            if token is not None:
                self.queue.release(token)
            await self._bookkeeping(msg, transport, user, chat, bot_settings, flags, succeeded)

    # ------------------------------------------------------------------
    # Steps before the plugin loop
    # ------------------------------------------------------------------

    def _remember(self, msg: InboundMessage) -> None:
        try:
            per_chat = self.store.msgs.setdefault(msg.chat, {})
            per_chat[msg.id] = {
                "sender": msg.sender,
                "text": msg.text,
                "timestamp": msg.timestamp,
                "from_me": msg.from_me,
            }
            overflow = len(per_chat) - self.settings.bot.remembered_messages
            for old in list(per_chat)[: max(0, overflow)]:
                del per_chat[old]
        except Exception as exc:
            logger.warning("Failed to remember message", chat=msg.chat, error=str(exc))

    def _is_ignored(self, msg: InboundMessage, bot_id: str) -> bool:
        bot_settings = self.store.settings.get(bot_id) or {}
        chat = self.store.chats.get(msg.chat) or {}
        return msg.sender in (bot_settings.get("ignored") or ()) or msg.sender in (
            chat.get("ignored") or ()
        )

    async def _spam_gate(self, msg: InboundMessage, session: SessionView, bot_jid: str) -> bool:
        """False when the anti-spam limiter drops the message."""
        chat = self.store.chats.get(msg.chat) or {}
        if not chat.get("antispam", True):
            return True
        rule = effective_prefix(None, session.prefix, self.global_prefix)
        if match_prefix(msg.text, rule) is None:
            return True
        flags = self.resolver.sender_flags(msg.sender, from_me=msg.from_me, bot_jid=bot_jid)
        if flags.is_owner:
            return True

        verdict = self.antispam.check(msg.chat)
        if verdict is SpamVerdict.ALLOW:
            return True
        if verdict is SpamVerdict.SUSPENDED:
            seconds = int(self.antispam.suspension_seconds)
            logger.info("Chat suspended for spam", chat=msg.chat, sender=msg.sender)
            try:
                await session.transport.send_message(
                    msg.chat,
                    self.translator.text(
                        "spam.suspended",
                        self.translator.language_for(self.store.users.get(msg.sender), chat),
                        user=number_of(msg.sender),
                        seconds=seconds,
                    ),
                    mentions=[msg.sender],
                )
            except Exception as exc:
                logger.warning("Failed to send spam notice", chat=msg.chat, error=str(exc))
        return False

    def _mode_allows(self, msg: InboundMessage, flags: PermissionFlags) -> bool:
        r = self.settings.runtime
        if r.nyimak:
            return False
        if r.self_only and not flags.is_owner:
            return False
        if r.pconly and msg.is_group:
            return False
        return not (r.gconly and not msg.is_group)

    # ------------------------------------------------------------------
    # Plugin phases
    # ------------------------------------------------------------------

    async def _phase_one(
        self,
        plugins: tuple[PluginModule, ...],
        msg: InboundMessage,
        ctx: HandlerContext,
        session_prefix: PrefixRule | None,
        *,
        restrict: bool,
    ) -> None:
        for plugin in plugins:
            if plugin.disabled:
                continue
            if plugin.all is not None:
                try:
                    await maybe_await(plugin.all, msg, replace(ctx, plugin=plugin))
                except Exception:
                    logger.exception("Plugin all hook failed", plugin=plugin.name)

            if plugin.before is None:
                continue
            if plugin.is_admin_tagged and not restrict:
                continue
            rule = effective_prefix(plugin.custom_prefix, session_prefix, self.global_prefix)
            plugin_ctx = replace(ctx, plugin=plugin, parsed=parse_command(msg.text, rule))
            try:
                if await maybe_await(plugin.before, msg, plugin_ctx):
                    # Truthy before ends this plugin's pre-processing only
                    continue
            except Exception:
                logger.exception("Plugin before hook failed", plugin=plugin.name)

    async def _phase_two(
        self,
        plugins: tuple[PluginModule, ...],
        msg: InboundMessage,
        ctx: HandlerContext,
        session_prefix: PrefixRule | None,
    ) -> bool:
        """Run the first matching plugin. Returns True if its body completed."""
        for plugin in plugins:
            if plugin.disabled or plugin.handler is None:
                continue
            rule = effective_prefix(plugin.custom_prefix, session_prefix, self.global_prefix)
            parsed = parse_command(msg.text, rule)
            if parsed is None or not matches(plugin.matcher, parsed.command):
                continue

            msg.plugin = plugin.name
            msg.is_command = True
            plugin_ctx = replace(ctx, plugin=plugin, parsed=parsed)
            xp = plugin.exp if plugin.exp is not None else self.settings.bot.default_exp
            kind = first_failure(
                plugin,
                GuardInput(
                    flags=ctx.flags,
                    is_group=msg.is_group,
                    user=ctx.user,
                    chat=ctx.chat,
                    exp=xp,
                    exp_ceiling=self.settings.bot.exp_ceiling,
                ),
            )
            if kind is not None:
                await self._reject(plugin, kind, msg, plugin_ctx)
                return False

            msg.exp += xp
            msg.money = plugin.money
            msg.limit = plugin.limit
            return await self._execute(plugin, msg, plugin_ctx)
        return False

    async def _reject(
        self,
        plugin: PluginModule,
        kind: GuardKind,
        msg: InboundMessage,
        ctx: HandlerContext,
    ) -> None:
        rejection = GuardRejection(kind, plugin.name)
        logger.debug(
            "Guard rejected command", plugin=plugin.name, kind=str(kind), sender=msg.sender
        )
        try:
            if plugin.fail is not None:
                await maybe_await(plugin.fail, rejection.kind, msg, ctx)
                return
            notice = notice_for(kind, ctx.translator, ctx.language)
            if notice:
                await ctx.reply(msg, notice)
        except Exception:
            logger.exception(
                "Failed to report guard rejection", plugin=plugin.name, kind=str(kind)
            )

    async def _execute(
        self, plugin: PluginModule, msg: InboundMessage, ctx: HandlerContext
    ) -> bool:
        assert plugin.handler is not None
        succeeded = False
        try:
            await maybe_await(plugin.handler, msg, ctx)
            succeeded = True
        except Exception as exc:
            text = redact(
                str(exc) or type(exc).__name__,
                self._secrets,
                self.settings.bot.redaction_marker,
            )
            msg.error = PluginExecutionError(plugin.name, exc, text)
            logger.error(
                "Plugin raised",
                plugin=plugin.name,
                chat=msg.chat,
                error_type=type(exc).__name__,
                error=text,
            )
            try:
                await ctx.reply(msg, text)
            except Exception as send_exc:
                logger.warning(
                    "Failed to report plugin error", plugin=plugin.name, error=str(send_exc)
                )

        if plugin.after is not None:
            try:
                await maybe_await(plugin.after, msg, ctx)
            except Exception:
                logger.exception("Plugin after hook failed", plugin=plugin.name)
        return succeeded

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    async def _bookkeeping(
        self,
        msg: InboundMessage,
        transport: Transport,
        user: dict[str, Any],
        chat: dict[str, Any],
        bot_settings: dict[str, Any],
        flags: PermissionFlags,
        succeeded: bool,
    ) -> None:
        if user.get("muted") and msg.is_group and not msg.from_me:
            try:
                await transport.delete_message(msg.key)
            except Exception as exc:
                logger.warning(
                    "Failed to delete muted user's message", chat=msg.chat, error=str(exc)
                )

        settle(user, chat, msg, premium=flags.is_prems)
        if msg.plugin is not None:
            record_usage(self.store.stats, msg.plugin, success=succeeded)
            if succeeded:
                user["command_uses"] = user.get("command_uses", 0) + 1

        if self._present is not None:
            try:
                self._present(msg=msg, account_id=msg.account_id, plugin=msg.plugin)
            except Exception:
                logger.exception("Presenter failed")

        if self.settings.runtime.autoread or bot_settings.get("autoread"):
            try:
                await transport.read_messages([msg.key])
            except Exception as exc:
                logger.debug("Auto-read failed", chat=msg.chat, error=str(exc))
