"""Secondary event handlers bound to every session.

This module is the hot-reloadable handler code: ``Supervisor.reload``
re-imports it from source and rebinds sessions to the new functions. Keep
module-level state out of it; everything it needs arrives as arguments.

Each handler takes ``(pipeline, transport, payload)``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fleetbot.i18n import fill
from fleetbot.jid import number_of
from fleetbot.logger import logger
from fleetbot.types import CallOffer, DeleteNotice, GroupUpdate, InboundMessage, ParticipantsUpdate

if TYPE_CHECKING:
    from fleetbot.dispatch.pipeline import DispatchPipeline
    from fleetbot.transport.base import Transport


async def on_message(pipeline: DispatchPipeline, transport: Transport, msg: InboundMessage) -> None:
    msg.account_id = transport.account_id
    await pipeline.handle(msg)


async def on_participants_update(
    pipeline: DispatchPipeline,
    transport: Transport,
    update: ParticipantsUpdate,
) -> None:
    pipeline.metadata.invalidate(update.chat)
    chat = pipeline.store.chats.get(update.chat) or {}
    t = pipeline.translator
    lang = t.language_for(None, chat)

    match update.action:
        case "add" | "remove":
            if not chat.get("welcome"):
                return
            template = chat.get("s_welcome") if update.action == "add" else chat.get("s_bye")
            key = "group.welcome" if update.action == "add" else "group.bye"
        case "promote" | "demote":
            if not chat.get("detect", True):
                return
            template = None
            key = "group.promote" if update.action == "promote" else "group.demote"
        case _:
            logger.debug("Unhandled participants action", action=update.action)
            return

    meta = await pipeline.metadata.get(update.chat, transport.group_metadata)
    subject = meta.subject or t.text("group.unnamed", lang)
    for user in update.participants:
        values = {"user": number_of(user), "subject": subject}
        text = fill(template, **values) if template else t.text(key, lang, **values)
        await transport.send_message(update.chat, text, mentions=[user])


async def on_groups_update(
    pipeline: DispatchPipeline,
    transport: Transport,
    update: GroupUpdate,
) -> None:
    pipeline.metadata.invalidate(update.id)
    chat = pipeline.store.chats.get(update.id) or {}
    if not chat.get("detect", True):
        return

    keys: list[str] = []
    if update.desc is not None:
        keys.append("group.desc")
    if update.icon_changed:
        keys.append("group.icon")
    if update.revoke:
        keys.append("group.revoke")
    if update.announce is not None:
        keys.append("group.announce_on" if update.announce else "group.announce_off")
    if update.restrict is not None:
        keys.append("group.restrict_on" if update.restrict else "group.restrict_off")

    t = pipeline.translator
    lang = t.language_for(None, chat)
    lines = [t.text(key, lang) for key in keys]
    if update.subject is not None:
        lines.insert(0, t.text("group.subject", lang, subject=update.subject))
    if lines:
        await transport.send_message(update.id, "\n".join(lines))


async def on_message_delete(
    pipeline: DispatchPipeline,
    transport: Transport,
    notice: DeleteNotice,
) -> None:
    chat = pipeline.store.chats.get(notice.chat) or {}
    if not chat.get("antidelete"):
        return
    remembered = (pipeline.store.msgs.get(notice.chat) or {}).get(notice.id)
    if not remembered or remembered.get("from_me") or not remembered.get("text"):
        return
    sender = remembered["sender"]
    t = pipeline.translator
    lang = t.language_for(pipeline.store.users.get(sender), chat)
    await transport.send_message(
        notice.chat,
        t.text("antidelete.notice", lang, user=number_of(sender), text=remembered["text"]),
        mentions=[sender],
    )


async def on_call(pipeline: DispatchPipeline, transport: Transport, call: CallOffer) -> None:
    bot_id = pipeline.decoder.decode(transport.user_jid) or transport.account_id
    bot_settings = pipeline.store.settings.get(bot_id) or {}
    if not bot_settings.get("anti_call") or call.is_group:
        return
    caller = pipeline.decoder.decode(call.caller)
    flags = pipeline.resolver.sender_flags(caller, from_me=False, bot_jid=transport.user_jid)
    if flags.is_owner:
        return
    logger.info("Blocking caller", caller=caller, account=transport.account_id)
    t = pipeline.translator
    lang = t.language_for(pipeline.store.users.get(caller))
    await transport.send_message(
        caller,
        t.text("call.blocked", lang, user=number_of(caller)),
        mentions=[caller],
    )
    await transport.update_block_status(caller, "block")
