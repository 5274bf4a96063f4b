"""WhatsApp transport using neonize (whatsmeow Python bindings).

Translates neonize events into the runtime's named events
(``connection.update``, ``messages.upsert``, ...) and exposes the
primitives of ``fleetbot.transport.base.Transport``. Credentials live in the
neonize SQLite store inside the session's credential directory.
"""

from __future__ import annotations

import asyncio
import contextlib
from pathlib import Path
from typing import Any

from neonize.aioze import client as neonize_client
from neonize.aioze import events as neonize_events
from neonize.aioze.client import NewAClient
from neonize.events import (
    CallOfferEv,
    ConnectedEv,
    ConnectFailureEv,
    DisconnectedEv,
    GroupInfoEv,
    KeepAliveTimeoutEv,
    LoggedOutEv,
    MessageEv,
    PairStatusEv,
    StreamErrorEv,
    StreamReplacedEv,
)
from neonize.proto.Neonize_pb2 import JID
from neonize.utils.jid import Jid2String, build_jid

from fleetbot.errors import AuthExpired
from fleetbot.jid import JidDecoder
from fleetbot.logger import logger
from fleetbot.transport.auth import print_qr
from fleetbot.transport.base import (
    CALL,
    CONNECTION_UPDATE,
    CREDS_UPDATE,
    GROUPS_UPDATE,
    MESSAGE_DELETE,
    MESSAGES_UPSERT,
    PARTICIPANTS_UPDATE,
    TransportEvents,
)
from fleetbot.types import (
    CallOffer,
    ConnectionUpdate,
    DeleteNotice,
    DisconnectReason,
    GroupMetadata,
    GroupUpdate,
    InboundMessage,
    MessageKey,
    Participant,
    ParticipantsUpdate,
)

# whatsmeow ConnectFailureReason codes
_FAILURE_LOGGED_OUT = 401
# whatsmeow stream error asking the client to reconnect
_STREAM_RESTART = "515"
# protocolMessage type for a revoked ("deleted for everyone") message
_REVOKE = 0


def _parse_jid(jid_str: str) -> JID:
    if "@" not in jid_str:
        return build_jid(jid_str)
    user, server = jid_str.split("@", 1)
    return build_jid(user, server)


def _message_text(msg: Any) -> str:
    return (
        msg.conversation
        or msg.extendedTextMessage.text
        or msg.imageMessage.caption
        or msg.videoMessage.caption
        or ""
    )


class NeonizeTransport:
    """One neonize client for one account."""

    def __init__(
        self,
        account_id: str,
        auth_dir: Path,
        chats: dict[str, Any] | None = None,
        *,
        credentials_file: str = "creds.db",
        pairing: str | None = None,
        pairing_number: str | None = None,
    ) -> None:
        self.account_id = account_id
        self.events = TransportEvents()
        self.chats: dict[str, Any] = chats if chats is not None else {}
        self._auth_dir = auth_dir
        self._pairing = pairing
        self._pairing_number = pairing_number
        self._decoder = JidDecoder()
        self._closing = False
        self._idle_task: asyncio.Task[Any] | None = None
        self._opened: asyncio.Event = asyncio.Event()
        self._auth_required: asyncio.Event = asyncio.Event()

        loop = asyncio.get_running_loop()
        neonize_events.event_global_loop = loop
        neonize_client.event_global_loop = loop

        auth_dir.mkdir(parents=True, exist_ok=True)
        self._client = NewAClient(str(auth_dir / credentials_file))
        self._register_events()

    # --- Identity ---

    @property
    def user_jid(self) -> str:
        me = getattr(self._client, "me", None)
        jid = getattr(me, "JID", None) if me else None
        return self._decoder.decode(Jid2String(jid)) if jid else ""

    def decode_jid(self, jid: str) -> str:
        return self._decoder.decode(jid)

    # --- Event translation ---

    def _update(self, connection: str, reason: str | None = None) -> None:
        if self._closing:
            return
        self.events.emit(CONNECTION_UPDATE, ConnectionUpdate(connection=connection, reason=reason))

    def _register_events(self) -> None:
        @self._client.event(ConnectedEv)
        async def on_connected(_client: NewAClient, _ev: ConnectedEv) -> None:
            self._opened.set()
            self._update("open")

        @self._client.event(DisconnectedEv)
        async def on_disconnected(_client: NewAClient, _ev: DisconnectedEv) -> None:
            self._update("close", DisconnectReason.CONNECTION_LOST)

        @self._client.event(KeepAliveTimeoutEv)
        async def on_keepalive_timeout(_client: NewAClient, _ev: KeepAliveTimeoutEv) -> None:
            self._update("close", DisconnectReason.TIMED_OUT)

        @self._client.event(StreamReplacedEv)
        async def on_replaced(_client: NewAClient, _ev: StreamReplacedEv) -> None:
            self._update("close", DisconnectReason.CONNECTION_REPLACED)

        @self._client.event(LoggedOutEv)
        async def on_logged_out(_client: NewAClient, _ev: LoggedOutEv) -> None:
            self._update("close", DisconnectReason.LOGGED_OUT)

        @self._client.event(ConnectFailureEv)
        async def on_connect_failure(_client: NewAClient, ev: ConnectFailureEv) -> None:
            code = int(getattr(ev, "Reason", 0) or 0)
            if code == _FAILURE_LOGGED_OUT:
                reason = DisconnectReason.LOGGED_OUT
            elif code >= 500:
                reason = DisconnectReason.RESTART_REQUIRED
            else:
                reason = DisconnectReason.BAD_SESSION
            self._update("close", reason)

        @self._client.event(StreamErrorEv)
        async def on_stream_error(_client: NewAClient, ev: StreamErrorEv) -> None:
            code = str(getattr(ev, "Code", ""))
            if code == _STREAM_RESTART:
                self._update("close", DisconnectReason.RESTART_REQUIRED)
            else:
                self._update("close", f"stream_error:{code}")

        @self._client.event(PairStatusEv)
        async def on_pair_status(_client: NewAClient, ev: PairStatusEv) -> None:
            logger.info("WhatsApp paired", account=self.account_id, user=ev.ID.User)
            self.events.emit(CREDS_UPDATE, None)

        @self._client.event(MessageEv)
        async def on_message(_client: NewAClient, message: MessageEv) -> None:
            try:
                self._handle_message(message)
            except Exception:
                logger.exception(
                    "Failed to translate inbound message",
                    account=self.account_id,
                    message_id=getattr(getattr(message, "Info", None), "ID", "unknown"),
                )

        @self._client.event(GroupInfoEv)
        async def on_group_info(_client: NewAClient, ev: GroupInfoEv) -> None:
            try:
                self._handle_group_info(ev)
            except Exception:
                logger.exception("Failed to translate group update", account=self.account_id)

        @self._client.event(CallOfferEv)
        async def on_call(_client: NewAClient, ev: CallOfferEv) -> None:
            meta = getattr(ev, "basicCallMeta", None)
            if meta is None:
                return
            self.events.emit(
                CALL,
                CallOffer(
                    caller=self._decoder.decode(Jid2String(meta.From)),
                    call_id=meta.CallID,
                ),
            )

        @self._client.event.qr
        async def on_qr(_client: NewAClient, qr_data: bytes) -> None:
            if self._pairing == "qr":
                print_qr(qr_data)
                return
            if self._pairing == "code":
                return
            self._auth_required.set()

    def _handle_message(self, message: MessageEv) -> None:
        info = message.Info
        source = info.MessageSource
        chat = Jid2String(source.Chat)
        if not chat or chat == "status@broadcast":
            return
        msg = message.Message

        if msg.HasField("protocolMessage"):
            proto = msg.protocolMessage
            if proto.type == _REVOKE and proto.key.ID:
                self.events.emit(
                    MESSAGE_DELETE,
                    DeleteNotice(
                        chat=self._decoder.decode(chat),
                        id=proto.key.ID,
                        participant=self._decoder.decode(Jid2String(source.Sender)),
                    ),
                )
            return

        sender = self._decoder.decode(Jid2String(source.Sender))
        chat = self._decoder.decode(chat)
        context = msg.extendedTextMessage.contextInfo
        quoted = None
        if context.stanzaID:
            quoted = InboundMessage(
                key=MessageKey(chat=chat, id=context.stanzaID, participant=context.participant),
                sender=self._decoder.decode(context.participant),
                text=_message_text(context.quotedMessage),
            )
        ts = float(info.Timestamp)
        if ts > 1e10:
            ts = ts / 1000

        inbound = InboundMessage(
            key=MessageKey(
                chat=chat,
                id=info.ID,
                from_me=source.IsFromMe,
                participant=sender if source.IsGroup else None,
            ),
            sender=sender,
            text=_message_text(msg),
            push_name=info.Pushname,
            timestamp=ts,
            mentioned=[self._decoder.decode(j) for j in context.mentionedJID],
            quoted=quoted,
            raw=message,
            account_id=self.account_id,
        )
        self.chats.setdefault(chat, {})["last_message"] = ts
        self.events.emit(MESSAGES_UPSERT, inbound)

    def _handle_group_info(self, ev: GroupInfoEv) -> None:
        chat = Jid2String(ev.JID)
        author = self._decoder.decode(Jid2String(ev.Sender)) if ev.HasField("Sender") else None
        for action, jids in (
            ("add", ev.Join),
            ("remove", ev.Leave),
            ("promote", ev.Promote),
            ("demote", ev.Demote),
        ):
            if jids:
                self.events.emit(
                    PARTICIPANTS_UPDATE,
                    ParticipantsUpdate(
                        chat=chat,
                        participants=[self._decoder.decode(Jid2String(j)) for j in jids],
                        action=action,
                        author=author,
                    ),
                )
        update = GroupUpdate(
            id=chat,
            subject=ev.Name.Name if ev.HasField("Name") else None,
            desc=ev.Topic.Topic if ev.HasField("Topic") else None,
            revoke=bool(ev.NewInviteLink),
            announce=ev.Announce.IsAnnounce if ev.HasField("Announce") else None,
            restrict=ev.Locked.IsLocked if ev.HasField("Locked") else None,
        )
        changed = (update.subject, update.desc, update.announce, update.restrict)
        if update.revoke or any(v is not None for v in changed):
            self.events.emit(GROUPS_UPDATE, update)

    # --- Lifecycle ---

    async def connect(self) -> None:
        await self._client.connect()
        self._idle_task = asyncio.ensure_future(self._client.idle())

        if self._pairing == "code" and self._pairing_number:
            try:
                code = await self._client.PairPhone(self._pairing_number, True)
                logger.warning("Pairing code", account=self.account_id, code=code)
            except Exception as err:
                logger.error("Pairing code request failed", account=self.account_id, error=str(err))

        opened = asyncio.ensure_future(self._opened.wait())
        auth = asyncio.ensure_future(self._auth_required.wait())
        done, pending = await asyncio.wait({opened, auth}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        if auth in done and not self._opened.is_set():
            await self.close()
            raise AuthExpired(self.account_id, "no linked device in credential store")

    async def close(self) -> None:
        self._closing = True
        if self._idle_task:
            self._idle_task.cancel()
        with contextlib.suppress(Exception):
            await self._client.disconnect()

    async def save_credentials(self) -> None:
        # neonize commits its store on every change
        logger.debug("Credentials persisted by neonize store", account=self.account_id)

    # --- Primitives ---

    async def send_message(
        self,
        chat: str,
        text: str,
        *,
        quoted: Any = None,
        mentions: list[str] | None = None,
    ) -> Any:
        if isinstance(quoted, MessageEv):
            return await self._client.reply_message(text, quoted, to=_parse_jid(chat))
        return await self._client.send_message(_parse_jid(chat), text)

    async def relay_message(self, chat: str, message: Any) -> None:
        payload = message.Message if isinstance(message, MessageEv) else message
        await self._client.send_message(_parse_jid(chat), payload)

    async def delete_message(self, key: MessageKey) -> None:
        sender = key.participant or (self.user_jid if key.from_me else key.chat)
        await self._client.revoke_message(_parse_jid(key.chat), _parse_jid(sender), key.id)

    async def group_metadata(self, chat: str) -> GroupMetadata:
        info = await self._client.get_group_info(_parse_jid(chat))
        participants = []
        for p in info.Participants:
            role = "superadmin" if p.IsSuperAdmin else "admin" if p.IsAdmin else None
            participants.append(Participant(id=self._decoder.decode(Jid2String(p.JID)), admin=role))
        return GroupMetadata(
            id=chat,
            subject=info.GroupName.Name,
            owner=self._decoder.decode(Jid2String(info.OwnerJID)) or None,
            participants=participants,
            announce=info.GroupAnnounce.IsAnnounce,
        )

    async def profile_picture_url(self, jid: str) -> str | None:
        try:
            info = await self._client.get_profile_picture(_parse_jid(jid))
        except Exception as err:
            logger.debug("No profile picture", jid=jid, error=str(err))
            return None
        return getattr(info, "URL", None) or None

    async def update_block_status(self, jid: str, action: str) -> None:
        from neonize.utils.enum import BlocklistAction

        value = BlocklistAction.BLOCK if action == "block" else BlocklistAction.UNBLOCK
        await self._client.update_blocklist(_parse_jid(jid), value)

    async def read_messages(self, keys: list[MessageKey]) -> None:
        from neonize.utils.enum import ReceiptType

        for key in keys:
            try:
                sender = key.participant or key.chat
                await self._client.mark_read(
                    key.id,
                    chat=_parse_jid(key.chat),
                    sender=_parse_jid(sender),
                    receipt=ReceiptType.READ,
                )
            except Exception as err:
                logger.debug("Failed to mark message as read", chat=key.chat, error=str(err))
