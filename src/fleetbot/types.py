"""Data models for fleetbot."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class DisconnectReason(StrEnum):
    """Why a transport connection closed, as reported in ``connection.update``."""

    BAD_SESSION = "bad_session"
    CONNECTION_CLOSED = "connection_closed"
    CONNECTION_LOST = "connection_lost"
    CONNECTION_REPLACED = "connection_replaced"
    LOGGED_OUT = "logged_out"
    RESTART_REQUIRED = "restart_required"
    TIMED_OUT = "timed_out"


@dataclass
class ConnectionUpdate:
    """Payload of a ``connection.update`` event.

    ``connection`` is "connecting", "open" or "close". ``reason`` is a
    DisconnectReason value when known, otherwise whatever the transport said.
    """

    connection: str
    reason: str | None = None
    is_new_login: bool = False
    qr: str | None = None


@dataclass
class MessageKey:
    chat: str
    id: str
    from_me: bool = False
    participant: str | None = None  # sender inside a group


@dataclass
class InboundMessage:
    """One received message, mutated as it moves through the pipeline."""

    key: MessageKey
    sender: str
    text: str = ""
    push_name: str = ""
    timestamp: float = 0.0
    mentioned: list[str] = field(default_factory=list)
    quoted: InboundMessage | None = None
    raw: Any = None  # transport-native message, passed back for relays

    # Filled in by the pipeline
    account_id: str = ""
    is_command: bool = False
    is_echo: bool = False
    plugin: str | None = None
    exp: int = 0
    money: int = 0
    limit: int = 0
    error: BaseException | None = None

    @property
    def chat(self) -> str:
        return self.key.chat

    @property
    def id(self) -> str:
        return self.key.id

    @property
    def from_me(self) -> bool:
        return self.key.from_me

    @property
    def is_group(self) -> bool:
        return self.key.chat.endswith("@g.us")


@dataclass
class Participant:
    id: str
    admin: str | None = None  # None | "admin" | "superadmin"


@dataclass
class GroupMetadata:
    id: str
    subject: str = ""
    owner: str | None = None
    participants: list[Participant] = field(default_factory=list)
    announce: bool = False

    @classmethod
    def empty(cls, chat: str) -> GroupMetadata:
        return cls(id=chat)


@dataclass
class ParticipantsUpdate:
    chat: str
    participants: list[str]
    action: str  # "add" | "remove" | "promote" | "demote"
    author: str | None = None


@dataclass
class GroupUpdate:
    id: str
    subject: str | None = None
    desc: str | None = None
    icon_changed: bool = False
    revoke: bool = False
    announce: bool | None = None
    restrict: bool | None = None


@dataclass
class DeleteNotice:
    chat: str
    id: str
    participant: str | None = None


@dataclass
class CallOffer:
    caller: str
    call_id: str
    is_group: bool = False
    is_video: bool = False


# ---------------------------------------------------------------------------
# Persisted record defaults
# ---------------------------------------------------------------------------
#
# Records are plain dicts inside the document store. ``ensure_records`` fills
# missing keys from these templates and never overwrites existing values.

USER_DEFAULTS: dict[str, Any] = {
    "name": "",
    "exp": 0,
    "money": 15,
    "limit": 20,
    "level": 0,
    "messaggi": 0,
    "registered": False,
    "premium": False,
    "banned": False,
    "muted": False,
    "warn": 0,
    "command_uses": 0,
}

CHAT_DEFAULTS: dict[str, Any] = {
    "banned": False,
    "ignored": [],  # per-chat ignored senders
    "admin_only": False,
    "welcome": False,
    "detect": True,
    "antidelete": False,
    "antispam": True,
    "messaggi": 0,
}

BOT_SETTINGS_DEFAULTS: dict[str, Any] = {
    "ignored": [],  # globally ignored senders
    "anti_call": False,
    "autoread": False,
    "restrict": False,
}

USAGE_DEFAULTS: dict[str, Any] = {
    "total": 0,
    "success": 0,
    "last": 0,
    "last_success": 0,
}
