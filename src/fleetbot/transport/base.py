"""Transport contract.

A transport is one client connection to the messaging network for one
account. The supervisor only talks to it through this protocol, so the
runtime can be driven by the neonize client in production and by an
in-memory fake in tests.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import defaultdict
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from fleetbot.logger import logger
from fleetbot.types import GroupMetadata, MessageKey
from fleetbot.utils import create_background_task, maybe_await

# --- Event names ---

CONNECTION_UPDATE = "connection.update"
MESSAGES_UPSERT = "messages.upsert"
PARTICIPANTS_UPDATE = "group-participants.update"
GROUPS_UPDATE = "groups.update"
MESSAGE_DELETE = "message.delete"
CALL = "call"
CREDS_UPDATE = "creds.update"

ALL_EVENTS = (
    CONNECTION_UPDATE,
    MESSAGES_UPSERT,
    PARTICIPANTS_UPDATE,
    GROUPS_UPDATE,
    MESSAGE_DELETE,
    CALL,
    CREDS_UPDATE,
)

type Listener = Callable[[Any], Any]


class TransportEvents:
    """Named-event emitter owned by one transport.

    Listeners may be plain callables or coroutine functions. ``on`` returns
    an unsubscribe function.
    """

    def __init__(self) -> None:
        self._listeners: defaultdict[str, list[Listener]] = defaultdict(list)
        self._pending: set[asyncio.Task[None]] = set()

    def on(self, event: str, listener: Listener) -> Callable[[], None]:
        self._listeners[event].append(listener)

        def _unsubscribe() -> None:
            self.off(event, listener)

        return _unsubscribe

    def off(self, event: str, listener: Listener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners[event].remove(listener)

    def remove_all_listeners(self, event: str | None = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def listener_count(self, event: str | None = None) -> int:
        if event is None:
            return sum(len(v) for v in self._listeners.values())
        return len(self._listeners.get(event, ()))

    def emit(self, event: str, payload: Any) -> None:
        """Schedule every listener without waiting. Tasks are held until done."""
        for listener in list(self._listeners.get(event, ())):
            task = create_background_task(_safe_call(event, listener, payload), name=event)
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def deliver(self, event: str, payload: Any) -> None:
        """Run every listener in order and wait for all of them."""
        for listener in list(self._listeners.get(event, ())):
            await _safe_call(event, listener, payload)


async def _safe_call(event: str, listener: Listener, payload: Any) -> None:
    try:
        await maybe_await(listener, payload)
    except Exception:
        logger.exception("Transport event listener failed", transport_event=event)


@runtime_checkable
class Transport(Protocol):
    account_id: str
    events: TransportEvents
    chats: dict[str, Any]  # cached chat state; handed to the replacement on rebuild

    @property
    def user_jid(self) -> str: ...

    async def connect(self) -> None:
        """Open the connection. Raises AuthExpired when linking is required."""

    async def send_message(
        self,
        chat: str,
        text: str,
        *,
        quoted: Any = None,
        mentions: list[str] | None = None,
    ) -> Any: ...

    async def relay_message(self, chat: str, message: Any) -> None: ...

    async def delete_message(self, key: MessageKey) -> None: ...

    async def group_metadata(self, chat: str) -> GroupMetadata: ...

    async def profile_picture_url(self, jid: str) -> str | None: ...

    async def update_block_status(self, jid: str, action: str) -> None: ...

    async def read_messages(self, keys: list[MessageKey]) -> None: ...

    def decode_jid(self, jid: str) -> str: ...

    async def close(self) -> None: ...

    async def save_credentials(self) -> None: ...


class TransportFactory(Protocol):
    def __call__(self, account_id: str, auth_dir: Path, chats: dict[str, Any]) -> Transport: ...
