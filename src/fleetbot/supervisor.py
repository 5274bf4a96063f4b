"""Transport session supervisor.

Owns every Session (the primary account plus one per fleet directory),
binds their events to the dispatch pipeline and decides what to do when a
connection closes:

- transient causes (connection lost, timed out, restart required, closed)
  rebuild the session: the old transport is closed with all of its listeners
  removed, a new Session is created around a new transport that inherits the
  cached chats, and listeners are bound again;
- bad session and logged out are terminal and warned about once;
- replaced by another client is terminal;
- anything else is logged once as an UnknownDisconnect and left alone.

State machine per session::

    connecting -> open -> closing -> closed
    open -> connecting            (transient drop, rebuild in progress)

At most one reload per account is in flight; concurrent callers await the
same one.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from types import ModuleType
from typing import Any

from fleetbot.config import Settings
from fleetbot.dispatch import listeners as default_listeners
from fleetbot.dispatch.pipeline import DispatchPipeline
from fleetbot.dispatch.prefix import PrefixRule
from fleetbot.errors import AuthExpired, TransportDisconnect, UnknownDisconnect
from fleetbot.logger import logger
from fleetbot.plugins.loader import check_syntax, forget, import_fresh
from fleetbot.transport.base import (
    CALL,
    CONNECTION_UPDATE,
    CREDS_UPDATE,
    GROUPS_UPDATE,
    MESSAGE_DELETE,
    MESSAGES_UPSERT,
    PARTICIPANTS_UPDATE,
    Transport,
    TransportFactory,
)
from fleetbot.types import ConnectionUpdate, DisconnectReason
from fleetbot.utils import create_background_task

PRIMARY = "primary"

TRANSIENT = frozenset(
    {
        DisconnectReason.CONNECTION_LOST,
        DisconnectReason.TIMED_OUT,
        DisconnectReason.RESTART_REQUIRED,
        DisconnectReason.CONNECTION_CLOSED,
    }
)
TERMINAL = frozenset(
    {
        DisconnectReason.BAD_SESSION,
        DisconnectReason.LOGGED_OUT,
        DisconnectReason.CONNECTION_REPLACED,
    }
)

_TERMINAL_HINTS = {
    DisconnectReason.BAD_SESSION: "Credential store is invalid; delete it and link again",
    DisconnectReason.LOGGED_OUT: "Device was logged out; link it again with fleetbot-link",
    DisconnectReason.CONNECTION_REPLACED: "Another client opened this session",
}


class SessionState(StrEnum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(eq=False)
class Session:
    """One live transport connection. Replaced, not reused, on rebuild."""

    account_id: str
    auth_dir: Path
    transport: Transport
    state: SessionState = SessionState.CONNECTING
    prefix: PrefixRule | None = None
    is_init: bool = False
    generation: int = 1
    listeners: list[Callable[[], None]] = field(default_factory=list)


class Supervisor:
    def __init__(
        self,
        settings: Settings,
        pipeline: DispatchPipeline,
        factory: TransportFactory,
    ) -> None:
        self.settings = settings
        self.pipeline = pipeline
        self._factory = factory
        self.sessions: dict[str, Session] = {}
        self._reloads: dict[str, asyncio.Task[Session]] = {}
        self._warned: defaultdict[str, set[str]] = defaultdict(set)
        self._handlers: ModuleType = default_listeners
        self._handlers_path = Path(default_listeners.__file__)

    def lookup(self, account_id: str) -> Session | None:
        """Current session for ``account_id``. Passed to the pipeline as its only way in."""
        return self.sessions.get(account_id)

    @property
    def handlers(self) -> ModuleType:
        return self._handlers

    @property
    def handlers_path(self) -> Path:
        return self._handlers_path

    # ------------------------------------------------------------------
    # Connecting
    # ------------------------------------------------------------------

    async def connect(
        self,
        account_id: str,
        auth_dir: Path,
        *,
        interactive: bool = False,
        chats: dict[str, Any] | None = None,
    ) -> Session:
        """Open a session from the credentials in ``auth_dir``.

        Raises AuthExpired when the directory holds no credentials (unless
        ``interactive`` linking was requested) or the transport rejects them.
        A session whose transport fails to connect is closed and forgotten.
        """
        creds = auth_dir / self.settings.sessions.credentials_file
        if not interactive and not creds.exists():
            raise AuthExpired(account_id, f"no credentials at {creds}")

        transport = self._factory(account_id, auth_dir, chats if chats is not None else {})
        session = Session(account_id=account_id, auth_dir=auth_dir, transport=transport)
        self.sessions[account_id] = session
        self._bind(session)
        try:
            await transport.connect()
        except Exception:
            await self._shutdown(session)
            if self.sessions.get(account_id) is session:
                del self.sessions[account_id]
            raise
        logger.info("Session connected", account=account_id)
        return session

    async def start_primary(self) -> Session:
        return await self.connect(
            PRIMARY,
            self.settings.auth_dir,
            interactive=self.settings.runtime.pairing is not None,
        )

    async def start_fleet(self) -> list[Session]:
        """Open one session per fleet directory that holds credentials.

        Connections run concurrently up to ``sessions.fleet_concurrency``; an
        account that fails is logged and skipped.
        """
        fleet_dir = self.settings.fleet_dir
        if not fleet_dir.is_dir():
            return []
        creds_name = self.settings.sessions.credentials_file
        dirs = sorted(d for d in fleet_dir.iterdir() if d.is_dir() and (d / creds_name).exists())
        if not dirs:
            return []

        sem = asyncio.Semaphore(self.settings.sessions.fleet_concurrency)

        async def _open(auth_dir: Path) -> Session | None:
            account_id = f"fleet:{auth_dir.name}"
            async with sem:
                try:
                    return await self.connect(account_id, auth_dir)
                except Exception as exc:
                    logger.error(
                        "Fleet account failed to connect", account=account_id, error=str(exc)
                    )
                    return None

        results = await asyncio.gather(*(_open(d) for d in dirs))
        opened = [s for s in results if s is not None]
        logger.info("Fleet started", opened=len(opened), total=len(dirs))
        return opened

    # ------------------------------------------------------------------
    # Listener binding
    # ------------------------------------------------------------------

    def _bind(self, session: Session) -> None:
        """Attach this session's listeners. Any previous ones are removed first."""
        self._unbind(session)
        t = session.transport
        h = self._handlers
        p = self.pipeline
        events = t.events

        async def _connection(update: ConnectionUpdate) -> None:
            # Events from a transport that has since been replaced are ignored
            if self.sessions.get(session.account_id) is session:
                self.on_connection_update(session.account_id, update)

        async def _creds(_payload: Any) -> None:
            await t.save_credentials()

        session.listeners = [
            events.on(CONNECTION_UPDATE, _connection),
            events.on(MESSAGES_UPSERT, lambda m: h.on_message(p, t, m)),
            events.on(PARTICIPANTS_UPDATE, lambda u: h.on_participants_update(p, t, u)),
            events.on(GROUPS_UPDATE, lambda u: h.on_groups_update(p, t, u)),
            events.on(MESSAGE_DELETE, lambda n: h.on_message_delete(p, t, n)),
            events.on(CALL, lambda c: h.on_call(p, t, c)),
            events.on(CREDS_UPDATE, _creds),
        ]

    def _unbind(self, session: Session) -> None:
        for unsubscribe in session.listeners:
            unsubscribe()
        session.listeners = []

    # ------------------------------------------------------------------
    # Connection updates
    # ------------------------------------------------------------------

    def on_connection_update(
        self, account_id: str, update: ConnectionUpdate
    ) -> TransportDisconnect | None:
        """Advance the session's state machine.

        Returns the classified disconnect for close events (None otherwise).
        Transient causes schedule a rebuild in the background.
        """
        session = self.sessions.get(account_id)
        if session is None:
            return None

        match update.connection:
            case "connecting":
                if session.state is not SessionState.CLOSING:
                    session.state = SessionState.CONNECTING
                return None
            case "open":
                session.state = SessionState.OPEN
                session.is_init = True
                self._warned.pop(account_id, None)
                logger.info("Session open", account=account_id, generation=session.generation)
                return None
            case "close":
                pass
            case _:
                logger.debug(
                    "Ignoring connection update", account=account_id, update=update.connection
                )
                return None

        if session.state in (SessionState.CLOSING, SessionState.CLOSED):
            return None

        reason = update.reason or ""
        if reason in TRANSIENT:
            logger.warning(
                "Connection dropped, rebuilding session", account=account_id, reason=reason
            )
            session.state = SessionState.CONNECTING
            create_background_task(
                self.reload(account_id, rebuild_transport=True, reimport=False),
                name=f"rebuild-{account_id}",
            )
            return TransportDisconnect(account_id, reason, terminal=False)

        session.state = SessionState.CLOSED
        create_background_task(self._shutdown(session), name=f"shutdown-{account_id}")
        if reason in TERMINAL:
            self._warn_once(account_id, reason, _TERMINAL_HINTS[DisconnectReason(reason)])
            return TransportDisconnect(account_id, reason, terminal=True)

        self._warn_once(
            account_id, reason or "unknown", "Unrecognized disconnect reason, not retrying"
        )
        return UnknownDisconnect(account_id, reason)

    def _warn_once(self, account_id: str, reason: str, hint: str) -> bool:
        if reason in self._warned[account_id]:
            return False
        self._warned[account_id].add(reason)
        logger.warning("Session closed", account=account_id, reason=reason, hint=hint)
        return True

    # ------------------------------------------------------------------
    # Reload
    # ------------------------------------------------------------------

    async def reload(
        self, account_id: str, rebuild_transport: bool = False, *, reimport: bool = True
    ) -> Session:
        """Reload handler code and rebind; optionally rebuild the transport.

        ``reimport=False`` rebinds the handlers already loaded. Reconnects use
        it so a flapping connection does not re-read the source every time.

        While a reload for ``account_id`` is running, further calls wait for
        it and return its result instead of starting another.
        """
        inflight = self._reloads.get(account_id)
        if inflight is not None and not inflight.done():
            return await asyncio.shield(inflight)

        task = asyncio.ensure_future(self._do_reload(account_id, rebuild_transport, reimport))
        self._reloads[account_id] = task

        def _clear(t: asyncio.Task[Session]) -> None:
            if self._reloads.get(account_id) is t:
                del self._reloads[account_id]

        task.add_done_callback(_clear)
        return await asyncio.shield(task)

    async def _do_reload(
        self, account_id: str, rebuild_transport: bool, reimport: bool
    ) -> Session:
        session = self.sessions.get(account_id)
        if session is None:
            raise KeyError(f"no session for {account_id!r}")

        if reimport:
            self.reload_handlers()
        if not rebuild_transport:
            self._bind(session)
            logger.info("Handlers rebound", account=account_id)
            return session

        old = session
        old.state = SessionState.CLOSING
        self._unbind(old)
        old.transport.events.remove_all_listeners()
        try:
            await old.transport.close()
        except Exception as exc:
            logger.warning("Error closing transport", account=account_id, error=str(exc))
        old.state = SessionState.CLOSED

        transport = self._factory(account_id, old.auth_dir, old.transport.chats)
        new = Session(
            account_id=account_id,
            auth_dir=old.auth_dir,
            transport=transport,
            prefix=old.prefix,
            is_init=old.is_init,
            generation=old.generation + 1,
        )
        self.sessions[account_id] = new
        self._bind(new)
        logger.info("Session rebuilt", account=account_id, generation=new.generation)
        try:
            await transport.connect()
        except AuthExpired as exc:
            logger.error("Session needs re-linking", account=account_id, error=str(exc))
            await self._shutdown(new)
        except Exception as exc:
            delay = self.settings.sessions.reconnect_delay
            logger.warning(
                "Reconnect failed, retrying", account=account_id, error=str(exc), delay=delay
            )
            create_background_task(self._retry_later(new, delay), name=f"retry-{account_id}")
        return new

    async def _retry_later(self, session: Session, delay: float) -> None:
        await asyncio.sleep(delay)
        current = self.sessions.get(session.account_id) is session
        if current and session.state is SessionState.CONNECTING:
            await self.reload(session.account_id, rebuild_transport=True, reimport=False)

    def reload_handlers(self) -> bool:
        """Re-import the listener module and rebind every live session to it.

        All sessions share one module version. A broken file keeps the
        current one and leaves the bindings alone.
        """
        try:
            check_syntax(self._handlers_path)
            module, version = import_fresh(self._handlers_path)
        except Exception as exc:
            logger.error("Handler reload failed, keeping previous handlers", error=str(exc))
            return False
        previous = self._handlers
        self._handlers = module
        if previous is not default_listeners:
            forget(previous)
        live = [
            s
            for s in self.sessions.values()
            if s.state in (SessionState.CONNECTING, SessionState.OPEN)
        ]
        for session in live:
            self._bind(session)
        logger.info("Handlers reloaded", version=version, sessions=len(live))
        return True

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def _shutdown(self, session: Session) -> None:
        session.state = SessionState.CLOSING
        self._unbind(session)
        session.transport.events.remove_all_listeners()
        try:
            await session.transport.close()
        except Exception as exc:
            logger.warning("Error closing transport", account=session.account_id, error=str(exc))
        session.state = SessionState.CLOSED

    async def stop(self) -> None:
        for task in list(self._reloads.values()):
            task.cancel()
        for session in list(self.sessions.values()):
            if session.state is not SessionState.CLOSED:
                await self._shutdown(session)
        logger.info("All sessions closed")

    def open_sessions(self) -> list[Session]:
        return [s for s in self.sessions.values() if s.state is SessionState.OPEN]
