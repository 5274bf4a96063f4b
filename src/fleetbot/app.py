"""Main orchestrator: wires all subsystems together.

Startup runs in four phases (see :meth:`FleetbotApp.run`):

1. Core: document store, plugin registry and watcher, media tool checks,
   extension manager
2. Dispatch: pipeline, supervisor and the handler-module watcher
3. Sessions: primary account, then every fleet account
4. Subsystems: periodic flush, housekeeping, optional status server

SIGINT/SIGTERM trigger a graceful shutdown that flushes the store one last
time; a second signal force-exits.
"""

from __future__ import annotations

import asyncio
import os
import signal
from pathlib import Path
from typing import Any

import pluggy
from aiohttp import web

from fleetbot.config import Settings, get_settings
from fleetbot.dispatch.pipeline import DispatchPipeline
from fleetbot.errors import AuthExpired, PersistenceError
from fleetbot.extensions import get_plugin_manager
from fleetbot.housekeeping import Housekeeper, clear_tmp
from fleetbot.http_server import start_http_server
from fleetbot.logger import logger, loop_exception_handler
from fleetbot.plugins import PluginRegistry
from fleetbot.plugins.watcher import HandlerWatcher, PluginWatcher
from fleetbot.state import DocumentStore, adapter_for_url
from fleetbot.supervisor import Supervisor
from fleetbot.system_checks import ToolSupport, detect_tools
from fleetbot.transport.base import Transport
from fleetbot.utils import create_background_task


class FleetbotApp:
    """Owns all runtime state for one process."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.store: DocumentStore | None = None
        self.registry: PluginRegistry | None = None
        self.watcher: PluginWatcher | None = None
        self.handler_watcher: HandlerWatcher | None = None
        self.plugin_manager: pluggy.PluginManager | None = None
        self.pipeline: DispatchPipeline | None = None
        self.supervisor: Supervisor | None = None
        self.housekeeper: Housekeeper | None = None
        self.support = ToolSupport()
        self._subsystem_tasks: list[asyncio.Task[Any]] = []
        self._http_runner: web.AppRunner | None = None
        self._stopped = asyncio.Event()
        self._shutting_down = False

    # ------------------------------------------------------------------
    # Transport factory
    # ------------------------------------------------------------------

    def _create_transport(
        self, account_id: str, auth_dir: Path, chats: dict[str, Any]
    ) -> Transport:
        assert self.plugin_manager is not None
        transport = self.plugin_manager.hook.fleetbot_create_transport(
            account_id=account_id,
            auth_dir=auth_dir,
            chats=chats,
            settings=self.settings,
        )
        if transport is None:
            msg = "No extension provided a transport; is the neonize extension enabled?"
            raise RuntimeError(msg)
        return transport

    # ------------------------------------------------------------------
    # Status server deps
    # ------------------------------------------------------------------

    def sessions_status(self) -> list[dict[str, Any]]:
        if self.supervisor is None:
            return []
        return [
            {
                "account": s.account_id,
                "state": str(s.state),
                "generation": s.generation,
                "user": s.transport.user_jid,
            }
            for s in self.supervisor.sessions.values()
        ]

    def plugin_count(self) -> int:
        return len(self.registry) if self.registry is not None else 0

    # ------------------------------------------------------------------
    # Startup phases
    # ------------------------------------------------------------------

    async def _initialize_core(self) -> None:
        s = self.settings
        self.store = DocumentStore(adapter_for_url(s.database.url, s.project_root))
        await self.store.read()
        logger.info("Database loaded", url=s.database.url, users=len(self.store.users))

        self.registry = PluginRegistry(s.plugins_dir)
        self.registry.load_all()
        if s.plugins.watch:
            self.watcher = PluginWatcher(self.registry)
            self.watcher.start()

        self.support = await asyncio.to_thread(detect_tools)
        self.plugin_manager = get_plugin_manager()

    def _setup_dispatch(self) -> None:
        assert self.store is not None and self.registry is not None
        assert self.plugin_manager is not None
        self.pipeline = DispatchPipeline(
            self.settings,
            self.store,
            self.registry,
            lambda account_id: self.supervisor.lookup(account_id) if self.supervisor else None,
            presenter=self.plugin_manager.hook.fleetbot_present_message,
            support=self.support,
        )
        self.supervisor = Supervisor(self.settings, self.pipeline, self._create_transport)
        if self.settings.plugins.watch:
            self.handler_watcher = HandlerWatcher(
                self.supervisor.handlers_path, self.supervisor.reload_handlers
            )
            self.handler_watcher.start()

    async def _start_sessions(self) -> None:
        assert self.supervisor is not None
        try:
            await self.supervisor.start_primary()
        except AuthExpired as exc:
            logger.error(
                "Primary account is not linked",
                error=str(exc),
                hint="Run fleetbot --qr or fleetbot --code <phone> to link it",
            )
        await self.supervisor.start_fleet()

    async def _start_subsystems(self) -> None:
        assert self.supervisor is not None
        s = self.settings
        if not s.runtime.test:
            self._subsystem_tasks.append(
                create_background_task(self._flush_loop(), name="db-flush")
            )
        self.housekeeper = Housekeeper(s, self.supervisor)
        self.housekeeper.start()
        if s.runtime.server:
            self._http_runner = await start_http_server(self, s.server.host, s.server.port)

    async def _flush_loop(self) -> None:
        s = self.settings
        while True:
            await asyncio.sleep(s.database.flush_interval)
            await self.flush()
            if s.runtime.autocleartmp:
                removed = await asyncio.to_thread(
                    clear_tmp, s.tmp_dir, max_age=s.intervals.tmp_max_age
                )
                if removed:
                    logger.debug("Temporary files removed", count=removed)

    async def flush(self) -> bool:
        """Write the store. A failed write is logged and retried next time."""
        if self.store is None or not self.store.loaded:
            return False
        try:
            await self.store.write()
        except PersistenceError as exc:
            logger.warning("Database flush failed", error=str(exc))
            return False
        return True

    # ------------------------------------------------------------------
    # Run / shutdown
    # ------------------------------------------------------------------

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        loop.set_exception_handler(loop_exception_handler)
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda s=sig: asyncio.ensure_future(self.shutdown(s.name)),
            )

        await self._initialize_core()
        self._setup_dispatch()
        await self._start_sessions()
        assert self.supervisor is not None
        if not self.supervisor.sessions:
            logger.error("No account could be started, exiting")
            await self.shutdown("startup")
            return
        await self._start_subsystems()
        logger.info(
            "Fleetbot running",
            sessions=len(self.supervisor.sessions),
            plugins=self.plugin_count(),
        )
        await self._stopped.wait()

    async def shutdown(self, reason: str) -> None:
        """Graceful shutdown. Second signal force-exits."""
        if self._shutting_down:
            logger.info("Force shutdown")
            os._exit(1)
        self._shutting_down = True
        logger.info("Shutting down", reason=reason)

        for task in self._subsystem_tasks:
            task.cancel()
        self._subsystem_tasks.clear()
        if self.housekeeper is not None:
            self.housekeeper.stop()
        if self._http_runner is not None:
            await self._http_runner.cleanup()
        if self.watcher is not None:
            await self.watcher.stop()
        if self.handler_watcher is not None:
            await self.handler_watcher.stop()
        if self.supervisor is not None:
            await self.supervisor.stop()
        await self.flush()
        if self.store is not None:
            await self.store.close()
        self._stopped.set()
