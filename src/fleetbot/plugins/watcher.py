"""Hot reload of plugin files and of the event-handler module.

Uses watchdog (inotify on Linux, FSEvents on macOS). Events arrive on the
observer thread and are handed to the event loop through a queue; the
registry is only ever touched from the loop.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

from watchdog.events import (
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from fleetbot.errors import PluginImportError, PluginSyntaxError
from fleetbot.logger import logger
from fleetbot.plugins.registry import PluginRegistry
from fleetbot.utils import create_background_task, maybe_await


def _is_plugin_file(path_str: str) -> bool:
    name = Path(path_str).name
    return name.endswith(".py") and not name.startswith(("_", "."))


class _PluginEventHandler(FileSystemEventHandler):
    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        queue: asyncio.Queue[Path],
        accept: Callable[[str], bool] = _is_plugin_file,
    ) -> None:
        super().__init__()
        self._loop = loop
        self._queue = queue
        self._accept = accept

    def _enqueue(self, path_str: str | bytes) -> None:
        path_str = path_str.decode() if isinstance(path_str, bytes) else path_str
        if self._accept(path_str):
            self._loop.call_soon_threadsafe(self._queue.put_nowait, Path(path_str))

    def on_created(self, event: Any) -> None:
        if isinstance(event, FileCreatedEvent):
            self._enqueue(event.src_path)

    def on_modified(self, event: Any) -> None:
        if isinstance(event, FileModifiedEvent):
            self._enqueue(event.src_path)

    def on_deleted(self, event: Any) -> None:
        if isinstance(event, FileDeletedEvent):
            self._enqueue(event.src_path)

    def on_moved(self, event: Any) -> None:
        # Editors that save via rename produce moved events
        if isinstance(event, FileMovedEvent):
            self._enqueue(event.src_path)
            self._enqueue(event.dest_path)


async def apply_file_event(registry: PluginRegistry, path: Path) -> None:
    """Feed one changed path to the registry, logging rejected updates."""
    try:
        registry.on_file_event(path)
    except PluginSyntaxError as exc:
        logger.error(
            "Plugin update rejected, keeping previous version",
            plugin=exc.name,
            line=exc.cause.lineno,
            error=exc.cause.msg,
        )
    except PluginImportError as exc:
        logger.error(
            "Plugin update failed to import, keeping previous version",
            plugin=exc.name,
            error=str(exc.cause),
        )


class PluginWatcher:
    def __init__(self, registry: PluginRegistry) -> None:
        self.registry = registry
        self._observer: Any = None
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[Path] = asyncio.Queue()
        self.registry.directory.mkdir(parents=True, exist_ok=True)

        observer = Observer()
        observer.schedule(
            _PluginEventHandler(loop, queue),
            str(self.registry.directory),
            recursive=False,
        )
        observer.daemon = True
        observer.start()
        self._observer = observer
        self._task = create_background_task(self._consume(queue), name="plugin-watcher")
        logger.info("Watching plugins", directory=str(self.registry.directory))

    async def _consume(self, queue: asyncio.Queue[Path]) -> None:
        while True:
            path = await queue.get()
            await apply_file_event(self.registry, path)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self._observer is not None:
            observer = self._observer
            self._observer = None
            observer.stop()
            await asyncio.to_thread(observer.join, 2.0)


class HandlerWatcher:
    """Watch one module file and call ``on_change`` when it is saved.

    Events that pile up while ``on_change`` runs are coalesced into a
    single extra call, since an editor save often fires several.
    """

    def __init__(self, path: Path, on_change: Callable[[], Any]) -> None:
        self.path = path
        self._on_change = on_change
        self._observer: Any = None
        self._task: asyncio.Task[None] | None = None

    def _accept(self, path_str: str) -> bool:
        return Path(path_str).name == self.path.name

    def start(self) -> None:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[Path] = asyncio.Queue()

        observer = Observer()
        observer.schedule(
            _PluginEventHandler(loop, queue, accept=self._accept),
            str(self.path.parent),
            recursive=False,
        )
        observer.daemon = True
        observer.start()
        self._observer = observer
        self._task = create_background_task(self._consume(queue), name="handler-watcher")
        logger.info("Watching handlers", path=str(self.path))

    async def _consume(self, queue: asyncio.Queue[Path]) -> None:
        while True:
            await queue.get()
            while not queue.empty():
                queue.get_nowait()
            try:
                await maybe_await(self._on_change)
            except Exception:
                logger.exception("Handler change callback failed", path=str(self.path))

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self._observer is not None:
            observer = self._observer
            self._observer = None
            observer.stop()
            await asyncio.to_thread(observer.join, 2.0)
