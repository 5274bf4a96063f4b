"""Tests for plugin loading, hot reload and the file watcher bridge."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest
from conftest import write_plugin
from watchdog.events import FileDeletedEvent, FileModifiedEvent

from fleetbot.errors import PluginImportError, PluginSyntaxError
from fleetbot.plugins.module import Exact
from fleetbot.plugins.registry import PluginRegistry
from fleetbot.plugins.watcher import HandlerWatcher, _PluginEventHandler, apply_file_event

V1 = """
command = "greet"

def handler(m, ctx):
    return "v1"
"""

V2 = """
command = "greet"

def handler(m, ctx):
    return "v2"
"""

BROKEN = """
command = "greet"

def handler(m, ctx)
    return "broken"
"""


@pytest.fixture
def plugins_dir(tmp_path: Path) -> Path:
    return tmp_path / "plugins"


@pytest.fixture
def registry(plugins_dir: Path) -> PluginRegistry:
    return PluginRegistry(plugins_dir)


class TestLoadAll:
    def test_loads_sorted_by_file_name(self, plugins_dir, registry):
        write_plugin(plugins_dir, "b-two.py", 'command = "two"\n')
        write_plugin(plugins_dir, "a-one.py", 'command = "one"\n')
        write_plugin(plugins_dir, "_helper.py", "x = 1\n")
        registry.load_all()
        assert registry.names() == ["a-one.py", "b-two.py"]
        assert registry.get("a-one.py").matcher == Exact("one")

    def test_import_failure_is_isolated(self, plugins_dir, registry):
        write_plugin(plugins_dir, "bad.py", "raise RuntimeError('boom')\n")
        write_plugin(plugins_dir, "good.py", V1)
        loaded = registry.load_all()
        assert list(loaded) == ["good.py"]
        assert len(registry) == 1

    def test_syntax_error_on_startup_is_isolated(self, plugins_dir, registry):
        write_plugin(plugins_dir, "broken.py", BROKEN)
        write_plugin(plugins_dir, "good.py", V1)
        registry.load_all()
        assert registry.names() == ["good.py"]

    def test_creates_missing_directory(self, plugins_dir, registry):
        registry.load_all()
        assert plugins_dir.is_dir()
        assert len(registry) == 0


class TestHotReload:
    def test_update_swaps_version(self, plugins_dir, registry):
        path = write_plugin(plugins_dir, "greet.py", V1)
        registry.load_all()
        v1 = registry.get("greet.py")

        path.write_text(V2)
        v2 = registry.on_file_event(path)

        assert v2 is registry.get("greet.py")
        assert v2.version > v1.version
        assert v2.handler(None, None) == "v2"
        assert v1.module.__name__ not in sys.modules

    def test_syntax_error_keeps_previous_version(self, plugins_dir, registry):
        path = write_plugin(plugins_dir, "greet.py", V1)
        registry.load_all()

        path.write_text(BROKEN)
        with pytest.raises(PluginSyntaxError) as exc_info:
            registry.on_file_event(path)

        assert exc_info.value.name == "greet.py"
        assert registry.get("greet.py").handler(None, None) == "v1"

    def test_import_error_keeps_previous_version(self, plugins_dir, registry):
        path = write_plugin(plugins_dir, "greet.py", V1)
        registry.load_all()

        path.write_text("import not_a_real_module_anywhere\n")
        with pytest.raises(PluginImportError):
            registry.on_file_event(path)

        assert registry.get("greet.py").handler(None, None) == "v1"

    def test_new_file_is_added_in_order(self, plugins_dir, registry):
        write_plugin(plugins_dir, "m.py", V1)
        registry.load_all()
        path = write_plugin(plugins_dir, "a.py", V2)
        registry.on_file_event(path)
        assert registry.names() == ["a.py", "m.py"]

    def test_delete_removes_plugin(self, plugins_dir, registry):
        path = write_plugin(plugins_dir, "greet.py", V1)
        registry.load_all()
        module_name = registry.get("greet.py").module.__name__

        path.unlink()
        assert registry.on_file_event(path) is None
        assert registry.get("greet.py") is None
        assert registry.plugins == ()
        assert module_name not in sys.modules

    def test_snapshot_survives_swap(self, plugins_dir, registry):
        path = write_plugin(plugins_dir, "greet.py", V1)
        registry.load_all()
        snapshot = registry.plugins

        path.write_text(V2)
        registry.on_file_event(path)

        assert snapshot[0].handler(None, None) == "v1"
        assert registry.plugins[0].handler(None, None) == "v2"


class TestWatcherBridge:
    async def test_apply_file_event_logs_instead_of_raising(self, plugins_dir, registry):
        path = write_plugin(plugins_dir, "greet.py", V1)
        registry.load_all()
        path.write_text(BROKEN)

        await apply_file_event(registry, path)

        assert registry.get("greet.py").handler(None, None) == "v1"

    async def test_handler_queues_plugin_paths_only(self, plugins_dir):
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[Path] = asyncio.Queue()
        handler = _PluginEventHandler(loop, queue)

        handler.on_modified(FileModifiedEvent(str(plugins_dir / "greet.py")))
        handler.on_modified(FileModifiedEvent(str(plugins_dir / "notes.txt")))
        handler.on_deleted(FileDeletedEvent(str(plugins_dir / "_private.py")))
        await asyncio.sleep(0)

        assert queue.qsize() == 1
        assert queue.get_nowait() == plugins_dir / "greet.py"


class TestHandlerWatcher:
    def test_accepts_only_the_watched_file(self, tmp_path):
        watcher = HandlerWatcher(tmp_path / "listeners.py", lambda: None)
        assert watcher._accept(str(tmp_path / "listeners.py"))
        assert not watcher._accept(str(tmp_path / "pipeline.py"))

    async def test_burst_of_saves_triggers_one_reload(self, tmp_path):
        calls = []
        watcher = HandlerWatcher(tmp_path / "listeners.py", lambda: calls.append(1))
        queue: asyncio.Queue[Path] = asyncio.Queue()
        for _ in range(3):
            queue.put_nowait(tmp_path / "listeners.py")

        task = asyncio.create_task(watcher._consume(queue))
        try:
            await asyncio.sleep(0.01)
            assert calls == [1]
            queue.put_nowait(tmp_path / "listeners.py")
            await asyncio.sleep(0.01)
            assert calls == [1, 1]
        finally:
            task.cancel()

    async def test_failing_callback_keeps_watching(self, tmp_path):
        calls = []

        def on_change():
            calls.append(1)
            raise RuntimeError("reload bug")

        watcher = HandlerWatcher(tmp_path / "listeners.py", on_change)
        queue: asyncio.Queue[Path] = asyncio.Queue()
        task = asyncio.create_task(watcher._consume(queue))
        try:
            queue.put_nowait(tmp_path / "listeners.py")
            await asyncio.sleep(0.01)
            queue.put_nowait(tmp_path / "listeners.py")
            await asyncio.sleep(0.01)
            assert calls == [1, 1]
            assert not task.done()
        finally:
            task.cancel()
