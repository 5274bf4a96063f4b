"""Plugin registry: the sorted set of loaded command plugins.

Dispatch reads ``registry.plugins``, an immutable name-sorted tuple that is
replaced in one assignment whenever an entry changes. A message being
dispatched keeps iterating the snapshot it started with.
"""

from __future__ import annotations

from pathlib import Path

from fleetbot.errors import PluginImportError, PluginSyntaxError
from fleetbot.logger import logger
from fleetbot.plugins.loader import check_syntax, forget, import_fresh, plugin_name
from fleetbot.plugins.module import PluginModule


class PluginRegistry:
    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self._entries: dict[str, PluginModule] = {}
        self._sorted: tuple[PluginModule, ...] = ()

    @property
    def plugins(self) -> tuple[PluginModule, ...]:
        return self._sorted

    def get(self, name: str) -> PluginModule | None:
        return self._entries.get(name)

    def names(self) -> list[str]:
        return [p.name for p in self._sorted]

    def __len__(self) -> int:
        return len(self._entries)

    def load_all(self) -> dict[str, PluginModule]:
        """Import every plugin file in the directory.

        A file that fails to import is logged and left out; it never stops
        the rest from loading.
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        failed = 0
        for path in sorted(self.directory.glob("*.py")):
            if path.name.startswith("_"):
                continue
            try:
                self._load(path)
            except Exception as exc:
                failed += 1
                err = PluginImportError(plugin_name(path), exc)
                logger.error("Plugin failed to load", plugin=err.name, error=str(exc))
        self._reindex()
        logger.info("Plugins loaded", count=len(self._entries), failed=failed)
        return dict(self._entries)

    def on_file_event(self, path: Path) -> PluginModule | None:
        """React to a created, modified or deleted plugin file.

        Returns the newly active version, or None when the plugin was removed.
        Raises PluginSyntaxError / PluginImportError with the previous version
        (if any) still active.
        """
        name = plugin_name(path)
        if not path.exists():
            removed = self._entries.pop(name, None)
            if removed is not None:
                forget(removed.module)
                self._reindex()
                logger.warning("Plugin removed", plugin=name)
            return None

        try:
            check_syntax(path)
        except SyntaxError as exc:
            raise PluginSyntaxError(name, exc) from exc

        try:
            plugin = self._load(path)
        except Exception as exc:
            raise PluginImportError(name, exc) from exc
        self._reindex()
        logger.info("Plugin reloaded", plugin=name, version=plugin.version)
        return plugin

    def _load(self, path: Path) -> PluginModule:
        name = plugin_name(path)
        module, version = import_fresh(path)
        try:
            plugin = PluginModule.from_module(name, path, module, version)
        except Exception:
            forget(module)
            raise
        previous = self._entries.get(name)
        self._entries[name] = plugin
        if previous is not None:
            forget(previous.module)
        return plugin

    def _reindex(self) -> None:
        self._sorted = tuple(self._entries[name] for name in sorted(self._entries))
