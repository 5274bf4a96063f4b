"""Command plugins: contract, loader, registry and hot-reload watcher."""

from fleetbot.plugins.module import AnyOf, Exact, Matcher, Pattern, PluginModule, matches
from fleetbot.plugins.registry import PluginRegistry

__all__ = [
    "AnyOf",
    "Exact",
    "Matcher",
    "Pattern",
    "PluginModule",
    "PluginRegistry",
    "matches",
]
