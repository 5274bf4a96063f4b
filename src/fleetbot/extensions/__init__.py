"""Extension system for fleetbot.

Extensions provide the transport implementation and observe processed
messages. Built on pluggy; third-party extensions register through the
"fleetbot" entry-point group.

Usage:
    from fleetbot.extensions import get_plugin_manager

    pm = get_plugin_manager()
    transport = pm.hook.fleetbot_create_transport(
        account_id="primary", auth_dir=path, chats={}, settings=s
    )
"""

from __future__ import annotations

import asyncio
import importlib
import warnings

import pluggy

from fleetbot.config import get_settings
from fleetbot.extensions.hookspecs import FleetbotSpec
from fleetbot.logger import logger

__all__ = [
    "get_plugin_manager",
    "hookimpl",
]

hookimpl = pluggy.HookimplMarker("fleetbot")

# Each entry: (module_path, class_name, config_key)
# config_key is checked against [extensions.<key>].enabled in config.toml.
_BUILTIN_EXTENSION_SPECS: list[tuple[str, str, str]] = [
    ("fleetbot.extensions.neonize_transport", "NeonizeTransportExtension", "neonize"),
    ("fleetbot.extensions.console", "ConsolePresenterExtension", "console"),
]


def get_plugin_manager() -> pluggy.PluginManager:
    """Create the plugin manager with built-ins and entry-point extensions."""
    pm = pluggy.PluginManager("fleetbot")
    pm.add_hookspecs(FleetbotSpec)

    s = get_settings()

    # neonize calls asyncio.get_event_loop() at import time; give it a loop
    # when we're imported from sync code.
    _tmp_loop = None
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        _tmp_loop = asyncio.new_event_loop()
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", DeprecationWarning)
            asyncio.set_event_loop(_tmp_loop)

    for module_path, class_name, config_key in _BUILTIN_EXTENSION_SPECS:
        ext_cfg = s.extensions.get(config_key)
        if ext_cfg is not None and not ext_cfg.enabled:
            logger.info("Extension disabled via config", extension=config_key)
            continue
        try:
            mod = importlib.import_module(module_path)
            pm.register(getattr(mod, class_name)(), name=f"builtin-{config_key}")
            logger.debug("Registered built-in extension", name=config_key)
        except Exception:
            logger.exception("Failed to load built-in extension", extension=config_key)

    discovered = pm.load_setuptools_entrypoints("fleetbot")

    if _tmp_loop is not None:
        _tmp_loop.close()
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", DeprecationWarning)
            asyncio.set_event_loop(None)
    if discovered:
        logger.info("Discovered third-party extensions", count=discovered)

    logger.info("Extension manager ready", extensions=[pm.get_name(p) for p in pm.get_plugins()])
    return pm
