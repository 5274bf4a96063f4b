"""Import plugin files under a fresh module name each time.

Every load gets its own ``sys.modules`` key (``fleetbot_plugin_<stem>_<n>``),
so an edited file is always executed anew instead of being served from the
import cache. The previous version's key is dropped once it is replaced.
"""

from __future__ import annotations

import importlib.util
import itertools
import re
import sys
from pathlib import Path
from types import ModuleType

_versions = itertools.count(1)


def plugin_name(path: Path) -> str:
    """Registry key for a plugin file: its file name."""
    return path.name


def check_syntax(path: Path) -> None:
    """Compile the file without executing it. Raises SyntaxError."""
    source = path.read_text(encoding="utf-8")
    compile(source, str(path), "exec")


def import_fresh(path: Path) -> tuple[ModuleType, int]:
    """Execute ``path`` as a brand-new module. Returns the module and its version."""
    version = next(_versions)
    stem = re.sub(r"\W", "_", path.stem)
    module_name = f"fleetbot_plugin_{stem}_{version}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"cannot load plugin from {path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        sys.modules.pop(module_name, None)
        raise
    return module, version


def forget(module: ModuleType) -> None:
    """Drop a replaced plugin module from ``sys.modules``."""
    sys.modules.pop(module.__name__, None)
