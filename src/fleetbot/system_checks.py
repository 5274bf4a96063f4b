"""Startup checks for external media tools.

Plugins that convert stickers, audio or images need ffmpeg or an
ImageMagick-style converter. Which of them exist is checked once at
startup and handed to plugins as ``ctx.support``; a plugin reads it
instead of spawning the tool and failing mid-command.
"""

from __future__ import annotations

import subprocess
from dataclasses import asdict, dataclass

from fleetbot.logger import logger

# Exit status a POSIX shell uses for "command not found"
_NOT_FOUND = 127

TOOL_COMMANDS: dict[str, list[str]] = {
    "ffmpeg": ["ffmpeg", "-version"],
    "ffprobe": ["ffprobe", "-version"],
    "ffmpeg_webp": [
        "ffmpeg",
        "-hide_banner",
        "-loglevel",
        "error",
        "-filter_complex",
        "color",
        "-frames:v",
        "1",
        "-f",
        "webp",
        "-",
    ],
    "convert": ["convert", "-version"],
    "magick": ["magick", "-version"],
    "gm": ["gm", "-version"],
    "find": ["find", "--version"],
}


@dataclass(frozen=True)
class ToolSupport:
    """Which media tools can be run on this host. Immutable once detected."""

    ffmpeg: bool = False
    ffprobe: bool = False
    ffmpeg_webp: bool = False
    convert: bool = False
    magick: bool = False
    gm: bool = False
    find: bool = False

    @property
    def image_converter(self) -> str | None:
        """First ImageMagick-compatible binary available, if any."""
        for name in ("magick", "convert", "gm"):
            if getattr(self, name):
                return name
        return None


def tool_available(argv: list[str], *, timeout: float = 5) -> bool:
    """True if ``argv`` could be started. Any exit status except 127 counts."""
    try:
        result = subprocess.run(argv, capture_output=True, timeout=timeout)
    except FileNotFoundError:
        return False
    except PermissionError as exc:
        logger.debug("Tool not executable", tool=argv[0], err=str(exc))
        return False
    except subprocess.TimeoutExpired:
        # It started, it just did not finish
        return True
    return result.returncode != _NOT_FOUND


def detect_tools() -> ToolSupport:
    """Run every tool check. Blocking; call it from a worker thread."""
    support = ToolSupport(**{name: tool_available(argv) for name, argv in TOOL_COMMANDS.items()})
    missing = [name for name, ok in asdict(support).items() if not ok]
    if missing:
        logger.warning("Some media tools are unavailable (non-fatal)", missing=missing)
    else:
        logger.info("All media tools available")
    return support
