"""Embedded HTTP server for health checks (``--server``).

``GET /status`` reports every session with its state and generation, the
number of loaded plugins and the process uptime.
"""

from __future__ import annotations

import time
from typing import Any, Protocol

from aiohttp import web

from fleetbot.logger import logger

_start_time = time.monotonic()


class StatusDeps(Protocol):
    """Dependencies injected by app.py."""

    def sessions_status(self) -> list[dict[str, Any]]: ...

    def plugin_count(self) -> int: ...


deps_key = web.AppKey("deps", StatusDeps)


async def _handle_status(request: web.Request) -> web.Response:
    deps = request.app[deps_key]
    sessions = deps.sessions_status()
    return web.json_response(
        {
            "status": "ok" if any(s["state"] == "open" for s in sessions) else "degraded",
            "uptime_seconds": round(time.monotonic() - _start_time),
            "plugins": deps.plugin_count(),
            "sessions": sessions,
        }
    )


def build_app(deps: StatusDeps) -> web.Application:
    app = web.Application()
    app[deps_key] = deps
    app.router.add_get("/status", _handle_status)
    return app


async def start_http_server(deps: StatusDeps, host: str, port: int) -> web.AppRunner:
    """Create, start, and return the HTTP server runner."""
    runner = web.AppRunner(build_app(deps))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("HTTP server listening", host=host, port=port)
    return runner
