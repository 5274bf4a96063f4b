"""Shared utility functions.

Small helpers used across multiple modules: background tasks that log their
failures, atomic JSON writes, a size-bounded TTL cache and secret redaction.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import time
from collections.abc import Callable, Coroutine, Iterable
from pathlib import Path
from typing import Any, Generic, TypeVar

from fleetbot.logger import logger

K = TypeVar("K")
V = TypeVar("V")


def write_json_atomic(path: Path, data: Any, *, indent: int | None = None) -> None:
    """Write JSON data to a file using atomic rename (tmp → final).

    Readers either see the old content or the complete new content.
    Creates parent directories if they don't exist.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=indent, ensure_ascii=False))
    tmp.rename(path)


def create_background_task(
    coro: Coroutine[Any, Any, Any],
    *,
    name: str | None = None,
) -> asyncio.Task[Any]:
    """Create an asyncio task that logs exceptions instead of swallowing them.

    A drop-in replacement for ``asyncio.create_task`` for fire-and-forget
    work (session rebuilds, flushes, notices) where we don't await the result
    but still want failures to appear in logs.
    """
    task = asyncio.create_task(coro, name=name)
    task.add_done_callback(_log_task_exception)
    return task


def _log_task_exception(task: asyncio.Task[Any]) -> None:
    """Callback attached to background tasks: logs unhandled exceptions."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        # logger.exception() won't work here because we're in a done-callback,
        # not an except handler.
        logger.error(
            "Background task failed",
            task_name=task.get_name(),
            exc_info=exc,
        )


async def maybe_await(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Call ``fn`` and await the result if it is awaitable.

    Plugin hooks may be plain functions or coroutines.
    """
    result = fn(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


def redact(text: str, secrets: Iterable[str], marker: str) -> str:
    """Replace every occurrence of each secret in ``text`` with ``marker``."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, marker)
    return text


class TTLCache(Generic[K, V]):
    """A small TTL cache with a size bound.

    Entries expire ``ttl`` seconds after they were stored. When full, the
    oldest entry is evicted. Single-loop async use only.
    """

    def __init__(
        self,
        ttl: float,
        max_size: int = 100,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._max_size = max_size
        self._clock = clock
        self._cache: dict[K, tuple[V, float]] = {}

    def get(self, key: K) -> V | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if self._clock() - stored_at > self._ttl:
            self._cache.pop(key, None)
            return None
        return value

    def set(self, key: K, value: V) -> None:
        if key not in self._cache and len(self._cache) >= self._max_size:
            self._evict_oldest()
        self._cache[key] = (value, self._clock())

    def invalidate(self, key: K) -> None:
        self._cache.pop(key, None)

    def clear(self) -> None:
        self._cache.clear()

    def cleanup(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        now = self._clock()
        expired = [k for k, (_, at) in self._cache.items() if now - at > self._ttl]
        for key in expired:
            del self._cache[key]
        return len(expired)

    def _evict_oldest(self) -> None:
        if not self._cache:
            return
        oldest = min(self._cache, key=lambda k: self._cache[k][1])
        del self._cache[oldest]

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._cache)
