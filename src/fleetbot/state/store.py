"""Persisted document store.

One JSON-shaped root object with the collections ``users``, ``chats``,
``stats``, ``msgs``, ``sticker`` and ``settings``. It is read once at startup,
mutated in memory by the pipeline and written back by the periodic flush.

The backend is picked from ``database.url``:

- ``https://...`` / ``http://...``: a remote JSON document (GET to load, POST to save)
- ``sqlite:///path.db``: a single-row table in a local SQLite file
- anything else: a JSON file path, written atomically
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Protocol

import aiohttp
import aiosqlite

from fleetbot.errors import PersistenceError
from fleetbot.logger import logger
from fleetbot.utils import write_json_atomic

COLLECTIONS = ("users", "chats", "stats", "msgs", "sticker", "settings")


class StoreAdapter(Protocol):
    """Backend contract: load and save the whole root object."""

    async def read(self) -> dict[str, Any] | None: ...

    async def write(self, data: dict[str, Any]) -> None: ...

    async def close(self) -> None: ...


class JsonFileAdapter:
    def __init__(self, path: Path) -> None:
        self.path = path

    async def read(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        text = await asyncio.to_thread(self.path.read_text)
        return json.loads(text) if text.strip() else None

    async def write(self, data: dict[str, Any]) -> None:
        await asyncio.to_thread(write_json_atomic, self.path, data)

    async def close(self) -> None:
        pass


class SqliteAdapter:
    """Stores the root object as one JSON blob in ``documents(id=1)``."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._db: aiosqlite.Connection | None = None

    async def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(str(self.path))
            await self._db.execute(
                "CREATE TABLE IF NOT EXISTS documents ("
                "id INTEGER PRIMARY KEY CHECK (id = 1), data TEXT NOT NULL)"
            )
            await self._db.commit()
        return self._db

    async def read(self) -> dict[str, Any] | None:
        db = await self._conn()
        async with db.execute("SELECT data FROM documents WHERE id = 1") as cursor:
            row = await cursor.fetchone()
        return json.loads(row[0]) if row else None

    async def write(self, data: dict[str, Any]) -> None:
        db = await self._conn()
        await db.execute(
            "INSERT INTO documents (id, data) VALUES (1, ?) "
            "ON CONFLICT(id) DO UPDATE SET data = excluded.data",
            (json.dumps(data, ensure_ascii=False),),
        )
        await db.commit()

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None


class CloudAdapter:
    """Remote JSON document: ``GET url`` returns it, ``POST url`` replaces it."""

    def __init__(self, url: str, *, timeout: float = 30.0) -> None:
        self.url = url
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def read(self) -> dict[str, Any] | None:
        async with self._client().get(self.url) as resp:
            if resp.status == 404:
                return None
            resp.raise_for_status()
            data = await resp.json(content_type=None)
        return data or None

    async def write(self, data: dict[str, Any]) -> None:
        async with self._client().post(self.url, json=data) as resp:
            resp.raise_for_status()

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None


def adapter_for_url(url: str, root: Path) -> StoreAdapter:
    if url.startswith(("http://", "https://")):
        return CloudAdapter(url)
    if url.startswith("sqlite:///"):
        path = Path(url.removeprefix("sqlite:///"))
        return SqliteAdapter(path if path.is_absolute() else root / path)
    path = Path(url)
    return JsonFileAdapter(path if path.is_absolute() else root / path)


class DocumentStore:
    """In-memory root object plus the adapter that persists it.

    Concurrent ``read()`` calls share the one in flight. There is no
    transactional isolation: plugins mutate the dicts directly and the
    last write before a flush wins.
    """

    def __init__(self, adapter: StoreAdapter) -> None:
        self.adapter = adapter
        self.data: dict[str, Any] = _empty_root()
        self.loaded = False
        self._pending_read: asyncio.Future[dict[str, Any]] | None = None

    async def read(self) -> dict[str, Any]:
        if self._pending_read is not None:
            return await asyncio.shield(self._pending_read)
        loop = asyncio.get_running_loop()
        self._pending_read = loop.create_future()
        try:
            raw = await self.adapter.read()
        except Exception as exc:
            err = PersistenceError(f"read failed: {exc}")
            self._pending_read.set_exception(err)
            # Mark retrieved so an unawaited future doesn't warn
            self._pending_read.exception()
            raise err from exc
        else:
            self.data = _normalize(raw)
            self.loaded = True
            self._pending_read.set_result(self.data)
            return self.data
        finally:
            self._pending_read = None

    async def write(self) -> None:
        try:
            await self.adapter.write(self.data)
        except Exception as exc:
            raise PersistenceError(f"write failed: {exc}") from exc

    async def close(self) -> None:
        await self.adapter.close()

    # --- Collections ---

    @property
    def users(self) -> dict[str, dict[str, Any]]:
        return self.data["users"]

    @property
    def chats(self) -> dict[str, dict[str, Any]]:
        return self.data["chats"]

    @property
    def stats(self) -> dict[str, dict[str, Any]]:
        return self.data["stats"]

    @property
    def msgs(self) -> dict[str, dict[str, Any]]:
        return self.data["msgs"]

    @property
    def sticker(self) -> dict[str, Any]:
        return self.data["sticker"]

    @property
    def settings(self) -> dict[str, dict[str, Any]]:
        return self.data["settings"]


def _empty_root() -> dict[str, Any]:
    return {name: {} for name in COLLECTIONS}


def _normalize(raw: dict[str, Any] | None) -> dict[str, Any]:
    data = dict(raw or {})
    for name in COLLECTIONS:
        if not isinstance(data.get(name), dict):
            if name in data:
                logger.warning("Store collection malformed, resetting", collection=name)
            data[name] = {}
    return data
