"""Tests for the document store and its backends."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from fleetbot.errors import PersistenceError
from fleetbot.state.store import (
    COLLECTIONS,
    CloudAdapter,
    DocumentStore,
    JsonFileAdapter,
    SqliteAdapter,
    adapter_for_url,
)


class SlowAdapter:
    def __init__(self, data=None, *, fail: bool = False) -> None:
        self.data = data
        self.fail = fail
        self.reads = 0
        self.writes: list[dict] = []

    async def read(self):
        self.reads += 1
        await asyncio.sleep(0.01)
        if self.fail:
            raise OSError("disk on fire")
        return self.data

    async def write(self, data):
        if self.fail:
            raise OSError("disk on fire")
        self.writes.append(json.loads(json.dumps(data)))

    async def close(self):
        pass


class TestAdapterForUrl:
    def test_json_path_relative_to_root(self, tmp_path):
        adapter = adapter_for_url("database.json", tmp_path)
        assert isinstance(adapter, JsonFileAdapter)
        assert adapter.path == tmp_path / "database.json"

    def test_sqlite(self, tmp_path):
        adapter = adapter_for_url("sqlite:///data/bot.db", tmp_path)
        assert isinstance(adapter, SqliteAdapter)
        assert adapter.path == tmp_path / "data" / "bot.db"

    def test_cloud(self, tmp_path):
        assert isinstance(adapter_for_url("https://example.com/db", tmp_path), CloudAdapter)


class TestDocumentStore:
    async def test_missing_file_gives_empty_collections(self, tmp_path):
        store = DocumentStore(JsonFileAdapter(tmp_path / "db.json"))
        data = await store.read()
        assert set(COLLECTIONS) <= set(data)
        assert store.loaded
        assert store.users == {}

    async def test_json_file_persists(self, tmp_path: Path):
        path = tmp_path / "db.json"
        store = DocumentStore(JsonFileAdapter(path))
        await store.read()
        store.users["111@s.whatsapp.net"] = {"exp": 5, "name": "Zoë"}
        await store.write()

        reloaded = DocumentStore(JsonFileAdapter(path))
        await reloaded.read()
        assert reloaded.users["111@s.whatsapp.net"] == {"exp": 5, "name": "Zoë"}
        assert not path.with_suffix(".json.tmp").exists()

    async def test_sqlite_persists(self, tmp_path: Path):
        url = "sqlite:///bot.db"
        store = DocumentStore(adapter_for_url(url, tmp_path))
        await store.read()
        store.chats["g@g.us"] = {"welcome": True}
        await store.write()
        store.chats["g@g.us"]["welcome"] = False
        await store.write()
        await store.close()

        reloaded = DocumentStore(adapter_for_url(url, tmp_path))
        await reloaded.read()
        assert reloaded.chats["g@g.us"] == {"welcome": False}
        await reloaded.close()

    async def test_concurrent_reads_share_one_load(self):
        adapter = SlowAdapter({"users": {"a": {}}})
        store = DocumentStore(adapter)
        first, second = await asyncio.gather(store.read(), store.read())
        assert adapter.reads == 1
        assert first is second

    async def test_malformed_collection_reset(self):
        store = DocumentStore(SlowAdapter({"users": [], "chats": {"g": {}}, "extra": 1}))
        await store.read()
        assert store.users == {}
        assert store.chats == {"g": {}}
        assert store.data["extra"] == 1

    async def test_read_failure_raises_persistence_error(self):
        store = DocumentStore(SlowAdapter(fail=True))
        with pytest.raises(PersistenceError):
            await store.read()
        assert not store.loaded

    async def test_write_failure_then_retry(self):
        adapter = SlowAdapter({})
        store = DocumentStore(adapter)
        await store.read()
        store.users["a"] = {"exp": 1}

        adapter.fail = True
        with pytest.raises(PersistenceError):
            await store.write()

        adapter.fail = False
        await store.write()
        assert adapter.writes[-1]["users"] == {"a": {"exp": 1}}
