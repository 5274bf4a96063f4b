"""Shared test fixtures for fleetbot."""

from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Any

import pytest

from fleetbot.transport.base import CONNECTION_UPDATE, TransportEvents
from fleetbot.types import ConnectionUpdate, GroupMetadata, InboundMessage, MessageKey

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, importable by test files)
# ---------------------------------------------------------------------------

# Cached property names that must be set via __dict__ (not model_construct).
_CACHED_PROPERTY_NAMES = frozenset(
    {
        "project_root",
        "auth_dir",
        "fleet_dir",
        "plugins_dir",
        "tmp_dir",
    }
)


def make_settings(**overrides):
    """Create a Settings object with sensible defaults for testing.

    Accepts both model fields (bot, antispam, etc.) and cached property
    overrides (project_root, auth_dir, fleet_dir, ...).

    Usage::

        s = make_settings(auth_dir=tmp_path / "session")
        s = make_settings(bot=BotConfig(owners=["111"]))
    """
    from fleetbot.config import (
        AntispamConfig,
        BotConfig,
        CacheConfig,
        DatabaseConfig,
        IntervalsConfig,
        LoggingConfig,
        PluginsConfig,
        RuntimeConfig,
        SecretsConfig,
        ServerConfig,
        SessionsConfig,
        Settings,
    )

    cached = {k: overrides.pop(k) for k in list(overrides) if k in _CACHED_PROPERTY_NAMES}

    defaults = {
        "bot": BotConfig(),
        "sessions": SessionsConfig(reconnect_delay=0.01),
        "plugins": PluginsConfig(watch=False),
        "antispam": AntispamConfig(),
        "database": DatabaseConfig(),
        "cache": CacheConfig(),
        "intervals": IntervalsConfig(),
        "server": ServerConfig(),
        "logging": LoggingConfig(),
        "secrets": SecretsConfig(),
        "extensions": {},
        "runtime": RuntimeConfig(),
    }
    defaults.update(overrides)
    s = Settings.model_construct(**defaults)

    for key, value in cached.items():
        s.__dict__[key] = value

    return s


def write_plugin(directory: Path, name: str, source: str) -> Path:
    """Write a plugin file (dedented) and return its path."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(textwrap.dedent(source))
    return path


class FakeTransport:
    """In-memory transport: records every outbound call.

    ``connect`` reports "open" through the event stream the same way the
    neonize transport does, unless ``connect_error`` is set.
    """

    def __init__(
        self,
        account_id: str = "primary",
        auth_dir: Path | None = None,
        chats: dict[str, Any] | None = None,
        *,
        user_jid: str = "999@s.whatsapp.net",
    ) -> None:
        self.account_id = account_id
        self.auth_dir = auth_dir
        self.events = TransportEvents()
        self.chats: dict[str, Any] = chats if chats is not None else {}
        self._user_jid = user_jid
        self.metadata: dict[str, GroupMetadata] = {}
        self.metadata_error: Exception | None = None
        self.metadata_calls = 0
        self.sent: list[tuple[str, str, dict[str, Any]]] = []
        self.deleted: list[MessageKey] = []
        self.read: list[MessageKey] = []
        self.blocked: list[tuple[str, str]] = []
        self.connect_error: BaseException | None = None
        self.connect_calls = 0
        self.closed = False

    @property
    def user_jid(self) -> str:
        return self._user_jid

    @property
    def texts(self) -> list[str]:
        return [text for _chat, text, _kw in self.sent]

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_error is not None:
            raise self.connect_error
        await self.events.deliver(CONNECTION_UPDATE, ConnectionUpdate("open"))

    async def send_message(self, chat, text, *, quoted=None, mentions=None):
        self.sent.append((chat, text, {"quoted": quoted, "mentions": mentions}))

    async def relay_message(self, chat, message):
        self.sent.append((chat, str(message), {}))

    async def delete_message(self, key):
        self.deleted.append(key)

    async def group_metadata(self, chat):
        self.metadata_calls += 1
        if self.metadata_error is not None:
            raise self.metadata_error
        return self.metadata.get(chat, GroupMetadata.empty(chat))

    async def profile_picture_url(self, jid):
        return None

    async def update_block_status(self, jid, action):
        self.blocked.append((jid, action))

    async def read_messages(self, keys):
        self.read.extend(keys)

    def decode_jid(self, jid):
        return jid

    async def close(self):
        self.closed = True

    async def save_credentials(self):
        pass


class FakeTransportFactory:
    """TransportFactory that hands out FakeTransports and remembers them."""

    def __init__(self) -> None:
        self.created: list[FakeTransport] = []
        self.connect_errors: dict[str, BaseException] = {}

    def __call__(self, account_id: str, auth_dir: Path, chats: dict[str, Any]) -> FakeTransport:
        t = FakeTransport(account_id, auth_dir, chats)
        if account_id in self.connect_errors:
            t.connect_error = self.connect_errors[account_id]
        self.created.append(t)
        return t

    def for_account(self, account_id: str) -> list[FakeTransport]:
        return [t for t in self.created if t.account_id == account_id]


class FakeSession:
    """Minimal SessionView for driving the pipeline without a supervisor."""

    def __init__(self, transport: FakeTransport, prefix: Any = None) -> None:
        self.transport = transport
        self.prefix = prefix


class FixedRng:
    """Stands in for random.Random: always returns the lower bound."""

    def randint(self, a: int, b: int) -> int:
        return a


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Ensure each test starts with a clean Settings singleton.

    Uses ``make_settings()`` to build from pure defaults: no config.toml,
    no .env, no file I/O.
    """
    safe = make_settings()
    monkeypatch.setattr("fleetbot.config._settings", safe)


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_msg():
    """Factory fixture for creating inbound messages with defaults."""

    def _make(
        text: str = "hello",
        *,
        id: str = "MSG1",
        chat: str = "120363000000000001@g.us",
        sender: str = "111@s.whatsapp.net",
        from_me: bool = False,
        account_id: str = "primary",
        push_name: str = "Alice",
        mentioned: list[str] | None = None,
    ) -> InboundMessage:
        return InboundMessage(
            key=MessageKey(chat=chat, id=id, from_me=from_me, participant=sender),
            sender=sender,
            text=text,
            push_name=push_name,
            timestamp=1_700_000_000.0,
            mentioned=mentioned or [],
            account_id=account_id,
        )

    return _make


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
