"""Tests for the session supervisor: connection state machine and reloads."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path

import pytest
from conftest import FakeTransportFactory, make_settings, write_plugin

from fleetbot.config import SessionsConfig
from fleetbot.dispatch import listeners as default_listeners
from fleetbot.dispatch.pipeline import DispatchPipeline
from fleetbot.errors import AuthExpired, TransportDisconnect, UnknownDisconnect
from fleetbot.plugins.registry import PluginRegistry
from fleetbot.state.store import DocumentStore, JsonFileAdapter
from fleetbot.supervisor import PRIMARY, SessionState, Supervisor
from fleetbot.transport.base import ALL_EVENTS, CONNECTION_UPDATE, MESSAGES_UPSERT
from fleetbot.types import ConnectionUpdate


HANDLERS_V2 = """
async def on_message(pipeline, transport, msg):
    await transport.send_message(msg.chat, "v2")


async def on_participants_update(pipeline, transport, update):
    pass


async def on_groups_update(pipeline, transport, update):
    pass


async def on_message_delete(pipeline, transport, notice):
    pass


async def on_call(pipeline, transport, call):
    pass
"""


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


def _close(reason: str) -> ConnectionUpdate:
    return ConnectionUpdate("close", reason=reason)


@pytest.fixture
def auth_dir(tmp_path: Path) -> Path:
    d = tmp_path / "session"
    d.mkdir()
    (d / "creds.db").write_bytes(b"")
    return d


@pytest.fixture
def factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def sup(tmp_path: Path, auth_dir: Path, factory: FakeTransportFactory) -> Supervisor:
    settings = make_settings(
        project_root=tmp_path,
        auth_dir=auth_dir,
        fleet_dir=tmp_path / "fleet",
        sessions=SessionsConfig(reconnect_delay=0.01),
    )
    holder: dict[str, Supervisor] = {}
    registry = PluginRegistry(tmp_path / "plugins")
    write_plugin(
        tmp_path / "plugins",
        "echo.py",
        'command = "echo"\nasync def handler(m, ctx):\n    await ctx.reply(m, ctx.text)\n',
    )
    registry.load_all()
    pipeline = DispatchPipeline(
        settings,
        DocumentStore(JsonFileAdapter(tmp_path / "db.json")),
        registry,
        lambda account_id: holder["sup"].lookup(account_id),
    )
    holder["sup"] = Supervisor(settings, pipeline, factory)
    return holder["sup"]


class TestConnect:
    async def test_primary_opens(self, sup, factory):
        session = await sup.start_primary()
        assert session.state is SessionState.OPEN
        assert session.is_init
        assert session.generation == 1
        assert sup.lookup(PRIMARY) is session
        assert len(factory.created) == 1

    async def test_missing_credentials_raise_auth_expired(self, sup, auth_dir):
        (auth_dir / "creds.db").unlink()
        with pytest.raises(AuthExpired):
            await sup.start_primary()
        assert sup.lookup(PRIMARY) is None

    async def test_interactive_skips_credentials_check(self, sup, auth_dir):
        (auth_dir / "creds.db").unlink()
        session = await sup.connect(PRIMARY, auth_dir, interactive=True)
        assert session.state is SessionState.OPEN

    async def test_transport_auth_failure_closes_session(self, sup, factory):
        factory.connect_errors[PRIMARY] = AuthExpired(PRIMARY, "logged out elsewhere")
        with pytest.raises(AuthExpired):
            await sup.start_primary()
        assert factory.created[0].closed
        assert factory.created[0].events.listener_count() == 0
        assert sup.lookup(PRIMARY) is None

    async def test_fleet_failures_are_isolated(self, sup, factory, tmp_path):
        fleet = tmp_path / "fleet"
        for name in ("alice", "bob"):
            (fleet / name).mkdir(parents=True)
            (fleet / name / "creds.db").write_bytes(b"")
        (fleet / "unlinked").mkdir()
        factory.connect_errors["fleet:bob"] = RuntimeError("network down")

        opened = await sup.start_fleet()

        assert [s.account_id for s in opened] == ["fleet:alice"]
        assert sup.lookup("fleet:bob") is None
        assert sup.lookup("fleet:unlinked") is None
        assert {t.account_id for t in factory.created} == {"fleet:alice", "fleet:bob"}

    async def test_no_fleet_directory(self, sup):
        assert await sup.start_fleet() == []


class TestConnectionUpdates:
    @pytest.mark.parametrize(
        "reason", ["connection_lost", "timed_out", "restart_required", "connection_closed"]
    )
    async def test_transient_reasons_rebuild(self, sup, factory, reason):
        old = await sup.start_primary()

        result = sup.on_connection_update(PRIMARY, _close(reason))

        assert isinstance(result, TransportDisconnect)
        assert not result.terminal
        await wait_until(lambda: sup.lookup(PRIMARY).generation == 2)
        new = sup.lookup(PRIMARY)
        await wait_until(lambda: new.state is SessionState.OPEN)
        assert new is not old
        assert old.state is SessionState.CLOSED
        assert old.transport.closed
        assert old.transport.events.listener_count() == 0
        assert new.is_init

    @pytest.mark.parametrize("reason", ["logged_out", "bad_session", "connection_replaced"])
    async def test_terminal_reasons_close(self, sup, factory, reason):
        session = await sup.start_primary()

        result = sup.on_connection_update(PRIMARY, _close(reason))

        assert isinstance(result, TransportDisconnect)
        assert result.terminal
        assert not isinstance(result, UnknownDisconnect)
        await wait_until(lambda: session.transport.closed)
        assert session.state is SessionState.CLOSED
        assert len(factory.created) == 1

    async def test_unknown_reason(self, sup, factory):
        session = await sup.start_primary()
        result = sup.on_connection_update(PRIMARY, _close("martians"))
        assert isinstance(result, UnknownDisconnect)
        await wait_until(lambda: session.transport.closed)
        assert len(factory.created) == 1

    async def test_close_while_closing_is_ignored(self, sup, factory):
        session = await sup.start_primary()
        sup.on_connection_update(PRIMARY, _close("logged_out"))
        assert sup.on_connection_update(PRIMARY, _close("connection_lost")) is None
        await wait_until(lambda: session.transport.closed)
        assert len(factory.created) == 1

    async def test_close_event_through_transport(self, sup, factory):
        session = await sup.start_primary()
        await session.transport.events.deliver(CONNECTION_UPDATE, _close("connection_lost"))
        await wait_until(lambda: len(factory.created) == 2)
        await wait_until(lambda: sup.lookup(PRIMARY).state is SessionState.OPEN)

    async def test_warnings_are_deduplicated_until_open(self, sup):
        await sup.start_primary()
        assert sup._warn_once(PRIMARY, "logged_out", "hint")
        assert not sup._warn_once(PRIMARY, "logged_out", "hint")
        sup.on_connection_update(PRIMARY, ConnectionUpdate("open"))
        assert sup._warn_once(PRIMARY, "logged_out", "hint")

    async def test_update_for_unknown_account(self, sup):
        assert sup.on_connection_update("fleet:nobody", _close("connection_lost")) is None


class TestReload:
    async def test_concurrent_rebuilds_share_one_session(self, sup, factory, make_msg):
        old = await sup.start_primary()

        first, second = await asyncio.gather(
            sup.reload(PRIMARY, rebuild_transport=True),
            sup.reload(PRIMARY, rebuild_transport=True),
        )

        assert first is second
        assert len(factory.created) == 2
        assert first.generation == 2
        assert old.transport.events.listener_count() == 0
        for event in ALL_EVENTS:
            assert first.transport.events.listener_count(event) == 1

        await first.transport.events.deliver(MESSAGES_UPSERT, make_msg(".echo hi"))
        assert first.transport.texts == ["hi"]

    async def test_rebuild_keeps_chats_and_prefix(self, sup):
        old = await sup.start_primary()
        old.transport.chats["x@g.us"] = {"subject": "X"}
        old.prefix = "!"

        new = await sup.reload(PRIMARY, rebuild_transport=True)

        assert new.transport.chats is old.transport.chats
        assert new.prefix == "!"

    async def test_handler_reload_rebinds_same_session(self, sup):
        session = await sup.start_primary()

        again = await sup.reload(PRIMARY)

        assert again is session
        assert sup.handlers is not default_listeners
        assert session.transport.events.listener_count(MESSAGES_UPSERT) == 1

    async def test_handler_reload_rebinds_every_live_session(self, sup, tmp_path, make_msg):
        fleet = tmp_path / "fleet" / "bot2"
        fleet.mkdir(parents=True)
        (fleet / "creds.db").write_bytes(b"")
        primary = await sup.start_primary()
        other = await sup.connect("fleet:bot2", fleet)
        source = tmp_path / "listeners.py"
        source.write_text(HANDLERS_V2)
        sup._handlers_path = source

        assert sup.reload_handlers() is True

        for session in (primary, other):
            for event in ALL_EVENTS:
                assert session.transport.events.listener_count(event) == 1
            await session.transport.events.deliver(
                MESSAGES_UPSERT, make_msg(".echo hi", account_id=session.account_id)
            )
            assert session.transport.texts == ["v2"]

    async def test_reconnect_keeps_loaded_handlers(self, sup):
        await sup.start_primary()

        await sup.reload(PRIMARY, rebuild_transport=True, reimport=False)

        assert sup.handlers is default_listeners

    async def test_broken_handler_source_keeps_previous(self, sup, tmp_path):
        before = sup.handlers
        broken = tmp_path / "listeners.py"
        broken.write_text("def on_message(\n")
        sup._handlers_path = broken

        assert sup.reload_handlers() is False
        assert sup.handlers is before

    async def test_rebuild_auth_failure_shuts_down(self, sup, factory):
        await sup.start_primary()
        factory.connect_errors[PRIMARY] = AuthExpired(PRIMARY)

        new = await sup.reload(PRIMARY, rebuild_transport=True)

        assert new.state is SessionState.CLOSED
        assert new.transport.closed

    async def test_rebuild_failure_retries(self, sup, factory):
        await sup.start_primary()
        factory.connect_errors[PRIMARY] = RuntimeError("network down")

        failed = await sup.reload(PRIMARY, rebuild_transport=True)
        assert failed.state is SessionState.CONNECTING
        del factory.connect_errors[PRIMARY]

        await wait_until(lambda: sup.lookup(PRIMARY).state is SessionState.OPEN)
        assert sup.lookup(PRIMARY).generation >= 3

    async def test_reload_unknown_account(self, sup):
        with pytest.raises(KeyError):
            await sup.reload("fleet:nobody")


class TestStop:
    async def test_stop_closes_every_session(self, sup, factory):
        await sup.start_primary()
        await sup.stop()
        assert all(t.closed for t in factory.created)
        assert sup.open_sessions() == []
