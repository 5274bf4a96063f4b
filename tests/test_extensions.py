"""Tests for the pluggy extension manager and the built-in extensions."""

from __future__ import annotations

from conftest import FakeTransport, make_settings

from fleetbot.config import ExtensionConfig
from fleetbot.extensions import get_plugin_manager, hookimpl
from fleetbot.extensions.console import ConsolePresenterExtension


class CustomTransportExtension:
    @hookimpl
    def fleetbot_create_transport(self, account_id, auth_dir, chats, settings):
        return FakeTransport(account_id, auth_dir, chats)


class TestPluginManager:
    def test_builtins_registered(self):
        pm = get_plugin_manager()
        assert pm.get_plugin("builtin-neonize") is not None
        assert pm.get_plugin("builtin-console") is not None

    def test_disabled_extension_skipped(self, monkeypatch):
        s = make_settings(extensions={"console": ExtensionConfig(enabled=False)})
        monkeypatch.setattr("fleetbot.config._settings", s)
        pm = get_plugin_manager()
        assert pm.get_plugin("builtin-console") is None
        assert pm.get_plugin("builtin-neonize") is not None

    def test_later_extension_provides_transport(self, tmp_path):
        pm = get_plugin_manager()
        pm.register(CustomTransportExtension(), name="custom")
        transport = pm.hook.fleetbot_create_transport(
            account_id="bot2", auth_dir=tmp_path, chats={}, settings=make_settings()
        )
        assert isinstance(transport, FakeTransport)
        assert transport.account_id == "bot2"

    def test_presenters_fan_out(self, make_msg):
        seen = []

        class Recorder:
            @hookimpl
            def fleetbot_present_message(self, msg, account_id, plugin):
                seen.append((msg.id, account_id, plugin))

        pm = get_plugin_manager()
        pm.register(Recorder(), name="recorder")
        pm.hook.fleetbot_present_message(msg=make_msg(), account_id="primary", plugin="x.py")
        assert seen == [("MSG1", "primary", "x.py")]


class TestConsolePresenter:
    def test_handles_plain_failed_and_long_messages(self, make_msg):
        ext = ConsolePresenterExtension()
        ext.fleetbot_present_message(make_msg("hi"), "primary", None)

        failed = make_msg(".buy " + "x" * 300)
        failed.error = RuntimeError("boom")
        ext.fleetbot_present_message(failed, "primary", "shop.py")
