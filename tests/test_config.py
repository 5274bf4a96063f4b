"""Tests for settings validation, runtime overrides and command-line flags."""

from __future__ import annotations

import pytest
from conftest import make_settings
from pydantic import SecretStr, ValidationError

from fleetbot.__main__ import _parser, main, overrides_from_args
from fleetbot.config import (
    BotConfig,
    LoggingConfig,
    SecretsConfig,
    SessionsConfig,
    apply_overrides,
    get_settings,
)


class TestSubModels:
    def test_numbers_reduced_to_digits(self):
        bot = BotConfig(owners=["+39 123-456", ""], mods=["(222)"])
        assert bot.owners == ["39123456"]
        assert bot.mods == ["222"]

    def test_fleet_concurrency_clamped(self):
        assert SessionsConfig(fleet_concurrency=0).fleet_concurrency == 1

    def test_log_level_normalized(self):
        assert LoggingConfig(level="debug").level == "DEBUG"

    def test_unknown_key_rejected(self):
        with pytest.raises(ValidationError):
            BotConfig(prefixes="!")

    def test_secret_values_longest_first(self):
        s = make_settings(
            secrets=SecretsConfig(
                api_keys={
                    "a": SecretStr("abc"),
                    "b": SecretStr("abcdef"),
                    "c": SecretStr(""),
                }
            )
        )
        assert s.secret_values == ["abcdef", "abc"]

    def test_owner_lookups(self):
        s = make_settings(bot=BotConfig(owners=["111"], mods=["222"], prems=["333"]))
        assert s.is_real_owner("111") and not s.is_real_owner("222")
        assert s.is_mod("222")
        assert s.is_prem("333")


class TestApplyOverrides:
    def test_only_named_fields_change(self):
        before = get_settings()
        after = apply_overrides(runtime={"self_only": True}, bot={"prefix": "!"})
        assert after.runtime.self_only is True
        assert after.runtime.queque is False
        assert after.bot.prefix == "!"
        assert after.bot.name == before.bot.name
        assert get_settings() is after

    def test_empty_sections_ignored(self):
        before = get_settings()
        after = apply_overrides(runtime={})
        assert after.runtime == before.runtime


class TestFlags:
    def _overrides(self, *argv: str) -> dict:
        return overrides_from_args(_parser().parse_args(list(argv)))

    def test_no_flags(self):
        assert self._overrides() == {"runtime": {}}

    def test_switches(self):
        runtime = self._overrides("--self", "--queque", "--gconly", "--server")["runtime"]
        assert runtime == {"self_only": True, "queque": True, "gconly": True, "server": True}

    def test_qr(self):
        assert self._overrides("--qr")["runtime"] == {"pairing": "qr"}

    def test_code_with_number(self):
        runtime = self._overrides("--code", "+39 123")["runtime"]
        assert runtime == {"pairing": "code", "pairing_number": "39123"}

    def test_database_and_prefix(self):
        sections = self._overrides("--db", "sqlite:///bot.db", "--prefix", "!.")
        assert sections["database"] == {"url": "sqlite:///bot.db"}
        assert sections["bot"] == {"prefix": "!."}

    @pytest.mark.parametrize("argv", [["--qr", "--code"], ["--pconly", "--gconly"]])
    def test_exclusive_flags(self, argv):
        with pytest.raises(SystemExit):
            _parser().parse_args(argv)


class TestMain:
    def test_code_prompt_and_run(self, monkeypatch):
        started = []

        class FakeApp:
            def __init__(self, settings):
                self.settings = settings

            async def run(self):
                started.append(self.settings)

        monkeypatch.setattr("fleetbot.app.FleetbotApp", FakeApp)
        monkeypatch.setattr("fleetbot.logger.set_level", lambda level: None)
        monkeypatch.setattr("builtins.input", lambda prompt: "39 555 0000")

        main(["--code", "--autoread"])

        [settings] = started
        assert settings.runtime.pairing == "code"
        assert settings.runtime.pairing_number == "395550000"
        assert settings.runtime.autoread is True
