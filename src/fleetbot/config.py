"""Centralized configuration: Pydantic BaseSettings with TOML + dotenv sources.

Non-secret settings live in config.toml. Secrets (API keys the plugins use)
live in .env. Environment variables override both using ``__`` as the nested
delimiter (e.g. ``SECRETS__API_KEYS__OPENAI``). Secrets use SecretStr so they
are masked in logs, and every configured secret is redacted from error text
shown in chats.

Priority (highest wins): init args > env vars > .env > config.toml

Command-line flags are applied on top of the loaded settings by
``apply_overrides`` (see ``fleetbot.__main__``).

Usage::

    from fleetbot.config import get_settings

    s = get_settings()
    print(s.bot.name)
    print(s.antispam.window_seconds)
"""

from __future__ import annotations

from functools import cached_property
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, SecretStr, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from fleetbot.i18n import LANGUAGES

# Characters accepted as a command prefix when none is configured.
DEFAULT_PREFIX_CHARS = "*/!#$%+£¢€¥^°=¶∆×÷π√✓©®&.\\-.@"

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models. Rejects unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class BotConfig(_StrictModel):
    name: str = "fleetbot"
    # Phone numbers (digits only); owners are real owners, mods/prems are elevated users
    owners: list[str] = []
    mods: list[str] = []
    prems: list[str] = []
    prefix: str = DEFAULT_PREFIX_CHARS  # characters, any one of them marks a command
    default_exp: int = 17  # exp earned by a command that declares none
    exp_ceiling: int = 200
    redaction_marker: str = "#HIDDEN#"
    remembered_messages: int = 50  # per chat, kept for antidelete
    language: str = "en"  # used when neither the sender nor the chat chose one

    @field_validator("owners", "mods", "prems")
    @classmethod
    def digits_only(cls, v: list[str]) -> list[str]:
        return ["".join(ch for ch in n if ch.isdigit()) for n in v if n]

    @field_validator("language")
    @classmethod
    def known_language(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in LANGUAGES:
            raise ValueError(f"language must be one of {sorted(LANGUAGES)}")
        return v


class SessionsConfig(_StrictModel):
    auth_dir: str = "session"  # primary account credentials
    fleet_dir: str = "fleet"  # one sub-directory per secondary account
    credentials_file: str = "creds.db"
    fleet_concurrency: int = 4
    reconnect_delay: float = 5.0  # seconds before retrying a failed rebuild

    @field_validator("fleet_concurrency")
    @classmethod
    def clamp_concurrency(cls, v: int) -> int:
        return max(1, v)


class PluginsConfig(_StrictModel):
    directory: str = "plugins"
    watch: bool = True


class AntispamConfig(_StrictModel):
    window_seconds: float = 60.0
    threshold: int = 2  # commands allowed per window; the next one suspends the chat
    suspension_seconds: float = 45.0


class DatabaseConfig(_StrictModel):
    # "database.json" | "sqlite:///path.db" | "https://host/path"
    url: str = "database.json"
    flush_interval: float = 30.0  # seconds


class CacheConfig(_StrictModel):
    group_metadata_ttl: float = 300.0
    group_metadata_max: int = 500
    jid_ttl: float = 600.0
    jid_max: int = 1000


class IntervalsConfig(_StrictModel):
    selective_clear: float = 1800.0  # primary credentials dir, keep pre-keys
    key_purge: float = 1200.0  # primary + fleet dirs
    prekey_purge: float = 10800.0
    prekey_max_age: float = 86400.0
    tmp_max_age: float = 120.0
    tmp_reset: float = 1800.0  # empty the tmp directory


class ServerConfig(_StrictModel):
    host: str = "0.0.0.0"
    port: int = 8484


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


class SecretsConfig(_StrictModel):
    # name -> key, exposed to plugins through HandlerContext.secrets
    api_keys: dict[str, SecretStr] = {}


class ExtensionConfig(_StrictModel):
    enabled: bool = True


class RuntimeConfig(_StrictModel):
    """Process-wide switches, normally set from command-line flags."""

    pairing: Literal["qr", "code"] | None = None
    pairing_number: str | None = None
    mobile: bool = False
    test: bool = False
    self_only: bool = False
    nyimak: bool = False  # observe only, never run commands
    pconly: bool = False
    gconly: bool = False
    restrict: bool = False
    autoread: bool = False
    queque: bool = False
    server: bool = False
    autocleartmp: bool = False


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    bot: BotConfig = BotConfig()
    sessions: SessionsConfig = SessionsConfig()
    plugins: PluginsConfig = PluginsConfig()
    antispam: AntispamConfig = AntispamConfig()
    database: DatabaseConfig = DatabaseConfig()
    cache: CacheConfig = CacheConfig()
    intervals: IntervalsConfig = IntervalsConfig()
    server: ServerConfig = ServerConfig()
    logging: LoggingConfig = LoggingConfig()
    secrets: SecretsConfig = SecretsConfig()
    extensions: dict[str, ExtensionConfig] = {}
    runtime: RuntimeConfig = RuntimeConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > config.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # --- Computed properties ---

    @cached_property
    def project_root(self) -> Path:
        return Path.cwd()

    @cached_property
    def auth_dir(self) -> Path:
        return (self.project_root / self.sessions.auth_dir).resolve()

    @cached_property
    def fleet_dir(self) -> Path:
        return (self.project_root / self.sessions.fleet_dir).resolve()

    @cached_property
    def plugins_dir(self) -> Path:
        return (self.project_root / self.plugins.directory).resolve()

    @cached_property
    def tmp_dir(self) -> Path:
        return (self.project_root / "tmp").resolve()

    @cached_property
    def secret_values(self) -> list[str]:
        """Plain values of every configured secret, longest first."""
        values = [v.get_secret_value() for v in self.secrets.api_keys.values()]
        return sorted((v for v in values if v), key=len, reverse=True)

    def is_real_owner(self, number: str) -> bool:
        return number in self.bot.owners

    def is_mod(self, number: str) -> bool:
        return number in self.bot.mods

    def is_prem(self, number: str) -> bool:
        return number in self.bot.prems


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None


def apply_overrides(**sections: dict[str, Any]) -> Settings:
    """Replace fields of top-level sections on the cached singleton.

    ``apply_overrides(runtime={"self_only": True}, bot={"prefix": "!"})``
    updates only the named fields and keeps everything else loaded from
    config.toml/.env.
    """
    global _settings
    current = get_settings()
    updates = {
        name: getattr(current, name).model_copy(update=fields)
        for name, fields in sections.items()
        if fields
    }
    _settings = current.model_copy(update=updates)
    return _settings
