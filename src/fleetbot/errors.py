"""Exception taxonomy.

Everything the runtime raises on purpose derives from ``FleetbotError`` so the
supervisor and pipeline boundaries can tell expected failures from bugs.
"""

from __future__ import annotations

from enum import StrEnum


class FleetbotError(Exception):
    """Base class for runtime errors."""


class AuthExpired(FleetbotError):
    """Credentials are missing or no longer accepted; interactive linking is required."""

    def __init__(self, account_id: str, detail: str = "") -> None:
        self.account_id = account_id
        msg = f"{account_id}: re-authentication required"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class TransportDisconnect(FleetbotError):
    """A session's connection closed. ``terminal`` means no automatic retry."""

    def __init__(self, account_id: str, reason: str, *, terminal: bool) -> None:
        self.account_id = account_id
        self.reason = reason
        self.terminal = terminal
        super().__init__(f"{account_id}: disconnected ({reason})")


class UnknownDisconnect(TransportDisconnect):
    """Disconnect cause the supervisor cannot classify. Logged once, not retried."""

    def __init__(self, account_id: str, reason: str) -> None:
        super().__init__(account_id, reason, terminal=True)


class PluginImportError(FleetbotError):
    """A plugin file raised while being imported. Siblings are unaffected."""

    def __init__(self, name: str, cause: BaseException) -> None:
        self.name = name
        self.cause = cause
        super().__init__(f"plugin {name!r} failed to import: {cause}")


class PluginSyntaxError(FleetbotError):
    """A plugin update does not compile. The previously loaded version stays active."""

    def __init__(self, name: str, cause: SyntaxError) -> None:
        self.name = name
        self.cause = cause
        super().__init__(f"plugin {name!r} has a syntax error at line {cause.lineno}: {cause.msg}")


class GuardKind(StrEnum):
    """Reason tags passed to a plugin's ``fail`` callback."""

    BANNED = "banned"
    ADMIN_MODE = "admin_mode"
    ROWNER = "rowner"
    OWNER = "owner"
    MODS = "mods"
    PREMIUM = "premium"
    GROUP = "group"
    BOT_ADMIN = "botAdmin"
    ADMIN = "admin"
    PRIVATE = "private"
    UNREG = "unreg"
    EXP_CEILING = "exp_ceiling"
    MONEY = "money"
    LIMIT = "limit"
    LEVEL = "level"


class GuardRejection(FleetbotError):
    """Expected control flow: the matched plugin may not run for this sender."""

    def __init__(self, kind: GuardKind, plugin: str) -> None:
        self.kind = kind
        self.plugin = plugin
        super().__init__(f"{plugin}: rejected ({kind})")


class PluginExecutionError(FleetbotError):
    """A plugin body raised. Carries the already-redacted text shown in the chat."""

    def __init__(self, plugin: str, cause: BaseException, text: str) -> None:
        self.plugin = plugin
        self.cause = cause
        self.text = text
        super().__init__(f"{plugin}: {text}")


class PersistenceError(FleetbotError):
    """The document store could not be read or written. Retried on the next flush."""
