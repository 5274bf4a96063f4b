"""Plugin module contract.

A plugin is one ``.py`` file in the plugins directory. The loader reads these
module-level names (all optional except a ``handler`` for command plugins)::

    command = ["ping", "p"]            # str | list[str | re.Pattern] | re.Pattern
    tags = ["info"]
    help = ["ping"]
    owner = rowner = mods = premium = False
    group = private = admin = bot_admin = register = False
    exp = 17                           # default when omitted: bot.default_exp
    money = 0
    limit = 0                          # True counts as 1
    level = 0
    disabled = False
    custom_prefix = None               # overrides the session/global prefix
    def fail(kind, m, ctx): ...        # replaces the default rejection notice

    async def all(m, ctx): ...         # every message, before matching
    async def before(m, ctx): ...      # truthy result skips this plugin's phase 1
    async def handler(m, ctx): ...     # the command body
    async def after(m, ctx): ...       # always after the body

Hooks may be plain functions or coroutines.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any


@dataclass(frozen=True)
class Exact:
    value: str


@dataclass(frozen=True)
class AnyOf:
    options: tuple[str | re.Pattern[str], ...]


@dataclass(frozen=True)
class Pattern:
    regex: re.Pattern[str]


type Matcher = Exact | AnyOf | Pattern


def matches(matcher: Matcher | None, token: str) -> bool:
    """True if the lower-cased command ``token`` selects the plugin."""
    match matcher:
        case Exact(value=value):
            return token == value
        case AnyOf(options=options):
            return any(
                opt.search(token) is not None if isinstance(opt, re.Pattern) else opt == token
                for opt in options
            )
        case Pattern(regex=regex):
            return regex.search(token) is not None
        case _:
            return False


def matcher_from(command: Any) -> Matcher | None:
    if command is None:
        return None
    if isinstance(command, str):
        return Exact(command.lower())
    if isinstance(command, re.Pattern):
        return Pattern(command)
    if isinstance(command, list | tuple | set | frozenset):
        options: list[str | re.Pattern[str]] = []
        for opt in command:
            if isinstance(opt, re.Pattern):
                options.append(opt)
            elif isinstance(opt, str):
                options.append(opt.lower())
            else:
                raise TypeError(f"unsupported command entry: {opt!r}")
        return AnyOf(tuple(options))
    raise TypeError(f"unsupported command declaration: {command!r}")


@dataclass(frozen=True)
class Requirements:
    rowner: bool = False
    owner: bool = False
    mods: bool = False
    premium: bool = False
    group: bool = False
    private: bool = False
    admin: bool = False
    bot_admin: bool = False
    register: bool = False


def _hook(module: ModuleType, name: str) -> Callable[..., Any] | None:
    fn = getattr(module, name, None)
    return fn if callable(fn) else None


def _cost(value: Any) -> int:
    if value is True:
        return 1
    if not value:
        return 0
    return int(value)


def _strings(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


@dataclass(frozen=True)
class PluginModule:
    """One loaded plugin version. Replaced wholesale on reload, never mutated."""

    name: str
    path: Path
    version: int
    module: ModuleType = field(repr=False)
    matcher: Matcher | None = None
    tags: tuple[str, ...] = ()
    help: tuple[str, ...] = ()
    requires: Requirements = Requirements()
    exp: int | None = None
    money: int = 0
    limit: int = 0
    level: int = 0
    disabled: bool = False
    custom_prefix: Any = None
    fail: Callable[..., Any] | None = field(default=None, repr=False)
    all: Callable[..., Any] | None = field(default=None, repr=False)
    before: Callable[..., Any] | None = field(default=None, repr=False)
    handler: Callable[..., Any] | None = field(default=None, repr=False)
    after: Callable[..., Any] | None = field(default=None, repr=False)

    @classmethod
    def from_module(cls, name: str, path: Path, module: ModuleType, version: int) -> PluginModule:
        g = module.__dict__.get
        exp = g("exp")
        return cls(
            name=name,
            path=path,
            version=version,
            module=module,
            matcher=matcher_from(g("command")),
            tags=_strings(g("tags")),
            help=_strings(g("help")),
            requires=Requirements(
                rowner=bool(g("rowner", False)),
                owner=bool(g("owner", False)),
                mods=bool(g("mods", False)),
                premium=bool(g("premium", False)),
                group=bool(g("group", False)),
                private=bool(g("private", False)),
                admin=bool(g("admin", False)),
                bot_admin=bool(g("bot_admin", False)),
                register=bool(g("register", False)),
            ),
            exp=None if exp is None else int(exp),
            money=_cost(g("money")),
            limit=_cost(g("limit")),
            level=int(g("level", 0) or 0),
            disabled=bool(g("disabled", False)),
            custom_prefix=g("custom_prefix"),
            fail=_hook(module, "fail"),
            all=_hook(module, "all"),
            before=_hook(module, "before"),
            handler=_hook(module, "handler"),
            after=_hook(module, "after"),
        )

    @property
    def is_admin_tagged(self) -> bool:
        return "admin" in self.tags
