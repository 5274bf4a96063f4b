"""Prefix grammar and command parsing.

A prefix rule is a string, a compiled pattern or a list of either. Strings
must start the text; patterns are matched at the start of the text (use
``re.match`` semantics). A rule that matches the empty string never marks a
command.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field

type PrefixRule = str | re.Pattern[str] | Sequence[str | re.Pattern[str]]


def build_prefix(chars: str) -> re.Pattern[str]:
    """Character-class rule: any one of ``chars`` starts a command."""
    unique = "".join(dict.fromkeys(chars))
    return re.compile("^[" + "".join(re.escape(ch) for ch in unique) + "]")


def match_prefix(text: str, rule: PrefixRule | None) -> str | None:
    """The prefix ``text`` starts with under ``rule``, or None."""
    if rule is None or not text:
        return None
    if isinstance(rule, str):
        return rule if rule and text.startswith(rule) else None
    if isinstance(rule, re.Pattern):
        m = rule.match(text)
        return m.group(0) if m and m.group(0) else None
    for item in rule:
        used = match_prefix(text, item)
        if used:
            return used
    return None


def effective_prefix(
    plugin_prefix: PrefixRule | None,
    session_prefix: PrefixRule | None,
    global_prefix: PrefixRule,
) -> PrefixRule:
    """Plugin override, then the session's own prefix, then the global default."""
    if plugin_prefix is not None:
        return plugin_prefix
    if session_prefix is not None:
        return session_prefix
    return global_prefix


@dataclass
class ParsedCommand:
    prefix: str
    command: str  # lower-cased first token after the prefix, "" if none
    args: list[str] = field(default_factory=list)
    text: str = ""  # args joined by single spaces
    no_prefix: str = ""  # everything after the prefix, untouched


def parse_command(text: str, rule: PrefixRule | None) -> ParsedCommand | None:
    used = match_prefix(text, rule)
    if used is None:
        return None
    rest = text[len(used) :]
    tokens = rest.split()
    command = tokens[0].lower() if tokens else ""
    args = tokens[1:]
    return ParsedCommand(
        prefix=used,
        command=command,
        args=args,
        text=" ".join(args),
        no_prefix=rest,
    )
