"""Per-chat command throttle.

Each group chat gets a counter over a fixed window. Exceeding the threshold
suspends the chat; the caller sends one notice (on ``SpamVerdict.SUSPENDED``)
and everything else during the suspension is dropped silently. State lives
in memory only and is owned by the pipeline.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum


class SpamVerdict(StrEnum):
    ALLOW = "allow"
    SUSPENDED = "suspended"  # this message triggered the suspension
    REJECT = "reject"  # chat already suspended


@dataclass
class ChatSpamState:
    count: int = 0
    window_start: float = 0.0
    suspended: bool = False
    suspended_until: float | None = None


class AntiSpam:
    def __init__(
        self,
        window_seconds: float = 60.0,
        threshold: int = 2,
        suspension_seconds: float = 45.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self.threshold = threshold
        self.suspension_seconds = suspension_seconds
        self._clock = clock
        self._chats: dict[str, ChatSpamState] = {}

    def state(self, chat: str) -> ChatSpamState | None:
        return self._chats.get(chat)

    def check(self, chat: str) -> SpamVerdict:
        """Count one command in ``chat`` and decide whether it may proceed."""
        now = self._clock()
        state = self._chats.get(chat)
        if state is None:
            state = self._chats[chat] = ChatSpamState(window_start=now)

        if state.suspended:
            assert state.suspended_until is not None
            if now < state.suspended_until:
                return SpamVerdict.REJECT
            state.suspended = False
            state.suspended_until = None
            state.count = 0
            state.window_start = now

        if now - state.window_start > self.window_seconds:
            state.count = 1
            state.window_start = now
        else:
            state.count += 1

        if state.count > self.threshold:
            state.suspended = True
            state.suspended_until = now + self.suspension_seconds
            return SpamVerdict.SUSPENDED
        return SpamVerdict.ALLOW

    def reset(self, chat: str) -> None:
        self._chats.pop(chat, None)
