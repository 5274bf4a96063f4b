"""Tests for record defaults, settlement and plugin usage stats."""

from __future__ import annotations

from pathlib import Path

import pytest

from fleetbot.ledger import ensure_records, record_usage, settle
from fleetbot.state.store import DocumentStore, JsonFileAdapter

SENDER = "111@s.whatsapp.net"
GROUP = "120363000000000001@g.us"
BOT = "999@s.whatsapp.net"


@pytest.fixture
def store(tmp_path: Path) -> DocumentStore:
    return DocumentStore(JsonFileAdapter(tmp_path / "db.json"))


class TestEnsureRecords:
    def test_creates_defaults(self, store):
        user, chat, bot = ensure_records(store, sender=SENDER, chat=GROUP, bot_id=BOT, name="Alice")
        assert user["money"] == 15 and user["limit"] == 20
        assert user["name"] == "Alice"
        assert chat["detect"] is True and chat["welcome"] is False
        assert bot["anti_call"] is False
        assert store.users[SENDER] is user

    def test_existing_fields_untouched(self, store):
        store.users[SENDER] = {"money": 3, "name": "Bob", "custom": "x"}
        user, _, _ = ensure_records(store, sender=SENDER, chat=GROUP, bot_id=BOT, name="Alice")
        assert user["money"] == 3
        assert user["name"] == "Bob"
        assert user["custom"] == "x"
        assert user["exp"] == 0

    def test_non_dict_record_replaced(self, store):
        store.chats[GROUP] = "garbage"
        _, chat, _ = ensure_records(store, sender=SENDER, chat=GROUP, bot_id=BOT)
        assert isinstance(store.chats[GROUP], dict)
        assert chat["messaggi"] == 0

    def test_list_defaults_not_shared(self, store):
        _, a, _ = ensure_records(store, sender=SENDER, chat="a@g.us", bot_id=BOT)
        _, b, _ = ensure_records(store, sender=SENDER, chat="b@g.us", bot_id=BOT)
        a["ignored"].append("x")
        assert b["ignored"] == []


class TestSettle:
    def test_applies_exp_and_costs(self, make_msg):
        user = {"exp": 5, "money": 100, "limit": 10, "messaggi": 2}
        chat = {"messaggi": 7}
        msg = make_msg()
        msg.exp, msg.money, msg.limit = 18, 50, 1
        settle(user, chat, msg, premium=False)
        assert user == {"exp": 23, "money": 50, "limit": 9, "messaggi": 3}
        assert chat["messaggi"] == 8

    def test_premium_keeps_limit(self, make_msg):
        user = {"limit": 10}
        msg = make_msg()
        msg.limit = 3
        settle(user, None, msg, premium=True)
        assert user["limit"] == 10

    def test_clamped_at_zero(self, make_msg):
        user = {"money": 10, "limit": 0}
        msg = make_msg()
        msg.money, msg.limit = 50, 2
        settle(user, None, msg, premium=False)
        assert user["money"] == 0 and user["limit"] == 0


class TestRecordUsage:
    def test_success_and_failure(self):
        stats: dict = {}
        record_usage(stats, "shop.py", success=True, now_ms=1000)
        stat = record_usage(stats, "shop.py", success=False, now_ms=2000)
        assert stat == {"total": 2, "success": 1, "last": 2000, "last_success": 1000}
        assert stats["shop.py"] is stat
