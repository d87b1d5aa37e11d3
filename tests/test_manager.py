"""Tests for the HistoryManager facade and the event bus."""

from __future__ import annotations

import asyncio
import json

from chatledger.events.bus import EventBus, LedgerEvent
from chatledger.manager import HistoryManager
from chatledger.models.config import LedgerConfig, StoreConfig


class TestHistoryManager:
    async def test_stats_is_a_copy(self, manager):
        stats = await manager.get_stats("user-1")
        stats.daily_credits = 999
        assert await manager.get_balance("user-1") == 5

    async def test_wallet_and_conversation_keys_independent(self, manager):
        """In a group chat the user pays while history lives under the group key."""
        charge = await manager.check_and_charge("user-1", 1, "text")
        assert charge
        await manager.add_message("group-7", "default", "user", "hello all")

        assert await manager.get_balance("user-1") == 4
        assert await manager.get_balance("group-7") == 5
        assert await manager.get_history("user-1", "default") == []

    async def test_legacy_file_upgraded_and_rewritten(self, manager, config, event_bus):
        path = manager.cache.store.path_for("old-user")
        path.write_text(
            json.dumps({"history": [{"role": "user", "content": "from before"}], "personality": ""}),
            encoding="utf-8",
        )

        history = await manager.get_history("old-user", "default")
        assert [m.content for m in history] == ["from before"]
        assert await manager.check_and_charge("old-user", 1, "text")

        doc = json.loads(path.read_text(encoding="utf-8"))
        assert doc["schemaVersion"] == 3
        assert doc["dailyCredits"] == 4
        assert "history" not in doc
        assert any(event == LedgerEvent.SESSION_MIGRATED for event, _ in event_bus.collected)

    async def test_corrupt_file_served_as_new_tenant(self, manager):
        path = manager.cache.store.path_for("broken")
        path.write_text("{oops", encoding="utf-8")

        assert await manager.get_balance("broken") == 5
        assert list(path.parent.glob("broken.json.corrupt-*"))

    async def test_subscribe_shortcut(self, manager):
        seen = []
        manager.subscribe(LedgerEvent.CREDITS_PURCHASED, lambda event, payload: seen.append(payload["amount"]))

        await manager.add_purchased_credits("user-1", 3)

        assert seen == [3]

    def test_components_share_bus(self, manager, event_bus):
        assert manager.event_bus is event_bus
        assert manager.ledger.config is manager.config.credits

    def test_default_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        manager = HistoryManager()
        assert manager.config == LedgerConfig(store=StoreConfig(data_dir=str(tmp_path / "data")))
        assert (tmp_path / "data").is_dir()


class TestEventBus:
    async def test_async_handler_scheduled(self):
        bus = EventBus()
        received = asyncio.Event()

        async def handler(event, payload):
            received.set()

        bus.subscribe(LedgerEvent.HISTORY_CLEARED, handler)
        bus.publish(LedgerEvent.HISTORY_CLEARED, {"tenant": "t", "context": "default", "cleared": 0})

        await asyncio.wait_for(received.wait(), timeout=1)

    def test_handler_error_does_not_propagate(self):
        bus = EventBus()
        calls = []

        def broken(event, payload):
            raise RuntimeError("observer bug")

        bus.subscribe(LedgerEvent.CREDITS_RESET, broken)
        bus.subscribe_all(lambda event, payload: calls.append(event))

        bus.publish(LedgerEvent.CREDITS_RESET, {"tenant": "t", "daily_credits": 5, "is_vip": False})

        assert calls == [LedgerEvent.CREDITS_RESET]

    async def test_drain_waits_for_async_handlers(self):
        bus = EventBus()
        finished = []

        async def slow(event, payload):
            await asyncio.sleep(0.01)
            finished.append(payload["tenant"])

        async def broken(event, payload):
            raise RuntimeError("observer bug")

        bus.subscribe(LedgerEvent.CREDITS_PURCHASED, slow)
        bus.subscribe_all(broken)
        bus.publish(LedgerEvent.CREDITS_PURCHASED, {"tenant": "t", "amount": 1, "purchased_credits": 1})

        await bus.drain()

        assert finished == ["t"]

    def test_async_handler_without_loop_is_skipped(self):
        bus = EventBus()

        async def handler(event, payload):
            raise AssertionError("should not run")

        bus.subscribe(LedgerEvent.CREDITS_PURCHASED, handler)
        bus.publish(LedgerEvent.CREDITS_PURCHASED, {"tenant": "t", "amount": 1, "purchased_credits": 1})

    def test_only_matching_subscribers_called(self):
        bus = EventBus()
        calls = []
        bus.subscribe(LedgerEvent.CREDITS_CHARGED, lambda event, payload: calls.append(event))

        bus.publish(LedgerEvent.CREDITS_PURCHASED, {"tenant": "t", "amount": 1, "purchased_credits": 1})

        assert calls == []
