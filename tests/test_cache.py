"""Tests for SessionCache transactions."""

from __future__ import annotations

import asyncio
import threading

import pytest

from chatledger.events.bus import LedgerEvent
from chatledger.models.session import SessionData
from chatledger.store.cache import SessionCache
from chatledger.store.errors import InvalidTenantKeyError, StorageIOError
from chatledger.store.json_store import SessionStore


@pytest.fixture
def store(config, clock):
    return SessionStore(config.store, default_daily_credits=5, clock=clock)


@pytest.fixture
def cache(store, event_bus):
    return SessionCache(store, new_session=lambda: SessionData(daily_credits=5), event_bus=event_bus)


def _events(event_bus, kind):
    return [payload for event, payload in event_bus.collected if event == kind]


class TestGet:
    async def test_new_tenant_created_in_memory(self, cache, store, event_bus):
        session = await cache.get("user-1")

        assert session.daily_credits == 5
        assert "user-1" in cache
        assert not store.path_for("user-1").exists()
        assert _events(event_bus, LedgerEvent.SESSION_CREATED) == [{"tenant": "user-1", "daily_credits": 5}]

    async def test_get_returns_cached_instance(self, cache):
        assert await cache.get("user-1") is await cache.get("user-1")
        assert len(cache) == 1

    async def test_existing_tenant_loaded(self, cache, store, event_bus):
        await store.save("user-1", SessionData(purchased_credits=9))

        session = await cache.get("user-1")

        assert session.purchased_credits == 9
        assert _events(event_bus, LedgerEvent.SESSION_CREATED) == []

    async def test_snapshot_is_detached(self, cache):
        snap = await cache.snapshot("user-1")
        snap.daily_credits = 0
        assert (await cache.get("user-1")).daily_credits == 5

    async def test_invalid_key(self, cache):
        with pytest.raises(InvalidTenantKeyError):
            await cache.get("../x")

    async def test_evict_reloads_from_disk(self, cache, store):
        async with cache.transaction("user-1") as session:
            session.purchased_credits = 3
        await store.save("user-1", SessionData(purchased_credits=7))

        assert (await cache.get("user-1")).purchased_credits == 3
        cache.evict("user-1")
        assert "user-1" not in cache
        assert (await cache.get("user-1")).purchased_credits == 7


class TestTransaction:
    async def test_change_is_saved(self, cache, store):
        async with cache.transaction("user-1") as session:
            session.purchased_credits = 12

        on_disk = await store.load("user-1")
        assert on_disk.purchased_credits == 12

    async def test_unchanged_session_not_written(self, cache, store):
        async with cache.transaction("user-1"):
            pass
        assert not store.path_for("user-1").exists()

    async def test_body_error_rolls_back(self, cache, store):
        async with cache.transaction("user-1") as session:
            session.purchased_credits = 4

        with pytest.raises(RuntimeError):
            async with cache.transaction("user-1") as session:
                session.purchased_credits = 100
                raise RuntimeError("handler blew up")

        assert (await cache.get("user-1")).purchased_credits == 4
        assert (await store.load("user-1")).purchased_credits == 4

    async def test_save_failure_rolls_back(self, cache, store, event_bus, monkeypatch):
        async with cache.transaction("user-1") as session:
            session.purchased_credits = 4

        async def failing_save(tenant, session):
            raise StorageIOError("disk full", tenant=tenant)

        monkeypatch.setattr(store, "save", failing_save)

        with pytest.raises(StorageIOError):
            async with cache.transaction("user-1") as session:
                session.purchased_credits = 100

        assert (await cache.get("user-1")).purchased_credits == 4
        assert _events(event_bus, LedgerEvent.STORAGE_FAILED) == [{"tenant": "user-1", "error": "disk full"}]

    async def test_concurrent_updates_not_lost(self, cache, store):
        """Overlapping read-modify-write sequences on one tenant all land."""

        async def bump():
            async with cache.transaction("user-1") as session:
                current = session.purchased_credits
                await asyncio.sleep(0)
                session.purchased_credits = current + 1

        await asyncio.gather(*(bump() for _ in range(25)))

        assert (await cache.get("user-1")).purchased_credits == 25
        assert (await store.load("user-1")).purchased_credits == 25

    async def test_tenants_do_not_block_each_other(self, cache):
        entered = asyncio.Event()

        async def hold_a():
            async with cache.transaction("a"):
                await entered.wait()

        async def touch_b():
            async with cache.transaction("b") as session:
                session.purchased_credits = 1
            entered.set()

        await asyncio.wait_for(asyncio.gather(hold_a(), touch_b()), timeout=5)
        assert (await cache.get("b")).purchased_credits == 1

    async def test_locked_changes_ride_along_with_next_save(self, cache, store):
        async with cache.locked("user-1") as session:
            session.daily_credits = 2
        assert not store.path_for("user-1").exists()

        async with cache.transaction("user-1") as session:
            session.purchased_credits = 1

        on_disk = await store.load("user-1")
        assert (on_disk.daily_credits, on_disk.purchased_credits) == (2, 1)


class TestCancelledSave:
    @pytest.fixture
    def gated_store(self, manager, monkeypatch):
        """Hold every file write in its worker thread until ``release`` is set."""
        store = manager.cache.store
        started = threading.Event()
        release = threading.Event()
        write = store._save_sync

        def gated_write(*args):
            started.set()
            release.wait(timeout=5)
            write(*args)

        monkeypatch.setattr(store, "_save_sync", gated_write)
        return store, started, release

    async def _cancel_during_save(self, manager, started, amount):
        task = asyncio.create_task(manager.add_purchased_credits("user-1", amount))
        await asyncio.to_thread(started.wait, 5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    async def test_started_save_lands_after_cancel(self, manager, gated_store):
        store, started, release = gated_store

        await self._cancel_during_save(manager, started, 7)
        assert (await manager.get_stats("user-1")).purchased_credits == 7

        release.set()
        await store.wait_for_write("user-1")

        on_disk = await store.load("user-1")
        assert on_disk == await manager.get_stats("user-1")
        assert on_disk.purchased_credits == 7

    async def test_next_save_waits_for_detached_write(self, manager, gated_store):
        store, started, release = gated_store

        await self._cancel_during_save(manager, started, 7)
        follow_up = asyncio.create_task(manager.add_purchased_credits("user-1", 3))
        await asyncio.sleep(0.05)
        assert not follow_up.done()

        release.set()
        assert await follow_up == 10
        assert (await store.load("user-1")).purchased_credits == 10
