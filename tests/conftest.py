"""Shared fixtures for chatledger tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from chatledger.events.bus import EventBus, LedgerEvent
from chatledger.manager import HistoryManager
from chatledger.models.config import LedgerConfig, StoreConfig


class FakeClock:
    """Deterministic clock; call it like ``utc_now`` and move it with ``advance``."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


@pytest.fixture
def clock():
    """FakeClock starting at noon UTC on 2026-03-14."""
    return FakeClock(datetime(2026, 3, 14, 12, 0, tzinfo=UTC))


@pytest.fixture
def config(tmp_path):
    """LedgerConfig writing tenant files under a temp directory."""
    return LedgerConfig(
        store=StoreConfig(data_dir=str(tmp_path / "data"), lock_retries=3, lock_retry_interval=0.01)
    )


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[LedgerEvent, dict[str, Any]]] = []

    def _collect(event: LedgerEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


@pytest.fixture
def manager(config, event_bus, clock):
    """HistoryManager on the temp data directory, driven by the fake clock."""
    return HistoryManager(config, event_bus=event_bus, clock=clock)
