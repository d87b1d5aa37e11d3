"""In-process pub/sub event bus for ledger and conversation state changes."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

Handler = Callable[["LedgerEvent", dict[str, Any]], None | Awaitable[None]]


class LedgerEvent(StrEnum):
    """All event types published by chatledger components.

    Typed payload definitions for each event live in
    :mod:`chatledger.events.payloads`.

    Events are local to the process that owns the bus. They are meant for
    audit logging, metrics and tests, not for notifying remote parties.
    """

    # Session lifecycle
    SESSION_CREATED = "session.created"
    SESSION_MIGRATED = "session.migrated"

    # Credits
    CREDITS_RESET = "credits.reset"
    CREDITS_CHARGED = "credits.charged"
    CREDITS_DECLINED = "credits.declined"
    CREDITS_REFUNDED = "credits.refunded"
    CREDITS_PURCHASED = "credits.purchased"

    # Conversation contexts
    HISTORY_CLEARED = "history.cleared"
    PERSONALITY_CHANGED = "personality.changed"

    # Persistence
    STORAGE_FAILED = "storage.failed"


class EventBus:
    """
    In-process observer registry for ledger and conversation events.

    Sync handlers run inline inside :meth:`publish`, in subscription order,
    before the publishing call returns. Async handlers are started as tasks
    on the running loop; the bus keeps a reference to each task until it
    finishes, and :meth:`drain` waits for the ones still running. A handler
    that raises is logged and skipped, so a broken observer can never fail a
    charge or a save.

    Example::

        bus = EventBus()

        def on_refund(event, payload):
            print(f"Refunded {payload['daily']} + {payload['purchased']} to {payload['tenant']}")

        bus.subscribe(LedgerEvent.CREDITS_REFUNDED, on_refund)
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        # None keys the handlers that receive every event
        self._subscriptions: dict[LedgerEvent | None, list[Handler]] = {}
        self._running: set[asyncio.Task[None]] = set()
        self._logger = logger or structlog.get_logger("chatledger.events")

    def subscribe(self, event: LedgerEvent, handler: Handler) -> None:
        """Call *handler* with ``(event, payload)`` whenever *event* is published."""
        self._subscriptions.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Call *handler* for every event, after the event's own subscribers."""
        self._subscriptions.setdefault(None, []).append(handler)

    def publish(self, event: LedgerEvent, payload: dict[str, Any]) -> None:
        """Deliver *payload* to the subscribers of *event*. Never raises."""
        handlers = [*self._subscriptions.get(event, ()), *self._subscriptions.get(None, ())]
        for handler in handlers:
            self._deliver(handler, event, payload)

    async def drain(self) -> None:
        """Wait until every async handler started so far has finished."""
        while self._running:
            await asyncio.wait(set(self._running))

    def _deliver(self, handler: Handler, event: LedgerEvent, payload: dict[str, Any]) -> None:
        try:
            result = handler(event, payload)
        except Exception as exc:
            self._log_failure(handler, event, exc)
            return
        if not inspect.isawaitable(result):
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._logger.warning("event_handler_skipped", event=str(event), reason="no running loop")
            if asyncio.iscoroutine(result):
                result.close()
            return

        task = loop.create_task(self._await_handler(handler, event, result))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _await_handler(self, handler: Handler, event: LedgerEvent, pending: Awaitable[None]) -> None:
        try:
            await pending
        except Exception as exc:
            self._log_failure(handler, event, exc)

    def _log_failure(self, handler: Handler, event: LedgerEvent, exc: Exception) -> None:
        self._logger.error(
            "event_handler_error",
            event=str(event),
            handler=getattr(handler, "__qualname__", repr(handler)),
            error=str(exc),
        )
