"""HistoryManager: the store object handed to command handlers."""

from __future__ import annotations

from typing import Any

import structlog

from chatledger.clock import Clock, to_epoch_ms, utc_now
from chatledger.contexts import ContextManager
from chatledger.events.bus import EventBus, LedgerEvent
from chatledger.ledger import CreditLedger
from chatledger.models.config import LedgerConfig
from chatledger.models.session import (
    ActionKind,
    ChargeResult,
    ChatMessage,
    CreditReport,
    DeductReceipt,
    Role,
    SessionData,
)
from chatledger.store.cache import SessionCache
from chatledger.store.json_store import SessionStore


class HistoryManager:
    """
    Conversation history and credit economy for every tenant of one process.

    Construct one per process with an explicit config and pass it to the
    command handlers that need it. Tests build their own instance on a
    temporary directory.

    Usage::

        manager = HistoryManager(LedgerConfig(store=StoreConfig(data_dir="./data")))

        charge = await manager.check_and_charge(user_id, 1, "text", is_vip=False)
        if not charge:
            return  # out of credits
        try:
            await manager.add_message(chat_id, "default", "user", prompt)
            reply = await complete(await manager.get_history(chat_id, "default"))
            await manager.add_message(chat_id, "default", "assistant", reply)
        except Exception:
            await manager.refund(user_id, charge.receipt, "text")
            raise

    Wallet and conversation keys are independent: in a group chat the charge
    goes to the user's key while history lives under the group's key.
    """

    def __init__(
        self,
        config: LedgerConfig | None = None,
        *,
        event_bus: EventBus | None = None,
        clock: Clock = utc_now,
    ) -> None:
        """
        Raises:
            StorageIOError: If the data directory cannot be created or written.
        """
        self._config = config or LedgerConfig()
        self._clock = clock
        self._event_bus = event_bus or EventBus()
        self._logger = structlog.get_logger("chatledger.manager")

        self._store = SessionStore(
            self._config.store,
            default_daily_credits=self._config.credits.daily_limit_standard,
            clock=clock,
            event_bus=self._event_bus,
        )
        self._cache = SessionCache(
            self._store,
            new_session=self._new_session,
            event_bus=self._event_bus,
        )
        self._contexts = ContextManager(self._cache, self._config.contexts, self._event_bus)
        self._ledger = CreditLedger(self._cache, self._config.credits, self._event_bus, clock=clock)
        self._logger.info("history_manager_ready", data_dir=str(self._store.data_dir))

    def _new_session(self) -> SessionData:
        return SessionData(
            daily_credits=self._config.credits.daily_limit_standard,
            last_daily_reset=to_epoch_ms(self._clock()),
        )

    # ── Components ─────────────────────────────────────────────────────────────

    @property
    def config(self) -> LedgerConfig:
        return self._config

    @property
    def ledger(self) -> CreditLedger:
        return self._ledger

    @property
    def contexts(self) -> ContextManager:
        return self._contexts

    @property
    def cache(self) -> SessionCache:
        return self._cache

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    def subscribe(self, event: LedgerEvent, handler: Any) -> None:
        """Shortcut for ``manager.event_bus.subscribe(event, handler)``."""
        self._event_bus.subscribe(event, handler)

    # ── Credits ────────────────────────────────────────────────────────────────

    async def check_and_charge(
        self,
        tenant: str,
        cost: int,
        action_kind: ActionKind = "text",
        *,
        is_vip: bool = False,
    ) -> ChargeResult:
        """Charge *cost* credits before a paid action. See :meth:`CreditLedger.check_and_charge`."""
        return await self._ledger.check_and_charge(tenant, cost, action_kind, is_vip=is_vip)

    async def refund(self, tenant: str, receipt: DeductReceipt | None, action_kind: ActionKind) -> bool:
        """
        Reverse a charge whose action failed.

        A missing receipt (``None``) is rejected like an unknown one: nothing
        is credited and False is returned.
        """
        if receipt is None:
            self._logger.warning("refund_rejected", tenant=tenant, reason="no receipt")
            return False
        return await self._ledger.refund_credits(tenant, receipt, action_kind)

    async def check_daily_reset(self, tenant: str, is_vip: bool) -> bool:
        return await self._ledger.check_daily_reset(tenant, is_vip)

    async def get_balance(self, tenant: str) -> int:
        return await self._ledger.get_balance(tenant)

    async def add_purchased_credits(self, tenant: str, amount: int) -> int:
        return await self._ledger.add_purchased_credits(tenant, amount)

    async def credit_report(self, tenant: str, tier: str) -> CreditReport:
        return await self._ledger.credit_report(tenant, tier)

    async def get_stats(self, tenant: str) -> SessionData:
        """Return a read-only copy of *tenant*'s full session for reporting."""
        return await self._cache.snapshot(tenant)

    # ── Conversation contexts ──────────────────────────────────────────────────

    async def get_history(self, tenant: str, context: str) -> list[ChatMessage]:
        return await self._contexts.get_history(tenant, context)

    async def add_message(self, tenant: str, context: str, role: Role, content: str) -> None:
        await self._contexts.add_message(tenant, context, role, content)

    async def clear_history(self, tenant: str, context: str) -> None:
        await self._contexts.clear_history(tenant, context)

    async def set_personality(self, tenant: str, context: str, text: str) -> None:
        await self._contexts.set_personality(tenant, context, text)

    async def get_system_prompt(self, tenant: str, context: str) -> str:
        return await self._contexts.get_system_prompt(tenant, context)

    async def list_contexts(self, tenant: str) -> list[str]:
        return await self._contexts.list_contexts(tenant)
