"""Prepaid credit ledger with tiered daily allowance and exact-source refunds."""

from __future__ import annotations

from collections import OrderedDict
from datetime import UTC

import structlog
from ulid import ULID

from chatledger.clock import Clock, from_epoch_ms, next_utc_midnight, to_epoch_ms, utc_now
from chatledger.events.bus import EventBus, LedgerEvent
from chatledger.models.config import CreditConfig
from chatledger.models.session import (
    ActionKind,
    ChargeResult,
    CreditReport,
    DeductReceipt,
    SessionData,
)
from chatledger.store.cache import SessionCache
from chatledger.store.errors import ChatLedgerError

_ACTION_COUNTERS: dict[str, str] = {
    "text": "total_text_messages",
    "image": "total_images_generated",
}


def make_id(prefix: str) -> str:
    """
    Generate a ULID-based sortable identifier.

    Args:
        prefix: Short prefix for readability (e.g. ``"rcpt"``).

    Returns:
        ID string in the format ``"{prefix}_{ulid}"``.
    """
    return f"{prefix}_{ULID()}"


def _require_positive(amount: int, what: str) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError(f"{what} must be a positive integer, got {amount!r}")


def _counter_for(action_kind: ActionKind) -> str:
    try:
        return _ACTION_COUNTERS[action_kind]
    except KeyError:
        raise ValueError(f"Unknown action kind: {action_kind!r}") from None


class CreditLedger:
    """
    Two-bucket credit economy for one process.

    Each tenant has a *daily* bucket, refilled to the tier allowance on the
    first ledger access of each UTC calendar day, and a *purchased* bucket
    that never resets. Charges burn daily credits first and only take the
    remainder from purchased credits. The split is recorded in a
    :class:`DeductReceipt`, and a refund puts back exactly those amounts:
    refunding into the wrong bucket would let VIPs exceed their daily cap or
    hand standard users free purchased credits.

    Receipts are tracked in memory until refunded. A receipt this ledger did
    not issue, a failed receipt, or one already refunded is rejected.

    Callers should use :meth:`check_and_charge` and :meth:`refund_credits`;
    :meth:`deduct_credits` and :meth:`record_usage` are the building blocks
    and exist for auditing and tests.
    """

    def __init__(
        self,
        cache: SessionCache,
        config: CreditConfig,
        event_bus: EventBus,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._cache = cache
        self._config = config
        self._event_bus = event_bus
        self._clock = clock
        self._outstanding: OrderedDict[str, DeductReceipt] = OrderedDict()
        self._logger = structlog.get_logger("chatledger.ledger")

    @property
    def config(self) -> CreditConfig:
        return self._config

    # ── Session-level operations (caller holds the tenant lock) ───────────────

    def _apply_daily_reset(self, session: SessionData, is_vip: bool) -> int | None:
        """Refill the daily bucket on a new UTC day. Returns the new allowance, or None."""
        now = self._clock().astimezone(UTC)
        last = from_epoch_ms(session.last_daily_reset)
        if now <= last or now.date() == last.date():
            return None

        limit = self._config.daily_limit(is_vip)
        session.daily_credits = limit
        session.last_daily_reset = to_epoch_ms(now)
        return limit

    def _announce_reset(self, tenant: str, limit: int | None, is_vip: bool) -> None:
        if limit is None:
            return
        self._logger.info("credits_reset", tenant=tenant, daily_credits=limit, is_vip=is_vip)
        self._event_bus.publish(
            LedgerEvent.CREDITS_RESET,
            {"tenant": tenant, "daily_credits": limit, "is_vip": is_vip},
        )

    def _draw(
        self, tenant: str, session: SessionData, amount: int, action_kind: ActionKind | None = None
    ) -> DeductReceipt:
        from_daily = min(session.daily_credits, amount)
        from_purchased = amount - from_daily
        session.daily_credits -= from_daily
        session.purchased_credits -= from_purchased
        return DeductReceipt(
            id=make_id("rcpt"),
            tenant=tenant,
            success=True,
            daily_deducted=from_daily,
            purchased_deducted=from_purchased,
            action_kind=action_kind,
        )

    def _remember(self, receipt: DeductReceipt) -> None:
        self._outstanding[receipt.id] = receipt
        while len(self._outstanding) > self._config.receipt_retention:
            self._outstanding.popitem(last=False)

    @staticmethod
    def _apply_usage(session: SessionData, cost: int, action_kind: ActionKind) -> None:
        counter = _counter_for(action_kind)
        session.total_credits_used += cost
        setattr(session, counter, getattr(session, counter) + 1)

    # ── Public API ─────────────────────────────────────────────────────────────

    async def check_daily_reset(self, tenant: str, is_vip: bool) -> bool:
        """
        Refill the daily bucket if the UTC date changed since the last refill.

        Idempotent within one UTC day.

        Returns:
            True if a reset happened.
        """
        async with self._cache.transaction(tenant) as session:
            limit = self._apply_daily_reset(session, is_vip)
        self._announce_reset(tenant, limit, is_vip)
        return limit is not None

    async def get_balance(self, tenant: str) -> int:
        """Return daily plus purchased credits."""
        session = await self._cache.get(tenant)
        return session.balance

    async def deduct_credits(self, tenant: str, amount: int) -> DeductReceipt:
        """
        Take *amount* credits, daily bucket first.

        All or nothing: if the balance is short, nothing changes and a failed
        receipt with zero amounts is returned.

        Raises:
            ValueError: If *amount* is not a positive integer.
        """
        _require_positive(amount, "amount")
        async with self._cache.transaction(tenant) as session:
            if session.balance < amount:
                return DeductReceipt(id=make_id("rcpt"), tenant=tenant, success=False)
            receipt = self._draw(tenant, session, amount)
        self._remember(receipt)
        return receipt

    async def record_usage(self, tenant: str, cost: int, action_kind: ActionKind) -> None:
        """Add *cost* to lifetime credits used and count one *action_kind* action."""
        _require_positive(cost, "cost")
        _counter_for(action_kind)
        async with self._cache.transaction(tenant) as session:
            self._apply_usage(session, cost, action_kind)

    async def refund_credits(
        self, tenant: str, receipt: DeductReceipt, action_kind: ActionKind
    ) -> bool:
        """
        Reverse the charge recorded by *receipt*.

        Puts ``receipt.daily_deducted`` back into the daily bucket and
        ``receipt.purchased_deducted`` into the purchased bucket, then takes
        the refunded total off ``total_credits_used`` and one action off the
        matching lifetime counter, each floored at zero.

        Returns:
            True if the refund was applied. False, with nothing changed, when
            the receipt is unknown, failed, already refunded, issued for a
            different tenant or for a different action kind, or the refund
            could not be persisted (the receipt then stays refundable).
        """
        counter = _counter_for(action_kind)
        issued = self._outstanding.get(receipt.id)
        reason = None
        if issued is None or not issued.success:
            reason = "unknown or already refunded"
        elif issued.tenant != tenant:
            reason = "issued for another tenant"
        elif issued.action_kind is not None and issued.action_kind != action_kind:
            reason = f"charged for {issued.action_kind}"
        if reason is not None:
            self._logger.warning("refund_rejected", tenant=tenant, receipt_id=receipt.id, reason=reason)
            return False

        try:
            async with self._cache.transaction(tenant) as session:
                session.daily_credits += issued.daily_deducted
                session.purchased_credits += issued.purchased_deducted
                session.total_credits_used = max(0, session.total_credits_used - issued.total)
                setattr(session, counter, max(0, getattr(session, counter) - 1))
        except ChatLedgerError as exc:
            self._logger.error("refund_failed", tenant=tenant, receipt_id=issued.id, error=str(exc))
            return False

        del self._outstanding[issued.id]
        self._logger.info(
            "credits_refunded",
            tenant=tenant,
            receipt_id=issued.id,
            daily=issued.daily_deducted,
            purchased=issued.purchased_deducted,
        )
        self._event_bus.publish(
            LedgerEvent.CREDITS_REFUNDED,
            {
                "tenant": tenant,
                "receipt_id": issued.id,
                "action_kind": action_kind,
                "daily": issued.daily_deducted,
                "purchased": issued.purchased_deducted,
            },
        )
        return True

    async def check_and_charge(
        self,
        tenant: str,
        cost: int,
        action_kind: ActionKind = "text",
        *,
        is_vip: bool = False,
    ) -> ChargeResult:
        """
        Gate a paid action: daily reset, balance check, deduct, record usage.

        All four steps run under the tenant's lock and are persisted with a
        single save. Storage and lock failures do not raise; they produce a
        failed result and leave the tenant's state untouched.

        Returns:
            A :class:`ChargeResult`, truthy on success, carrying the receipt to
            hand back to :meth:`refund_credits` if the action fails.

        Raises:
            ValueError: If *cost* is not a positive integer or *action_kind* is unknown.
        """
        _require_positive(cost, "cost")
        _counter_for(action_kind)
        receipt: DeductReceipt | None = None
        try:
            async with self._cache.transaction(tenant) as session:
                reset_to = self._apply_daily_reset(session, is_vip)
                if session.balance >= cost:
                    receipt = self._draw(tenant, session, cost, action_kind)
                    self._apply_usage(session, cost, action_kind)
                balance = session.balance
        except ChatLedgerError as exc:
            self._logger.error("charge_failed", tenant=tenant, cost=cost, error=str(exc))
            return ChargeResult(success=False, reason="storage_error", cost=cost)

        self._announce_reset(tenant, reset_to, is_vip)

        if receipt is None:
            self._logger.info("charge_declined", tenant=tenant, cost=cost, balance=balance)
            self._event_bus.publish(
                LedgerEvent.CREDITS_DECLINED,
                {"tenant": tenant, "cost": cost, "balance": balance},
            )
            return ChargeResult(
                success=False, reason="insufficient_balance", cost=cost, balance=balance
            )

        self._remember(receipt)
        self._logger.info(
            "credits_charged",
            tenant=tenant,
            cost=cost,
            action_kind=action_kind,
            daily=receipt.daily_deducted,
            purchased=receipt.purchased_deducted,
            balance=balance,
        )
        self._event_bus.publish(
            LedgerEvent.CREDITS_CHARGED,
            {
                "tenant": tenant,
                "receipt_id": receipt.id,
                "cost": cost,
                "action_kind": action_kind,
                "daily": receipt.daily_deducted,
                "purchased": receipt.purchased_deducted,
                "balance": balance,
            },
        )
        return ChargeResult(
            success=True, reason="charged", cost=cost, balance=balance, receipt=receipt
        )

    async def add_purchased_credits(self, tenant: str, amount: int) -> int:
        """
        Credit *amount* to the purchased bucket (top-ups, admin grants).

        Returns:
            The purchased balance afterwards.

        Raises:
            ValueError: If *amount* is not a positive integer.
        """
        _require_positive(amount, "amount")
        async with self._cache.transaction(tenant) as session:
            session.purchased_credits += amount
            purchased = session.purchased_credits
        self._logger.info("credits_purchased", tenant=tenant, amount=amount, purchased_credits=purchased)
        self._event_bus.publish(
            LedgerEvent.CREDITS_PURCHASED,
            {"tenant": tenant, "amount": amount, "purchased_credits": purchased},
        )
        return purchased

    async def credit_report(self, tenant: str, tier: str) -> CreditReport:
        """Refresh the daily bucket for *tier* and summarise balances and lifetime usage."""
        is_vip = self._config.is_vip(tier)
        async with self._cache.transaction(tenant) as session:
            reset_to = self._apply_daily_reset(session, is_vip)
            snapshot = session.model_copy(deep=True)
        self._announce_reset(tenant, reset_to, is_vip)

        now = self._clock()
        return CreditReport(
            tier=str(tier),
            daily_credits=snapshot.daily_credits,
            daily_limit=self._config.daily_limit(is_vip),
            purchased_credits=snapshot.purchased_credits,
            balance=snapshot.balance,
            resets_in=next_utc_midnight(now) - now,
            total_credits_used=snapshot.total_credits_used,
            total_text_messages=snapshot.total_text_messages,
            total_images_generated=snapshot.total_images_generated,
        )

    def outstanding_receipts(self, tenant: str) -> list[DeductReceipt]:
        """Return receipts issued for *tenant* that have not been refunded."""
        return [r for r in self._outstanding.values() if r.tenant == tenant]
