"""Typed payload definitions for each LedgerEvent.

Usage example::

    from chatledger.events.bus import EventBus, LedgerEvent
    from chatledger.events.payloads import CreditsChargedPayload

    def on_charge(event: LedgerEvent, payload: CreditsChargedPayload) -> None:
        print(f"{payload['tenant']} paid {payload['cost']} for {payload['action_kind']}")

    bus.subscribe(LedgerEvent.CREDITS_CHARGED, on_charge)  # type: ignore[arg-type]
"""

from __future__ import annotations

from typing import TypedDict

# ── Session lifecycle ─────────────────────────────────────────────────────────


class SessionCreatedPayload(TypedDict):
    """Payload for :attr:`LedgerEvent.SESSION_CREATED`."""

    tenant: str
    daily_credits: int
    """Starting daily allowance of the fresh session."""


class SessionMigratedPayload(TypedDict):
    """Payload for :attr:`LedgerEvent.SESSION_MIGRATED`."""

    tenant: str
    from_version: int
    to_version: int


# ── Credits ───────────────────────────────────────────────────────────────────


class CreditsResetPayload(TypedDict):
    """Payload for :attr:`LedgerEvent.CREDITS_RESET`."""

    tenant: str
    daily_credits: int
    """The tier allowance the daily bucket was refreshed to."""
    is_vip: bool


class CreditsChargedPayload(TypedDict):
    """Payload for :attr:`LedgerEvent.CREDITS_CHARGED`."""

    tenant: str
    receipt_id: str
    cost: int
    action_kind: str
    daily: int
    """Amount drawn from the daily bucket."""
    purchased: int
    """Amount drawn from the purchased bucket."""
    balance: int


class CreditsDeclinedPayload(TypedDict):
    """Payload for :attr:`LedgerEvent.CREDITS_DECLINED`."""

    tenant: str
    cost: int
    balance: int


class CreditsRefundedPayload(TypedDict):
    """Payload for :attr:`LedgerEvent.CREDITS_REFUNDED`."""

    tenant: str
    receipt_id: str
    action_kind: str
    daily: int
    purchased: int


class CreditsPurchasedPayload(TypedDict):
    """Payload for :attr:`LedgerEvent.CREDITS_PURCHASED`."""

    tenant: str
    amount: int
    purchased_credits: int
    """Purchased bucket after the top-up."""


# ── Conversation contexts ─────────────────────────────────────────────────────


class HistoryClearedPayload(TypedDict):
    """Payload for :attr:`LedgerEvent.HISTORY_CLEARED`."""

    tenant: str
    context: str
    cleared: int
    """Number of messages removed."""


class PersonalityChangedPayload(TypedDict):
    """Payload for :attr:`LedgerEvent.PERSONALITY_CHANGED`."""

    tenant: str
    context: str
    is_default: bool
    """True when the override was cleared back to the default prompt."""


# ── Persistence ───────────────────────────────────────────────────────────────


class StorageFailedPayload(TypedDict):
    """Payload for :attr:`LedgerEvent.STORAGE_FAILED`."""

    tenant: str
    error: str
