"""chatledger event bus."""

from chatledger.events.bus import EventBus, Handler, LedgerEvent
from chatledger.events.payloads import (
    CreditsChargedPayload,
    CreditsDeclinedPayload,
    CreditsPurchasedPayload,
    CreditsRefundedPayload,
    CreditsResetPayload,
    HistoryClearedPayload,
    PersonalityChangedPayload,
    SessionCreatedPayload,
    SessionMigratedPayload,
    StorageFailedPayload,
)

__all__ = [
    "CreditsChargedPayload",
    "CreditsDeclinedPayload",
    "CreditsPurchasedPayload",
    "CreditsRefundedPayload",
    "CreditsResetPayload",
    "EventBus",
    "Handler",
    "HistoryClearedPayload",
    "LedgerEvent",
    "PersonalityChangedPayload",
    "SessionCreatedPayload",
    "SessionMigratedPayload",
    "StorageFailedPayload",
]
