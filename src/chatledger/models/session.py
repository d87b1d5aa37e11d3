"""Tenant session, conversation and credit data models."""

from __future__ import annotations

from datetime import timedelta
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Role = Literal["system", "user", "assistant"]
ActionKind = Literal["text", "image"]

SCHEMA_VERSION = 3
"""Version tag stamped on every tenant document written by this package."""


class MembershipTier(StrEnum):
    """Platform membership tiers. Diamond and Lifetime get the VIP allowance by default."""

    STANDARD = "Standard"
    DIAMOND = "Diamond"
    LIFETIME = "Lifetime"


def tier_from_status(raw_status: str | None) -> MembershipTier:
    """
    Map a chat platform's raw "diamond status" string to a :class:`MembershipTier`.

    ``"lifetime"`` maps to LIFETIME, ``"active"`` and ``"diamond"`` map to
    DIAMOND; anything else, including ``None``, is STANDARD. Matching is
    case-insensitive.
    """
    status = str(raw_status or "").strip().lower()
    if status == "lifetime":
        return MembershipTier.LIFETIME
    if status in ("active", "diamond"):
        return MembershipTier.DIAMOND
    return MembershipTier.STANDARD


# ── Conversation ───────────────────────────────────────────────────────────────


class ChatMessage(BaseModel):
    """One entry of a context's history."""

    role: Role
    content: str


class ConversationContext(BaseModel):
    """A named, independent sub-conversation within a tenant's session."""

    history: list[ChatMessage] = Field(default_factory=list)
    personality: str = ""
    """System prompt override. Empty means the default assistant prompt."""


# ── Session ────────────────────────────────────────────────────────────────────


class SessionData(BaseModel):
    """
    Complete persisted state of one tenant.

    Field names are snake_case in Python and camelCase on disk
    (``dailyCredits``, ``lastDailyReset`` ...). Serialize with
    ``model_dump(by_alias=True)``.

    Assignments are validated, so a counter can never be set below zero
    in memory and then written to disk.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, validate_assignment=True)

    schema_version: int = SCHEMA_VERSION
    contexts: dict[str, ConversationContext] = Field(default_factory=dict)

    daily_credits: int = Field(default=0, ge=0)
    purchased_credits: int = Field(default=0, ge=0)
    last_daily_reset: int = Field(
        default=0,
        ge=0,
        description="Unix millisecond timestamp of the last daily allowance refresh.",
    )

    total_credits_used: int = Field(default=0, ge=0)
    total_text_messages: int = Field(default=0, ge=0)
    total_images_generated: int = Field(default=0, ge=0)

    @property
    def balance(self) -> int:
        return self.daily_credits + self.purchased_credits


# ── Credits ────────────────────────────────────────────────────────────────────


class DeductReceipt(BaseModel):
    """
    Record of exactly which buckets a single charge drew from.

    Refunds reverse these amounts, never more. A failed receipt carries zero
    for both buckets and cannot be refunded.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    tenant: str
    success: bool
    daily_deducted: int = Field(default=0, ge=0)
    purchased_deducted: int = Field(default=0, ge=0)
    action_kind: ActionKind | None = None
    """Action the charge paid for. None for bare deductions with no usage recorded."""

    @property
    def total(self) -> int:
        return self.daily_deducted + self.purchased_deducted


class ChargeResult(BaseModel):
    """
    Outcome of :meth:`~chatledger.ledger.CreditLedger.check_and_charge`.

    Truthy exactly when the charge went through, so callers can write
    ``if not await manager.check_and_charge(...): return``.
    """

    success: bool
    reason: Literal["charged", "insufficient_balance", "storage_error"]
    cost: int
    balance: int | None = None
    """Balance after the attempt. None when storage could not be read."""
    receipt: DeductReceipt | None = None
    """Present on success. Pass it to ``refund()`` if the paid action fails."""

    def __bool__(self) -> bool:
        return self.success


class CreditReport(BaseModel):
    """Balance and lifetime usage snapshot for user-facing credit summaries."""

    tier: str
    daily_credits: int
    daily_limit: int
    purchased_credits: int
    balance: int
    resets_in: timedelta
    """Time remaining until the next 00:00 UTC allowance refresh."""
    total_credits_used: int
    total_text_messages: int
    total_images_generated: int
