"""Configuration models for the chatledger store and its components."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."


class StoreConfig(BaseModel):
    """Configuration for the per-tenant JSON file store."""

    data_dir: str = Field(
        default="./data",
        validate_default=True,
        description="Directory holding one ``<tenant>.json`` file per tenant. "
        "~ is expanded and the path resolved eagerly.",
    )

    lock_retries: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Attempts made to take the advisory file lock before giving up.",
    )

    lock_retry_interval: float = Field(
        default=0.05,
        ge=0.001,
        le=5.0,
        description="Seconds to wait between advisory lock attempts.",
    )

    on_corrupt: Literal["reset", "raise"] = Field(
        default="reset",
        description=(
            "What to do when a tenant file cannot be parsed. ``reset`` quarantines "
            "the file and serves a fresh session; ``raise`` refuses to serve the tenant."
        ),
    )

    indent: int | None = 2
    """JSON indent used when writing tenant files. None writes compact JSON."""

    @field_validator("data_dir", mode="before")
    @classmethod
    def _expand_data_dir(cls, value: str | Path) -> str:
        return str(Path(value).expanduser().resolve())


class CreditConfig(BaseModel):
    """Configuration for the prepaid credit economy."""

    daily_limit_standard: int = Field(
        default=5,
        ge=0,
        description="Daily allowance granted to standard-tier tenants at each UTC day change.",
    )

    daily_limit_vip: int = Field(
        default=20,
        ge=0,
        description="Daily allowance granted to VIP-tier tenants at each UTC day change.",
    )

    vip_tiers: frozenset[str] = Field(
        default=frozenset({"Diamond", "Lifetime"}),
        description="Membership tier names that receive the VIP allowance.",
    )

    receipt_retention: int = Field(
        default=10_000,
        ge=1,
        description="Unrefunded receipts remembered per process. Older receipts can no longer be refunded.",
    )

    @model_validator(mode="after")
    def validate_limits(self) -> CreditConfig:
        if self.daily_limit_vip < self.daily_limit_standard:
            raise ValueError("daily_limit_vip must not be lower than daily_limit_standard")
        return self

    def is_vip(self, tier: str) -> bool:
        """Return True when *tier* is one of the configured VIP tiers."""
        return str(tier) in self.vip_tiers

    def daily_limit(self, is_vip: bool) -> int:
        return self.daily_limit_vip if is_vip else self.daily_limit_standard


class ContextConfig(BaseModel):
    """Configuration for named conversation contexts."""

    max_history: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="Messages kept per context. The oldest message is evicted first.",
    )

    default_system_prompt: str = Field(
        default=DEFAULT_SYSTEM_PROMPT,
        min_length=1,
        description="Prompt used when a context has no personality override.",
    )


class LedgerConfig(BaseModel):
    """
    Top-level configuration for a :class:`~chatledger.manager.HistoryManager`.

    All sub-configs have sensible defaults and can be overridden individually.

    Example::

        config = LedgerConfig(
            store=StoreConfig(data_dir="/var/lib/bot", on_corrupt="raise"),
            credits=CreditConfig(daily_limit_vip=50),
        )
    """

    store: StoreConfig = Field(default_factory=StoreConfig)
    credits: CreditConfig = Field(default_factory=CreditConfig)
    contexts: ContextConfig = Field(default_factory=ContextConfig)

    @classmethod
    def default(cls) -> LedgerConfig:
        """Return a config instance with all defaults."""
        return cls()

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> LedgerConfig:
        """
        Build a config from ``CHATLEDGER_*`` environment variables.

        Unset variables keep their defaults. Recognised variables:
        ``CHATLEDGER_DATA_DIR``, ``CHATLEDGER_ON_CORRUPT``,
        ``CHATLEDGER_DAILY_LIMIT_STANDARD``, ``CHATLEDGER_DAILY_LIMIT_VIP``,
        ``CHATLEDGER_MAX_HISTORY``.

        Raises:
            pydantic.ValidationError: If a variable holds an invalid value.
        """
        env = os.environ if environ is None else environ
        store: dict[str, object] = {}
        credits: dict[str, object] = {}
        contexts: dict[str, object] = {}

        if "CHATLEDGER_DATA_DIR" in env:
            store["data_dir"] = env["CHATLEDGER_DATA_DIR"]
        if "CHATLEDGER_ON_CORRUPT" in env:
            store["on_corrupt"] = env["CHATLEDGER_ON_CORRUPT"]
        if "CHATLEDGER_DAILY_LIMIT_STANDARD" in env:
            credits["daily_limit_standard"] = env["CHATLEDGER_DAILY_LIMIT_STANDARD"]
        if "CHATLEDGER_DAILY_LIMIT_VIP" in env:
            credits["daily_limit_vip"] = env["CHATLEDGER_DAILY_LIMIT_VIP"]
        if "CHATLEDGER_MAX_HISTORY" in env:
            contexts["max_history"] = env["CHATLEDGER_MAX_HISTORY"]

        return cls(
            store=StoreConfig(**store),
            credits=CreditConfig(**credits),
            contexts=ContextConfig(**contexts),
        )
