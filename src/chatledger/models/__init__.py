"""chatledger data models."""

from chatledger.models.config import (
    DEFAULT_SYSTEM_PROMPT,
    ContextConfig,
    CreditConfig,
    LedgerConfig,
    StoreConfig,
)
from chatledger.models.session import (
    SCHEMA_VERSION,
    ActionKind,
    ChargeResult,
    ChatMessage,
    ConversationContext,
    CreditReport,
    DeductReceipt,
    MembershipTier,
    Role,
    SessionData,
    tier_from_status,
)

__all__ = [
    # Config
    "DEFAULT_SYSTEM_PROMPT",
    "ContextConfig",
    "CreditConfig",
    "LedgerConfig",
    "StoreConfig",
    # Conversation
    "ChatMessage",
    "ConversationContext",
    "Role",
    # Session
    "SCHEMA_VERSION",
    "SessionData",
    # Credits
    "ActionKind",
    "ChargeResult",
    "CreditReport",
    "DeductReceipt",
    "MembershipTier",
    "tier_from_status",
]
