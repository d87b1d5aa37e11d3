"""
chatledger: conversation history and prepaid credits for multi-tenant chat bots.

Primary entry point::

    from chatledger import HistoryManager, LedgerConfig, StoreConfig

    manager = HistoryManager(LedgerConfig(store=StoreConfig(data_dir="./data")))
    charge = await manager.check_and_charge("user-1", 1, "text")
    if charge:
        await manager.add_message("user-1", "default", "user", "Hello!")
"""

from chatledger.contexts import ContextManager
from chatledger.events.bus import EventBus, LedgerEvent
from chatledger.ledger import CreditLedger, make_id
from chatledger.manager import HistoryManager
from chatledger.models import (
    DEFAULT_SYSTEM_PROMPT,
    ChargeResult,
    ChatMessage,
    ContextConfig,
    ConversationContext,
    CreditConfig,
    CreditReport,
    DeductReceipt,
    LedgerConfig,
    MembershipTier,
    SessionData,
    StoreConfig,
    tier_from_status,
)
from chatledger.outbound import with_auth_token
from chatledger.prompts import build_system_prompt
from chatledger.store import (
    ChatLedgerError,
    CorruptSessionError,
    InvalidTenantKeyError,
    LockTimeoutError,
    SessionCache,
    SessionStore,
    StorageIOError,
)

__version__ = "0.1.0"

__all__ = [
    # Core
    "HistoryManager",
    "CreditLedger",
    "ContextManager",
    "SessionCache",
    "SessionStore",
    "make_id",
    # Config
    "LedgerConfig",
    "StoreConfig",
    "CreditConfig",
    "ContextConfig",
    "DEFAULT_SYSTEM_PROMPT",
    # Models
    "SessionData",
    "ConversationContext",
    "ChatMessage",
    "DeductReceipt",
    "ChargeResult",
    "CreditReport",
    "MembershipTier",
    "tier_from_status",
    # Events
    "EventBus",
    "LedgerEvent",
    # Helpers
    "build_system_prompt",
    "with_auth_token",
    # Errors
    "ChatLedgerError",
    "CorruptSessionError",
    "InvalidTenantKeyError",
    "LockTimeoutError",
    "StorageIOError",
]
