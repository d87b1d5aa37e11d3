"""chatledger persistence layer."""

from chatledger.store.cache import SessionCache
from chatledger.store.errors import (
    ChatLedgerError,
    CorruptSessionError,
    InvalidTenantKeyError,
    LockTimeoutError,
    StorageIOError,
)
from chatledger.store.json_store import SessionStore, validate_tenant_key
from chatledger.store.locks import TenantLocks, file_lock
from chatledger.store.schema import UPGRADES, UpgradeDefaults, detect_version, migrate

__all__ = [
    "SessionCache",
    "SessionStore",
    "TenantLocks",
    "file_lock",
    "validate_tenant_key",
    # Schema
    "UPGRADES",
    "UpgradeDefaults",
    "detect_version",
    "migrate",
    # Errors
    "ChatLedgerError",
    "CorruptSessionError",
    "InvalidTenantKeyError",
    "LockTimeoutError",
    "StorageIOError",
]
