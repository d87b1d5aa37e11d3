"""Exceptions raised by the chatledger persistence layer."""

from __future__ import annotations


class ChatLedgerError(Exception):
    """Base class for chatledger errors."""


class StorageIOError(ChatLedgerError):
    """Raised when a tenant file (or the data directory) cannot be read or written."""

    def __init__(self, message: str, *, tenant: str | None = None) -> None:
        super().__init__(message)
        self.tenant = tenant


class LockTimeoutError(ChatLedgerError):
    """Raised when the advisory lock on a tenant file is not acquired within the retry budget."""

    def __init__(self, lock_path: str, attempts: int) -> None:
        super().__init__(f"Could not lock {lock_path!r} after {attempts} attempts")
        self.lock_path = lock_path
        self.attempts = attempts


class CorruptSessionError(ChatLedgerError):
    """Raised when a tenant file cannot be parsed and the store is configured to refuse it."""

    def __init__(self, tenant: str, reason: str) -> None:
        super().__init__(f"Corrupt session for tenant {tenant!r}: {reason}")
        self.tenant = tenant
        self.reason = reason


class InvalidTenantKeyError(ChatLedgerError, ValueError):
    """Raised when a tenant key cannot be used as a file name."""

    def __init__(self, tenant: str) -> None:
        super().__init__(f"Invalid tenant key: {tenant!r}")
        self.tenant = tenant
