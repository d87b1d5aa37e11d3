"""
Locking primitives for tenant files.

Two layers guard a tenant's state:

- :func:`file_lock`: an advisory ``flock`` on ``<tenant>.json.lock`` that
  serialises access across operating-system processes. Blocking; call it from
  a worker thread.
- :class:`TenantLocks`: one ``asyncio.Lock`` per tenant key that serialises
  read-mutate-save sequences inside a single process.

The file lock alone cannot prevent in-process lost updates: two coroutines
can both read the cached session before either saves. Both layers are needed.
"""

from __future__ import annotations

import asyncio
import fcntl
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import structlog

from chatledger.store.errors import LockTimeoutError, StorageIOError

_logger = structlog.get_logger("chatledger.store.locks")


@contextmanager
def file_lock(lock_path: Path, *, retries: int, interval: float) -> Iterator[None]:
    """
    Hold an exclusive advisory lock on *lock_path* for the duration of the block.

    The lock is attempted non-blocking up to *retries* times, sleeping
    *interval* seconds between attempts.

    Raises:
        LockTimeoutError: If the lock is still held elsewhere after the last attempt.
        StorageIOError: If the lock file cannot be opened.
    """
    try:
        fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
    except OSError as exc:
        raise StorageIOError(f"Cannot open lock file {lock_path}: {exc}") from exc

    try:
        for attempt in range(1, retries + 1):
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if attempt == retries:
                    _logger.warning("lock_timeout", lock_path=str(lock_path), attempts=retries)
                    raise LockTimeoutError(str(lock_path), retries) from None
                time.sleep(interval)
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


class TenantLocks:
    """
    Registry of per-tenant ``asyncio.Lock`` objects.

    Only safe to use from a single asyncio event loop. Locks are created
    lazily and kept for the process lifetime; different tenant keys never
    share a lock, so operations on different tenants never wait on each other.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def for_tenant(self, tenant: str) -> asyncio.Lock:
        lock = self._locks.get(tenant)
        if lock is None:
            lock = self._locks[tenant] = asyncio.Lock()
        return lock

    def __contains__(self, tenant: object) -> bool:
        return tenant in self._locks

    def __len__(self) -> int:
        return len(self._locks)
