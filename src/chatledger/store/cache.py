"""Per-process session cache with per-tenant write serialisation."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

import structlog

from chatledger.events.bus import EventBus, LedgerEvent
from chatledger.models.session import SessionData
from chatledger.store.json_store import SessionStore, validate_tenant_key
from chatledger.store.locks import TenantLocks


class SessionCache:
    """
    Process-scoped map from tenant key to its loaded :class:`SessionData`.

    Sessions are loaded lazily from the :class:`SessionStore` on first access
    and kept for the process lifetime. Every mutation goes through
    :meth:`transaction`, which:

    1. takes the tenant's ``asyncio.Lock`` (so overlapping coroutines for the
       same tenant run one after the other),
    2. yields the live session for the caller to mutate,
    3. saves it once on exit if anything changed,
    4. restores the pre-transaction state if the body or the save raised.

    Thread-safety: only safe to use from a single asyncio event loop.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        new_session: Callable[[], SessionData],
        event_bus: EventBus,
    ) -> None:
        self._store = store
        self._new_session = new_session
        self._event_bus = event_bus
        self._sessions: dict[str, SessionData] = {}
        self._locks = TenantLocks()
        self._logger = structlog.get_logger("chatledger.cache")

    @property
    def store(self) -> SessionStore:
        return self._store

    def lock(self, tenant: str) -> asyncio.Lock:
        """Return the in-process lock serialising *tenant*'s read-mutate-save sequences."""
        return self._locks.for_tenant(validate_tenant_key(tenant))

    async def get(self, tenant: str) -> SessionData:
        """Return the live cached session for *tenant*, loading or creating it if needed."""
        async with self.lock(tenant):
            return await self._get_locked(tenant)

    async def snapshot(self, tenant: str) -> SessionData:
        """Return a deep copy of *tenant*'s session, safe to hand to reporting code."""
        async with self.lock(tenant):
            session = await self._get_locked(tenant)
            return session.model_copy(deep=True)

    async def _get_locked(self, tenant: str) -> SessionData:
        session = self._sessions.get(tenant)
        if session is not None:
            return session

        session = await self._store.load(tenant)
        if session is None:
            session = self._new_session()
            self._logger.info("session_created", tenant=tenant, daily_credits=session.daily_credits)
            self._event_bus.publish(
                LedgerEvent.SESSION_CREATED,
                {"tenant": tenant, "daily_credits": session.daily_credits},
            )
        self._sessions[tenant] = session
        return session

    @asynccontextmanager
    async def locked(self, tenant: str) -> AsyncIterator[SessionData]:
        """
        Hold *tenant*'s lock and yield the live session without saving it.

        Changes made inside the block stay in memory and are written by the
        next :meth:`transaction` that touches the tenant.
        """
        async with self.lock(tenant):
            yield await self._get_locked(tenant)

    @asynccontextmanager
    async def transaction(self, tenant: str) -> AsyncIterator[SessionData]:
        """
        Hold *tenant*'s lock, yield its session, and persist it if it changed.

        Raises:
            LockTimeoutError, StorageIOError, CorruptSessionError: From the
                store. The in-memory session is rolled back first, so a
                failed operation leaves no trace.
        """
        async with self.lock(tenant):
            session = await self._get_locked(tenant)
            before = session.model_copy(deep=True)
            try:
                yield session
            except BaseException:
                self._sessions[tenant] = before
                raise

            if session == before:
                return
            try:
                await self._store.save(tenant, session)
            except asyncio.CancelledError:
                # the write is shielded and still lands, so memory keeps the new state
                raise
            except Exception as exc:
                self._sessions[tenant] = before
                self._logger.error("session_save_failed", tenant=tenant, error=str(exc))
                self._event_bus.publish(LedgerEvent.STORAGE_FAILED, {"tenant": tenant, "error": str(exc)})
                raise

    def evict(self, tenant: str) -> None:
        """Drop *tenant* from memory; the next access reloads it from disk."""
        self._sessions.pop(tenant, None)

    def __contains__(self, tenant: object) -> bool:
        return tenant in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
