"""Named conversation contexts: history and personality per tenant."""

from __future__ import annotations

import structlog

from chatledger.events.bus import EventBus, LedgerEvent
from chatledger.models.config import ContextConfig
from chatledger.models.session import ChatMessage, ConversationContext, Role, SessionData
from chatledger.store.cache import SessionCache


def _context(session: SessionData, name: str) -> ConversationContext:
    ctx = session.contexts.get(name)
    if ctx is None:
        ctx = session.contexts[name] = ConversationContext()
    return ctx


def _trim(history: list[ChatMessage], cap: int) -> None:
    overflow = len(history) - cap
    if overflow > 0:
        del history[:overflow]


class ContextManager:
    """
    Per-tenant, per-context message log and personality override.

    A context (``"default"``, ``"roleplay"`` ...) is created on first use with
    an empty history and the default personality. Contexts of the same tenant
    are independent: clearing or re-personalising one never touches another.

    Every mutating call persists the tenant's session before returning.
    """

    def __init__(self, cache: SessionCache, config: ContextConfig, event_bus: EventBus) -> None:
        self._cache = cache
        self._config = config
        self._event_bus = event_bus
        self._logger = structlog.get_logger("chatledger.contexts")

    @property
    def default_system_prompt(self) -> str:
        return self._config.default_system_prompt

    async def get_history(self, tenant: str, context: str) -> list[ChatMessage]:
        """
        Return a copy of *context*'s history, oldest first.

        An unknown context is created empty with the default personality. A
        history loaded from an older file with more than ``max_history``
        entries is cut down to the newest ones. Both changes are kept in
        memory and written by the next mutation, so reading never touches the
        disk beyond the initial load.
        """
        async with self._cache.locked(tenant) as session:
            history = _context(session, context).history
            _trim(history, self._config.max_history)
            return [m.model_copy() for m in history]

    async def add_message(self, tenant: str, context: str, role: Role, content: str) -> None:
        """
        Append a message, evicting the oldest entries beyond ``max_history``.

        Raises:
            pydantic.ValidationError: If *role* is not system, user or assistant.
        """
        message = ChatMessage(role=role, content=content)
        async with self._cache.transaction(tenant) as session:
            history = _context(session, context).history
            history.append(message)
            _trim(history, self._config.max_history)

    async def clear_history(self, tenant: str, context: str) -> None:
        """Empty *context*'s history. Its personality is kept."""
        async with self._cache.transaction(tenant) as session:
            ctx = _context(session, context)
            cleared = len(ctx.history)
            ctx.history = []
        self._logger.info("history_cleared", tenant=tenant, context=context, cleared=cleared)
        self._event_bus.publish(
            LedgerEvent.HISTORY_CLEARED,
            {"tenant": tenant, "context": context, "cleared": cleared},
        )

    async def set_personality(self, tenant: str, context: str, text: str) -> None:
        """Set *context*'s personality. Empty or whitespace-only *text* restores the default."""
        personality = text if text and text.strip() else ""
        async with self._cache.transaction(tenant) as session:
            _context(session, context).personality = personality
        self._event_bus.publish(
            LedgerEvent.PERSONALITY_CHANGED,
            {"tenant": tenant, "context": context, "is_default": not personality},
        )

    async def get_system_prompt(self, tenant: str, context: str) -> str:
        """Return *context*'s personality override, or the default prompt when it has none."""
        session = await self._cache.get(tenant)
        ctx = session.contexts.get(context)
        personality = ctx.personality if ctx else ""
        return personality or self._config.default_system_prompt

    async def list_contexts(self, tenant: str) -> list[str]:
        """Return the names of *tenant*'s existing contexts, sorted."""
        session = await self._cache.get(tenant)
        return sorted(session.contexts)
