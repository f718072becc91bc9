from __future__ import annotations

import logging
from typing import Any, Generic, Optional, TypeVar

from pydantic import TypeAdapter

from . import codec
from .keys import ExpenseKey, PaymentKey, SessionKey
from .models import (
    EXPENSE_SESSION_ADAPTER,
    PAYMENT_SESSION_ADAPTER,
    ExpenseSession,
    PaymentSession,
    SessionRecord,
)
from .store import SessionStore

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=SessionKey)
S = TypeVar("S", bound=SessionRecord)


class SessionError(Exception):
    """Base class for session persistence failures."""


class SessionExpired(SessionError):
    """The session lapsed (or never existed) by the time it was written back."""


class SessionConflict(SessionError):
    """Another event updated the session between our read and our write."""


class SessionRepository(Generic[K, S]):
    """Typed access to one kind of conversation session.

    Writes are versioned: ``save`` only succeeds when the stored copy still has
    the version the caller loaded, and every successful write refreshes the TTL.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        key_type: type[K],
        adapter: TypeAdapter[Any],
        ttl_seconds: int,
    ) -> None:
        self.store = store
        self.key_type = key_type
        self.adapter = adapter
        self.ttl_seconds = ttl_seconds

    def _render(self, key: K) -> str:
        if not isinstance(key, self.key_type):
            raise TypeError(f"{type(key).__name__} cannot address {self.key_type.__name__} sessions")
        return key.render()

    async def load(self, key: K) -> Optional[S]:
        return codec.decode(self.adapter, await self.store.get(self._render(key)))

    async def start(self, key: K, session: S) -> S:
        """Begin a new conversation, replacing any earlier one for the same key."""
        fresh = session.model_copy(update={"version": 0})
        await self.store.put(self._render(key), codec.encode(fresh), self.ttl_seconds)
        return fresh

    async def save(self, key: K, session: S) -> S:
        rendered = self._render(key)
        current_raw = await self.store.get(rendered)
        current = codec.decode(self.adapter, current_raw)
        if current is None:
            raise SessionExpired(rendered)
        if current.version != session.version:
            logger.info(
                "Session %s moved from version %d to %d underneath this update",
                rendered,
                session.version,
                current.version,
            )
            raise SessionConflict(rendered)
        updated = session.model_copy(update={"version": session.version + 1})
        if not await self.store.replace(rendered, current_raw, codec.encode(updated), self.ttl_seconds):
            if await self.store.get(rendered) is None:
                raise SessionExpired(rendered)
            raise SessionConflict(rendered)
        return updated

    async def delete(self, key: K) -> None:
        await self.store.delete(self._render(key))


ExpenseSessions = SessionRepository[ExpenseKey, ExpenseSession]
PaymentSessions = SessionRepository[PaymentKey, PaymentSession]


def expense_sessions(store: SessionStore, ttl_seconds: int = 600) -> ExpenseSessions:
    return SessionRepository(
        store, key_type=ExpenseKey, adapter=EXPENSE_SESSION_ADAPTER, ttl_seconds=ttl_seconds
    )


def payment_sessions(store: SessionStore, ttl_seconds: int = 300) -> PaymentSessions:
    return SessionRepository(
        store, key_type=PaymentKey, adapter=PAYMENT_SESSION_ADAPTER, ttl_seconds=ttl_seconds
    )
