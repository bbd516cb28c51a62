"""
Session storage.

`SessionStore` is the persistence seam used by `SessionService`. Stores hold
immutable `Session` values; `append` is a single conditional update keyed by
session id, so concurrent appends to one session never interleave or drop
messages.
"""

from __future__ import annotations

import asyncio
from typing import Protocol, Sequence

from parley.sessions.models import Message, Session


class SessionStore(Protocol):
    async def insert(self, session: Session) -> None: ...

    async def get(self, session_id: str) -> Session | None: ...

    async def append(self, session_id: str, messages: Sequence[Message]) -> Session | None:
        """Append messages atomically. Returns None if the session is gone."""
        ...

    async def rename(self, session_id: str, name: str) -> Session | None: ...

    async def delete(self, session_id: str) -> bool: ...

    async def list_by_owner(self, owner: str) -> list[Session]: ...

    async def list_all(self) -> list[Session]: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class InMemorySessionStore:
    """Process-local store for development and tests.

    Mutations take a lock scoped to the session id; the lock is held only
    while the new value is swapped in.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    async def insert(self, session: Session) -> None:
        async with self._lock_for(session.session_id):
            if session.session_id in self._sessions:
                raise ValueError(f"Session already exists: {session.session_id}")
            self._sessions[session.session_id] = session

    async def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    async def append(self, session_id: str, messages: Sequence[Message]) -> Session | None:
        async with self._lock_for(session_id):
            current = self._sessions.get(session_id)
            if current is None:
                return None
            updated = current.with_messages(*messages)
            self._sessions[session_id] = updated
            return updated

    async def rename(self, session_id: str, name: str) -> Session | None:
        async with self._lock_for(session_id):
            current = self._sessions.get(session_id)
            if current is None:
                return None
            updated = current.renamed(name)
            self._sessions[session_id] = updated
            return updated

    async def delete(self, session_id: str) -> bool:
        async with self._lock_for(session_id):
            removed = self._sessions.pop(session_id, None)
        self._locks.pop(session_id, None)
        return removed is not None

    async def list_by_owner(self, owner: str) -> list[Session]:
        return sorted(
            (s for s in self._sessions.values() if s.owner == owner),
            key=lambda s: s.created_at,
        )

    async def list_all(self) -> list[Session]:
        return sorted(self._sessions.values(), key=lambda s: s.created_at)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None
