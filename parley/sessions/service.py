"""
Session service.

Owns session lifecycle and the only write path for messages. Ownership is by
username; holders of the ADMIN role may access any session.
"""

from __future__ import annotations

from typing import Sequence

import structlog

from parley.auth.context import IdentityClaim
from parley.kernel.errors import RequestError
from parley.kernel.time import Clock, utc_now
from parley.sessions.errors import SessionError, SessionErrorKind
from parley.sessions.models import Message, Session
from parley.sessions.store import SessionStore

logger = structlog.get_logger()


class SessionService:
    def __init__(self, store: SessionStore, *, clock: Clock = utc_now) -> None:
        self.store = store
        self.clock = clock

    async def create(self, *, owner: str, name: str, model: str) -> Session:
        name = _clean_name(name)
        session = Session.new(owner=owner, name=name, model=model, created_at=self.clock())
        await self.store.insert(session)
        logger.info("Session created", session_id=session.session_id, owner=owner, model=model)
        return session

    async def get_by_id(self, session_id: str) -> Session | None:
        return await self.store.get(session_id)

    async def require(self, session_id: str) -> Session:
        session = await self.store.get(session_id)
        if session is None:
            raise SessionError(SessionErrorKind.NOT_FOUND, session_id=session_id)
        return session

    @staticmethod
    def can_access(session: Session, identity: IdentityClaim | None) -> bool:
        if identity is None:
            return False
        return session.owner == identity.subject or identity.is_admin

    def ensure_access(self, session: Session, identity: IdentityClaim | None) -> Session:
        if not self.can_access(session, identity):
            logger.warning(
                "Session access denied",
                session_id=session.session_id,
                subject=identity.subject if identity else None,
            )
            raise SessionError(SessionErrorKind.ACCESS_DENIED, session_id=session.session_id)
        return session

    async def require_accessible(self, session_id: str, identity: IdentityClaim | None) -> Session:
        return self.ensure_access(await self.require(session_id), identity)

    async def append_messages(self, session_id: str, messages: Sequence[Message]) -> Session:
        """Append messages to the session's log in one atomic step."""
        updated = await self.store.append(session_id, tuple(messages))
        if updated is None:
            raise SessionError(SessionErrorKind.NOT_FOUND, session_id=session_id)
        return updated

    async def rename(self, session_id: str, name: str) -> Session:
        updated = await self.store.rename(session_id, _clean_name(name))
        if updated is None:
            raise SessionError(SessionErrorKind.NOT_FOUND, session_id=session_id)
        logger.info("Session renamed", session_id=session_id)
        return updated

    async def delete(self, session_id: str) -> None:
        if not await self.store.delete(session_id):
            raise SessionError(SessionErrorKind.NOT_FOUND, session_id=session_id)
        logger.info("Session deleted", session_id=session_id)

    async def list_for_owner(self, owner: str) -> list[Session]:
        return await self.store.list_by_owner(owner)

    async def list_all(self) -> list[Session]:
        return await self.store.list_all()


def _clean_name(name: str | None) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise RequestError("Session name must not be empty", meta={"field": "name"})
    return cleaned
