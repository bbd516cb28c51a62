"""
Redis-backed session store.

Layout:
- `{prefix}:sessions:{session_id}`         JSON session document
- `{prefix}:sessions:owner:{owner}`        set of the owner's session ids
- `{prefix}:sessions:all`                  set of every session id

Appends and renames are optimistic WATCH/MULTI transactions on the session
key and are retried when another writer commits first.
"""

from __future__ import annotations

import json
from typing import Callable, Sequence

import structlog
from redis.asyncio import Redis
from redis.exceptions import WatchError

from parley.sessions.errors import SessionError, SessionErrorKind
from parley.sessions.models import Message, Session

logger = structlog.get_logger()

MAX_WATCH_RETRIES = 16


class RedisSessionStore:
    def __init__(self, redis: Redis, *, prefix: str = "parley") -> None:
        self._redis = redis
        self._prefix = f"{prefix}:sessions:"

    def _key(self, session_id: str) -> str:
        return f"{self._prefix}{session_id}"

    def _owner_key(self, owner: str) -> str:
        return f"{self._prefix}owner:{owner}"

    @property
    def _all_key(self) -> str:
        return f"{self._prefix}all"

    @staticmethod
    def _encode(session: Session) -> str:
        return json.dumps(session.to_document())

    @staticmethod
    def _decode(raw: str) -> Session:
        return Session.from_document(json.loads(raw))

    async def insert(self, session: Session) -> None:
        created = await self._redis.set(self._key(session.session_id), self._encode(session), nx=True)
        if not created:
            raise ValueError(f"Session already exists: {session.session_id}")
        # Indexes only once the document is ours.
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.sadd(self._owner_key(session.owner), session.session_id)
            pipe.sadd(self._all_key, session.session_id)
            await pipe.execute()

    async def get(self, session_id: str) -> Session | None:
        raw = await self._redis.get(self._key(session_id))
        if raw is None:
            return None
        return self._decode(raw)

    async def _update(self, session_id: str, change: Callable[[Session], Session]) -> Session | None:
        key = self._key(session_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            for attempt in range(MAX_WATCH_RETRIES):
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        await pipe.unwatch()
                        return None
                    updated = change(self._decode(raw))
                    pipe.multi()
                    pipe.set(key, self._encode(updated))
                    await pipe.execute()
                    return updated
                except WatchError:
                    logger.debug("Session write conflict, retrying", session_id=session_id, attempt=attempt)
                    await pipe.reset()
        raise SessionError(
            SessionErrorKind.PERSISTENCE_FAILED,
            "Session is too contended to update",
            session_id=session_id,
        )

    async def append(self, session_id: str, messages: Sequence[Message]) -> Session | None:
        return await self._update(session_id, lambda s: s.with_messages(*messages))

    async def rename(self, session_id: str, name: str) -> Session | None:
        return await self._update(session_id, lambda s: s.renamed(name))

    async def delete(self, session_id: str) -> bool:
        session = await self.get(session_id)
        if session is None:
            return False
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._key(session_id))
            pipe.srem(self._owner_key(session.owner), session_id)
            pipe.srem(self._all_key, session_id)
            deleted, _, _ = await pipe.execute()
        return bool(deleted)

    async def _load_many(self, ids: set[str]) -> list[Session]:
        if not ids:
            return []
        ordered = sorted(ids)
        raws = await self._redis.mget([self._key(i) for i in ordered])
        sessions = [self._decode(raw) for raw in raws if raw is not None]
        return sorted(sessions, key=lambda s: s.created_at)

    async def list_by_owner(self, owner: str) -> list[Session]:
        return await self._load_many(await self._redis.smembers(self._owner_key(owner)))

    async def list_all(self) -> list[Session]:
        return await self._load_many(await self._redis.smembers(self._all_key))

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except Exception as e:
            logger.warning("Redis ping failed", error=str(e))
            return False

    async def close(self) -> None:
        await self._redis.aclose()
