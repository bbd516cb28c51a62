"""
User lookup used by the gatekeeper.

Registration, login and password storage live outside this service. The
gatekeeper only needs to know whether a token's subject is still a known
user and which roles that user holds.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog
from redis.asyncio import Redis

logger = structlog.get_logger()


@dataclass(frozen=True)
class UserRecord:
    username: str
    roles: frozenset[str] = field(default_factory=frozenset)

    def to_dict(self) -> dict[str, Any]:
        return {"username": self.username, "roles": sorted(self.roles)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserRecord":
        return cls(username=data["username"], roles=frozenset(data.get("roles") or ()))


class UserDirectory(Protocol):
    async def get_user(self, username: str) -> UserRecord | None: ...


class InMemoryUserDirectory:
    """Process-local directory, seeded from settings or tests."""

    def __init__(self, users: dict[str, list[str]] | None = None) -> None:
        self._users: dict[str, UserRecord] = {}
        for username, roles in (users or {}).items():
            self.add(username, roles)

    def add(self, username: str, roles: list[str] | tuple[str, ...] = ()) -> UserRecord:
        record = UserRecord(username=username, roles=frozenset(roles))
        self._users[username] = record
        return record

    def remove(self, username: str) -> None:
        self._users.pop(username, None)

    async def get_user(self, username: str) -> UserRecord | None:
        return self._users.get(username)


class RedisUserDirectory:
    """Directory backed by JSON documents at `{prefix}:users:{username}`."""

    def __init__(self, redis: Redis, *, prefix: str = "parley") -> None:
        self._redis = redis
        self._prefix = f"{prefix}:users:"

    def _key(self, username: str) -> str:
        return f"{self._prefix}{username}"

    async def get_user(self, username: str) -> UserRecord | None:
        raw = await self._redis.get(self._key(username))
        if raw is None:
            return None
        try:
            return UserRecord.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Corrupt user document", username=username, error=str(e))
            return None

    async def upsert(self, record: UserRecord) -> None:
        await self._redis.set(self._key(record.username), json.dumps(record.to_dict()))
