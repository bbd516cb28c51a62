"""
Session domain model.

Sessions and messages are immutable values. A session changes only by
producing a new value with more messages or a new name; stores swap values
rather than editing them in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Iterator, overload

from parley.kernel.ids import new_session_id
from parley.kernel.time import isoformat_z, parse_iso8601, utc_now


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class Message:
    role: MessageRole
    content: str
    timestamp: datetime

    @classmethod
    def user(cls, content: str, timestamp: datetime) -> "Message":
        return cls(role=MessageRole.USER, content=content, timestamp=timestamp)

    @classmethod
    def assistant(cls, content: str, timestamp: datetime) -> "Message":
        return cls(role=MessageRole.ASSISTANT, content=content, timestamp=timestamp)

    @classmethod
    def system(cls, content: str, timestamp: datetime) -> "Message":
        return cls(role=MessageRole.SYSTEM, content=content, timestamp=timestamp)

    def as_prompt(self) -> dict[str, str]:
        """Chat-completions wire form."""
        return {"role": self.role.value, "content": self.content}

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": isoformat_z(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        return cls(
            role=MessageRole(data["role"]),
            content=data.get("content") or "",
            timestamp=parse_iso8601(data["timestamp"]),
        )


class MessageLog:
    """Ordered, append-only sequence of messages."""

    __slots__ = ("_messages",)

    def __init__(self, messages: Iterable[Message] = ()) -> None:
        self._messages: tuple[Message, ...] = tuple(messages)

    def append(self, *messages: Message) -> "MessageLog":
        """Return a new log with `messages` added at the end."""
        return MessageLog(self._messages + messages)

    def last(self, count: int) -> tuple[Message, ...]:
        if count <= 0:
            return ()
        return self._messages[-count:]

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    @overload
    def __getitem__(self, index: int) -> Message: ...

    @overload
    def __getitem__(self, index: slice) -> tuple[Message, ...]: ...

    def __getitem__(self, index):
        return self._messages[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MessageLog):
            return NotImplemented
        return self._messages == other._messages

    def __hash__(self) -> int:
        return hash(self._messages)

    def __repr__(self) -> str:
        return f"MessageLog(len={len(self._messages)})"


@dataclass(frozen=True)
class Session:
    session_id: str
    owner: str
    name: str
    model: str
    created_at: datetime
    messages: MessageLog = field(default_factory=MessageLog)

    @classmethod
    def new(
        cls,
        *,
        owner: str,
        name: str,
        model: str,
        created_at: datetime | None = None,
        session_id: str | None = None,
    ) -> "Session":
        return cls(
            session_id=session_id or new_session_id(),
            owner=owner,
            name=name,
            model=model,
            created_at=created_at or utc_now(),
        )

    def with_messages(self, *messages: Message) -> "Session":
        return replace(self, messages=self.messages.append(*messages))

    def renamed(self, name: str) -> "Session":
        return replace(self, name=name)

    def to_document(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "owner": self.owner,
            "name": self.name,
            "model": self.model,
            "created_at": isoformat_z(self.created_at),
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "Session":
        return cls(
            session_id=data["session_id"],
            owner=data["owner"],
            name=data.get("name") or "",
            model=data.get("model") or "",
            created_at=parse_iso8601(data["created_at"]),
            messages=MessageLog(Message.from_dict(m) for m in data.get("messages") or ()),
        )
