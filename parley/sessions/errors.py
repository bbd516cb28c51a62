from __future__ import annotations

from enum import Enum
from typing import Any

from parley.kernel.errors import ParleyError


class SessionErrorKind(str, Enum):
    NOT_FOUND = "SESSION_NOT_FOUND"
    ACCESS_DENIED = "SESSION_ACCESS_DENIED"
    PERSISTENCE_FAILED = "SESSION_PERSISTENCE_FAILED"


class SessionError(ParleyError):
    def __init__(
        self,
        kind: SessionErrorKind,
        message: str | None = None,
        *,
        session_id: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None:
        meta = dict(meta or {})
        if session_id is not None:
            meta.setdefault("session_id", session_id)
        super().__init__(kind, message or _default_message(kind, session_id), meta=meta)
        self.session_id = session_id


def _default_message(kind: SessionErrorKind, session_id: str | None) -> str:
    if kind is SessionErrorKind.NOT_FOUND:
        return f"Session not found: {session_id}" if session_id else "Session not found"
    if kind is SessionErrorKind.ACCESS_DENIED:
        return "You do not have access to this session"
    return "The chat turn could not be saved"
