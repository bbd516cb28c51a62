"""
Request-scoped authentication context.

The gatekeeper middleware produces at most one `IdentityClaim` per request and
stores it on `request.state.auth`. Route handlers and the access policy only
read it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from starlette.requests import HTTPConnection

ADMIN_ROLE = "ADMIN"
USER_ROLE = "USER"


@dataclass(frozen=True)
class IdentityClaim:
    """Verified caller identity. Never persisted."""

    subject: str
    roles: frozenset[str] = field(default_factory=frozenset)
    expires_at: datetime | None = None

    def has_any_role(self, roles: frozenset[str] | set[str]) -> bool:
        return bool(self.roles & frozenset(roles))

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


class RequestAuth:
    """Per-request authentication state.

    Starts UNAUTHENTICATED and moves to AUTHENTICATED at most once.
    """

    __slots__ = ("_identity",)

    def __init__(self) -> None:
        self._identity: IdentityClaim | None = None

    @property
    def state(self) -> AuthState:
        return AuthState.AUTHENTICATED if self._identity is not None else AuthState.UNAUTHENTICATED

    @property
    def identity(self) -> IdentityClaim | None:
        return self._identity

    @property
    def is_authenticated(self) -> bool:
        return self._identity is not None

    def attach(self, identity: IdentityClaim) -> bool:
        """Attach an identity unless one is already established.

        Returns True if this call established the identity.
        """
        if self._identity is not None:
            return False
        self._identity = identity
        return True


def get_request_auth(conn: HTTPConnection) -> RequestAuth:
    """Return the request's auth context, creating an empty one if needed."""
    auth = getattr(conn.state, "auth", None)
    if not isinstance(auth, RequestAuth):
        auth = RequestAuth()
        conn.state.auth = auth
    return auth
