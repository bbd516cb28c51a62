from __future__ import annotations

from enum import Enum
from typing import Any

from parley.kernel.errors import ParleyError


class AuthErrorKind(str, Enum):
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    ACCESS_DENIED = "ACCESS_DENIED"


class AuthError(ParleyError):
    """Authentication or authorization failure.

    Bad or expired tokens never raise: the gatekeeper leaves such requests
    unauthenticated and the route policy answers `AUTHENTICATION_REQUIRED`.
    """

    def __init__(
        self,
        kind: AuthErrorKind,
        message: str | None = None,
        *,
        meta: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(kind, message or _DEFAULT_MESSAGES[kind], meta=meta)


_DEFAULT_MESSAGES: dict[AuthErrorKind, str] = {
    AuthErrorKind.AUTHENTICATION_REQUIRED: "Authentication required",
    AuthErrorKind.ACCESS_DENIED: "Access denied",
}
