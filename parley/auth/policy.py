"""
Declarative route access policy.

Rules are checked in order and the first matching pattern wins. A pattern is
either an exact path or a prefix ending in `/**`, which matches the prefix
itself and everything below it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import structlog
from starlette.requests import HTTPConnection
from starlette.types import ASGIApp, Receive, Scope, Send

from parley.auth.context import ADMIN_ROLE, IdentityClaim, get_request_auth
from parley.auth.errors import AuthError, AuthErrorKind
from parley.kernel.http.errors import error_response

logger = structlog.get_logger()


class AccessLevel(str, Enum):
    PUBLIC = "public"
    AUTHENTICATED = "authenticated"
    ROLE_GATED = "role_gated"


@dataclass(frozen=True)
class RouteRule:
    pattern: str
    access: AccessLevel
    roles: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if self.access is AccessLevel.ROLE_GATED and not self.roles:
            raise ValueError(f"Role-gated rule {self.pattern!r} needs at least one role")

    def matches(self, path: str) -> bool:
        if self.pattern.endswith("/**"):
            base = self.pattern[:-3]
            return path == base or path.startswith(base + "/")
        return path == self.pattern


@dataclass(frozen=True)
class RoutePolicy:
    rules: tuple[RouteRule, ...]
    default: AccessLevel = AccessLevel.AUTHENTICATED

    def rule_for(self, path: str) -> RouteRule | None:
        for rule in self.rules:
            if rule.matches(path):
                return rule
        return None

    def check(self, path: str, identity: IdentityClaim | None) -> AuthError | None:
        """Return the error to raise for this caller, or None if allowed."""
        rule = self.rule_for(path)
        access = rule.access if rule else self.default

        if access is AccessLevel.PUBLIC:
            return None
        if identity is None:
            return AuthError(AuthErrorKind.AUTHENTICATION_REQUIRED)
        if access is AccessLevel.ROLE_GATED and not identity.has_any_role(rule.roles):
            return AuthError(
                AuthErrorKind.ACCESS_DENIED,
                meta={"required_roles": sorted(rule.roles)},
            )
        return None


def default_route_policy(api_prefix: str = "/api/v1") -> RoutePolicy:
    return RoutePolicy(
        rules=(
            RouteRule("/", AccessLevel.PUBLIC),
            RouteRule("/health/**", AccessLevel.PUBLIC),
            RouteRule("/metrics/**", AccessLevel.PUBLIC),
            RouteRule("/docs/**", AccessLevel.PUBLIC),
            RouteRule("/redoc/**", AccessLevel.PUBLIC),
            RouteRule("/openapi.json", AccessLevel.PUBLIC),
            RouteRule(f"{api_prefix}/admin/**", AccessLevel.ROLE_GATED, frozenset({ADMIN_ROLE})),
            RouteRule(f"{api_prefix}/**", AccessLevel.AUTHENTICATED),
        ),
        default=AccessLevel.AUTHENTICATED,
    )


class AccessPolicyMiddleware:
    """Rejects requests the route policy does not allow.

    Must run after `AuthGatekeeperMiddleware`, i.e. be added before it.
    """

    def __init__(self, app: ASGIApp, *, policy: RoutePolicy) -> None:
        self.app = app
        self.policy = policy

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["method"] == "OPTIONS":
            await self.app(scope, receive, send)
            return

        conn = HTTPConnection(scope)
        identity = get_request_auth(conn).identity
        denied = self.policy.check(conn.url.path, identity)
        if denied is not None:
            logger.info(
                "Request denied by route policy",
                path=conn.url.path,
                method=scope["method"],
                code=denied.code,
            )
            await error_response(conn, denied)(scope, receive, send)
            return

        await self.app(scope, receive, send)
