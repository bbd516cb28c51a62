"""
Auth gatekeeper.

Runs on every request before routing. A valid bearer token for a known user
attaches an `IdentityClaim` to `request.state.auth`; anything else leaves the
request unauthenticated. The gatekeeper itself never rejects a request:
whether a route needs an identity is decided by `parley.auth.policy`.
"""

from __future__ import annotations

import structlog
from starlette.requests import HTTPConnection
from starlette.types import ASGIApp, Receive, Scope, Send

from parley.auth.context import IdentityClaim, get_request_auth
from parley.auth.tokens import TokenVerifier, extract_bearer_token
from parley.auth.users import UserDirectory
from parley.kernel.time import Clock, utc_now

logger = structlog.get_logger()

AUTHORIZATION_HEADER = "Authorization"


class AuthGatekeeperMiddleware:
    def __init__(
        self,
        app: ASGIApp,
        *,
        verifier: TokenVerifier,
        users: UserDirectory,
        clock: Clock = utc_now,
    ) -> None:
        self.app = app
        self.verifier = verifier
        self.users = users
        self.clock = clock

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        conn = HTTPConnection(scope)
        auth = get_request_auth(conn)
        if not auth.is_authenticated:
            identity = await self.authenticate(conn.headers.get(AUTHORIZATION_HEADER))
            if identity is not None and auth.attach(identity):
                structlog.contextvars.bind_contextvars(subject=identity.subject)

        try:
            await self.app(scope, receive, send)
        finally:
            structlog.contextvars.unbind_contextvars("subject")

    async def authenticate(self, authorization: str | None) -> IdentityClaim | None:
        """Resolve an Authorization header value to an identity, or None."""
        token = extract_bearer_token(authorization)
        if token is None:
            return None

        try:
            claims = self.verifier.verify(token)
        except Exception as e:
            logger.warning("Token verification failed unexpectedly", error=str(e))
            return None
        if claims is None:
            return None

        try:
            user = await self.users.get_user(claims.sub)
        except Exception as e:
            logger.warning("User lookup failed", subject=claims.sub, error=str(e))
            return None

        if user is None:
            logger.warning("Token subject is not a known user", subject=claims.sub)
            return None
        if user.username != claims.sub:
            logger.warning("Token subject does not match user", subject=claims.sub)
            return None
        if claims.exp <= self.clock():
            logger.warning("Bearer token expired", subject=claims.sub)
            return None

        return IdentityClaim(
            subject=user.username,
            roles=user.roles,
            expires_at=claims.exp,
        )
