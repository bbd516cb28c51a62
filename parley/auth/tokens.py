"""
Bearer token issuance and verification (HS256 JWT).

Verification never raises to its caller: malformed, forged and expired tokens
all come back as None and are logged.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import structlog
from pydantic import BaseModel, Field, ValidationError

from parley.config import Settings, get_settings
from parley.kernel.time import utc_now

logger = structlog.get_logger()

JWT_ALGORITHM = "HS256"
BEARER_PREFIX = "bearer "


class AccessTokenClaims(BaseModel):
    """Decoded access token payload."""

    sub: str = Field(min_length=1)
    roles: list[str] = Field(default_factory=list)
    exp: datetime
    iat: datetime | None = None
    iss: str | None = None


class TokenVerifier:
    """Issues and verifies access tokens signed with a shared secret."""

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = JWT_ALGORITHM,
        issuer: str | None = None,
        default_ttl: timedelta = timedelta(hours=10),
        leeway_seconds: int = 0,
    ) -> None:
        if not secret:
            raise ValueError("Token secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm
        self._issuer = issuer
        self._default_ttl = default_ttl
        self._leeway = leeway_seconds

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "TokenVerifier":
        settings = settings or get_settings()
        return cls(
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            issuer=settings.jwt_issuer,
            default_ttl=timedelta(minutes=settings.access_token_expiry_minutes),
        )

    def issue(
        self,
        subject: str,
        roles: list[str] | tuple[str, ...] = (),
        *,
        expires_in: timedelta | None = None,
        now: datetime | None = None,
    ) -> str:
        issued_at = now or utc_now()
        expiry = issued_at + (expires_in if expires_in is not None else self._default_ttl)
        payload: dict = {
            "sub": subject,
            "roles": list(roles),
            "iat": int(issued_at.timestamp()),
            "exp": int(expiry.timestamp()),
        }
        if self._issuer:
            payload["iss"] = self._issuer
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> AccessTokenClaims | None:
        """Verify signature and expiry and decode the claims."""
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                leeway=self._leeway,
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            logger.warning("Bearer token expired")
            return None
        except jwt.InvalidSignatureError:
            logger.warning("Bearer token signature mismatch")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning("Malformed bearer token", error=str(e))
            return None

        try:
            return AccessTokenClaims(
                sub=payload["sub"],
                roles=payload.get("roles") or [],
                exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
                iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc) if "iat" in payload else None,
                iss=payload.get("iss"),
            )
        except (ValidationError, TypeError, ValueError) as e:
            logger.warning("Bearer token claims rejected", error=str(e))
            return None


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from an `Authorization: Bearer <token>` header value."""
    if not authorization:
        return None
    if not authorization.lower().startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    return token or None
