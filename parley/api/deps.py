"""
Service container and FastAPI dependencies.

`Services` is built once per app and stored on `app.state.services`. Routes
reach it only through the dependencies below, so tests can build an app
around fakes.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Request
from redis.asyncio import Redis

from parley.auth.context import IdentityClaim, get_request_auth
from parley.auth.errors import AuthError, AuthErrorKind
from parley.auth.tokens import TokenVerifier
from parley.auth.users import InMemoryUserDirectory, RedisUserDirectory, UserDirectory
from parley.chat.pipeline import ChatPipeline
from parley.config import Settings
from parley.llm.adapter import CompletionProvider, OpenAICompatibleProvider
from parley.llm.providers import ProviderConfig
from parley.sessions.redis_store import RedisSessionStore
from parley.sessions.service import SessionService
from parley.sessions.store import InMemorySessionStore, SessionStore


@dataclass
class Services:
    settings: Settings
    token_verifier: TokenVerifier
    user_directory: UserDirectory
    session_store: SessionStore
    session_service: SessionService
    provider: CompletionProvider
    chat_pipeline: ChatPipeline

    async def aclose(self) -> None:
        await self.provider.aclose()
        await self.session_store.close()


def build_services(
    settings: Settings,
    *,
    user_directory: UserDirectory | None = None,
    session_store: SessionStore | None = None,
    provider: CompletionProvider | None = None,
) -> Services:
    """Wire the default collaborators for `settings`. Nothing connects yet."""
    redis: Redis | None = None
    if settings.session_store_backend == "redis" and (session_store is None or user_directory is None):
        redis = Redis.from_url(str(settings.redis_url), decode_responses=True)

    if session_store is None:
        if redis is not None:
            session_store = RedisSessionStore(redis, prefix=settings.redis_key_prefix)
        else:
            session_store = InMemorySessionStore()

    if user_directory is None:
        if redis is not None:
            user_directory = RedisUserDirectory(redis, prefix=settings.redis_key_prefix)
        else:
            user_directory = InMemoryUserDirectory(settings.bootstrap_users)

    provider = provider or OpenAICompatibleProvider(ProviderConfig.from_settings(settings))
    session_service = SessionService(session_store)

    return Services(
        settings=settings,
        token_verifier=TokenVerifier.from_settings(settings),
        user_directory=user_directory,
        session_store=session_store,
        session_service=session_service,
        provider=provider,
        chat_pipeline=ChatPipeline(
            session_service,
            provider,
            system_instruction=settings.chat_system_instruction,
            history_limit=settings.chat_history_max_messages,
        ),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_session_service(services: Services = Depends(get_services)) -> SessionService:
    return services.session_service


def get_chat_pipeline(services: Services = Depends(get_services)) -> ChatPipeline:
    return services.chat_pipeline


def get_identity(request: Request) -> IdentityClaim | None:
    """Identity attached by the gatekeeper, if any."""
    return get_request_auth(request).identity


def require_identity(identity: IdentityClaim | None = Depends(get_identity)) -> IdentityClaim:
    if identity is None:
        raise AuthError(AuthErrorKind.AUTHENTICATION_REQUIRED)
    return identity
