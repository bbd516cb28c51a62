"""
Parley - FastAPI Application

Authenticated, session-scoped streaming chat. Provides:
- Bearer-token authentication with a declarative route policy
- Session management
- Streaming chat turns over an OpenAI-compatible completion provider
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from parley import __version__
from parley.api.deps import Services, build_services
from parley.api.middleware.security import (
    REQUEST_ID_HEADER,
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
    get_cors_origins,
)
from parley.api.routes import chat, health, sessions
from parley.auth.middleware import AuthGatekeeperMiddleware
from parley.auth.policy import AccessPolicyMiddleware, RoutePolicy, default_route_policy
from parley.config import Settings, get_settings
from parley.kernel.http.errors import register_exception_handlers

API_PREFIX = "/api/v1"

_LOG_LEVEL_MAP = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def configure_logging(settings: Settings) -> None:
    """Configure structured logging."""
    renderers = (
        [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
        if settings.log_format == "json"
        else [structlog.dev.ConsoleRenderer()]
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            *renderers,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            _LOG_LEVEL_MAP.get(settings.log_level.lower(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan - startup and shutdown."""
    services: Services = app.state.services
    settings = services.settings

    logger.info(
        "Starting Parley",
        version=__version__,
        environment=settings.environment,
        session_store=settings.session_store_backend,
        provider_base_url=settings.provider_base_url,
    )
    if not await services.session_store.ping():
        logger.warning("Session store is not reachable at startup")

    yield

    logger.info("Shutting down Parley")
    await services.aclose()


def create_app(
    settings: Settings | None = None,
    *,
    services: Services | None = None,
    policy: RoutePolicy | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)
    services = services or build_services(settings)

    app = FastAPI(
        title="Parley API",
        description="Authenticated, session-scoped streaming chat",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.services = services

    register_exception_handlers(app)

    # Middleware order: last added runs first.
    app.add_middleware(AccessPolicyMiddleware, policy=policy or default_route_policy(API_PREFIX))
    app.add_middleware(
        AuthGatekeeperMiddleware,
        verifier=services.token_verifier,
        users=services.user_directory,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(settings),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )

    app.mount("/metrics", make_asgi_app())

    app.include_router(health.router, tags=["Health"])
    app.include_router(chat.router, prefix=API_PREFIX, tags=["Chat"])
    app.include_router(sessions.router, prefix=API_PREFIX, tags=["Sessions"])
    app.include_router(sessions.admin_router, prefix=API_PREFIX, tags=["Admin"])

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "Parley API",
            "version": __version__,
            "docs": "/docs",
        }

    return app
