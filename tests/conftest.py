"""
Test Configuration and Fixtures

Shared fixtures for the unit and API suites. Every app built here runs on
in-memory collaborators and a fake completion provider.
"""

import os
from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
from fastapi import FastAPI
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

# Set test environment variables before importing app modules.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET", "test-secret-that-is-at-least-32-bytes-long")
os.environ.setdefault("SESSION_STORE_BACKEND", "memory")
os.environ.setdefault("PROVIDER_BASE_URL", "http://provider.test/v1")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from parley.api.deps import Services, build_services  # noqa: E402
from parley.api.main import create_app  # noqa: E402
from parley.auth.context import ADMIN_ROLE, USER_ROLE  # noqa: E402
from parley.auth.tokens import TokenVerifier  # noqa: E402
from parley.auth.users import InMemoryUserDirectory  # noqa: E402
from parley.config import Settings  # noqa: E402
from parley.sessions.service import SessionService  # noqa: E402
from parley.sessions.store import InMemorySessionStore  # noqa: E402
from tests.support.clock import FakeClock  # noqa: E402
from tests.support.providers import FakeCompletionProvider  # noqa: E402

TEST_SECRET = "test-secret-that-is-at-least-32-bytes-long"


# =============================================================================
# PYTEST CONFIGURATION
# =============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "api: API endpoint tests")


def pytest_collection_modifyitems(config, items):
    """
    Auto-assign tier markers so we can run `pytest -m unit` / `pytest -m api`.

    Convention:
    - tests/api/** => api
    - everything else => unit
    """
    for item in items:
        if item.get_closest_marker("api") or item.get_closest_marker("unit"):
            continue
        path = str(getattr(item, "fspath", ""))
        if "/tests/api/" in path or "\\tests\\api\\" in path:
            item.add_marker(pytest.mark.api)
        else:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# DOMAIN FIXTURES
# =============================================================================


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock.ticking()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="test",
        jwt_secret=TEST_SECRET,
        session_store_backend="memory",
        provider_base_url="http://provider.test/v1",
        chat_system_instruction=None,
        log_level="WARNING",
    )


@pytest.fixture
def token_verifier(settings: Settings) -> TokenVerifier:
    return TokenVerifier.from_settings(settings)


@pytest.fixture
def user_directory() -> InMemoryUserDirectory:
    return InMemoryUserDirectory(
        {
            "alice": [USER_ROLE],
            "bob": [USER_ROLE],
            "root": [USER_ROLE, ADMIN_ROLE],
        }
    )


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def session_service(session_store: InMemorySessionStore, fake_clock: FakeClock) -> SessionService:
    return SessionService(session_store, clock=fake_clock.now)


@pytest.fixture
def fake_provider() -> FakeCompletionProvider:
    return FakeCompletionProvider(fragments=["Hel", "lo!"])


# =============================================================================
# APP FIXTURES
# =============================================================================


@pytest.fixture
def services(
    settings: Settings,
    user_directory: InMemoryUserDirectory,
    session_store: InMemorySessionStore,
    fake_provider: FakeCompletionProvider,
) -> Services:
    return build_services(
        settings,
        user_directory=user_directory,
        session_store=session_store,
        provider=fake_provider,
    )


@pytest.fixture
def app(settings: Settings, services: Services) -> FastAPI:
    return create_app(settings, services=services)


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


@pytest_asyncio.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers(token_verifier: TokenVerifier) -> Callable[..., dict[str, str]]:
    """Build an Authorization header for a user from `user_directory`."""

    def _headers(username: str = "alice") -> dict[str, str]:
        return {"Authorization": f"Bearer {token_verifier.issue(username)}"}

    return _headers
