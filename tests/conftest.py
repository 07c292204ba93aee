"""Shared pytest fixtures for API, repository, and token introspection tests."""

import os

# Must be set before any redirector module reads settings.
os.environ["APP_ENV"] = "test"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_redirector.db"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["SSO_HOST"] = "https://sso.test"
os.environ["CLIENT_ID"] = "redirector-test"
os.environ["CLIENT_SECRET"] = "not-a-secret"
os.environ["REDIRECT_URI"] = "https://app.test/callback"

import asyncio
import logging
from types import SimpleNamespace
from typing import AsyncGenerator, Optional
from unittest.mock import MagicMock, Mock

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from redirector.auth_service import AuthenticationService
from redirector.config import Settings, get_settings
from redirector.database import Base, get_db
from redirector.dependencies import get_service_manager
from redirector.main import app
from redirector.url_service import UrlRedirectService

ALICE = "alice@example.com"
BOB = "bob@example.com"
ALICE_HEADER = "Bearer alice-token"
BOB_HEADER = "Bearer bob-token"


# ============================================================================
# TEST DOUBLES
# ============================================================================


class InMemoryRedis:
    """Async stand-in for the handful of Redis commands the service uses."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.expiry: dict[str, int] = {}
        self.set_results: list[Optional[bool]] = []

    async def get(self, key: str) -> Optional[str]:
        return self.store.get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None, nx: bool = False) -> Optional[bool]:
        if nx and key in self.store:
            self.set_results.append(None)
            return None
        self.store[key] = value
        if ex is not None:
            self.expiry[key] = ex
        self.set_results.append(True)
        return True

    async def ping(self) -> bool:
        return True


class FakeIdentityProvider:
    """Scriptable SSO: maps Authorization headers to emails and records calls."""

    def __init__(self) -> None:
        self.profiles: dict[str, str] = {ALICE_HEADER: ALICE, BOB_HEADER: BOB}
        self.profile_status: Optional[int] = None
        self.token_status: int = 200
        self.delay: float = 0.0
        self.on_profile = None
        self.calls: list[httpx.Request] = []

    @property
    def profile_calls(self) -> int:
        return sum(1 for r in self.calls if r.url.path == "/profile")

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)

        if request.url.path == "/profile":
            if self.on_profile is not None:
                await self.on_profile(request)
            if self.profile_status is not None:
                return httpx.Response(self.profile_status, json={"error": "scripted"})
            email = self.profiles.get(request.headers.get("authorization", ""))
            if email is None:
                return httpx.Response(401, json={"error": "invalid_token"})
            return httpx.Response(200, json={"email": email, "name": "Test User"})

        if request.url.path == "/oauth2/token":
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": "issued-token", "token_type": "Bearer"})

        return httpx.Response(404)


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def mock_logger() -> MagicMock:
    logger = MagicMock(spec=logging.Logger)
    return logger


@pytest.fixture
def fake_redis() -> InMemoryRedis:
    return InMemoryRedis()


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest_asyncio.fixture
async def http_client(identity_provider: FakeIdentityProvider) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(identity_provider.handler)) as client:
        yield client


@pytest_asyncio.fixture
async def auth_service(
    http_client: httpx.AsyncClient,
    fake_redis: InMemoryRedis,
    settings: Settings,
    mock_logger: MagicMock,
) -> AsyncGenerator[AuthenticationService, None]:
    service = AuthenticationService(http_client, fake_redis, settings, logger=mock_logger)
    yield service
    await service.wait_for_pending_writes()


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def url_service(db_session: AsyncSession, mock_logger: MagicMock) -> UrlRedirectService:
    ctx = Mock()
    ctx.database = db_session
    ctx.logger = mock_logger
    return UrlRedirectService(ctx)


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    fake_redis: InMemoryRedis,
    auth_service: AuthenticationService,
    settings: Settings,
) -> AsyncGenerator[AsyncClient, None]:
    manager = SimpleNamespace(
        settings=settings,
        logger=logging.getLogger("redirector.test"),
        kvs=fake_redis,
        auth_service=auth_service,
    )

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    async def override_get_service_manager() -> SimpleNamespace:
        return manager

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_service_manager] = override_get_service_manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def decode_form(request: httpx.Request) -> dict[str, str]:
    return dict(httpx.QueryParams(request.content.decode()))
