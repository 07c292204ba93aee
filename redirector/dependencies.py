"""Dependency injection with a singleton service manager.

This module wires shared resources (settings, logger, Redis pool, HTTP client,
authentication service) once per process and exposes them to route handlers
through FastAPI dependencies. It is also the single place where a request's
bearer token is turned into a ``Requester``: every protected route depends on
``get_requester``.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import httpx
import redis.asyncio as redis
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from redirector.auth_service import AuthenticationService
from redirector.config import get_settings
from redirector.database import get_db
from redirector.exceptions import UnauthorizedError
from redirector.redis import get_redis
from redirector.url_service import UrlRedirectService


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton service manager for shared resources.

    Holds everything that must outlive a single request: the Redis pool, the
    pooled HTTP client used to reach the identity provider, and the
    ``AuthenticationService`` built on top of them.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self) -> None:
        """Initialize shared resources once at startup."""
        if not self._initialized:
            self.settings = get_settings()
            self.logger = self._setup_logger()
            self.kvs = await get_redis()
            self.http_client = httpx.AsyncClient(timeout=httpx.Timeout(self.settings.SSO_TIMEOUT_SECONDS))
            self.auth_service = AuthenticationService(
                self.http_client,
                self.kvs,
                self.settings,
                logger=self.logger.getChild("auth"),
            )
            self._initialized = True

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("redirector")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    async def cleanup(self) -> None:
        """Cleanup shared resources at shutdown."""
        if hasattr(self, "auth_service"):
            await self.auth_service.wait_for_pending_writes()
        if hasattr(self, "http_client"):
            await self.http_client.aclose()
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request context with tracking and shared resource access.

    Attributes:
        database: Async database session (only per-request resource)
        service_manager: Singleton service manager with shared resources
        request_id: Unique identifier for this request
        client_ip: Client IP address
        user_agent: Client user agent string
        start_time: Request start timestamp
    """

    database: AsyncSession
    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())

    @property
    def kvs(self) -> redis.Redis:
        """Get shared Redis client."""
        return self.service_manager.kvs

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Get shared logger with request context."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
            },
        )

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


@dataclass(frozen=True)
class Requester:
    """The authenticated user behind the current request."""

    email: str


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        database=db,
        service_manager=manager,
        request_id=request.headers.get("x-request-id") or str(uuid.uuid4()),
        client_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def get_auth_service(manager: ServiceManager = Depends(get_service_manager)) -> AuthenticationService:
    return manager.auth_service


def _is_header_text(value: str) -> bool:
    return value.isascii() and value.isprintable()


async def get_requester(
    request: Request,
    auth_service: AuthenticationService = Depends(get_auth_service),
) -> Requester:
    """Resolve the request's ``Authorization`` header to a ``Requester``.

    A missing, empty, or non-text header is rejected here, before the
    identity provider is ever contacted.

    Raises:
        UnauthorizedError: No usable credential, or the provider rejected it.
        IdentityProviderError: The provider could not be reached.
    """
    header = request.headers.get("authorization")
    if not header or not _is_header_text(header):
        raise UnauthorizedError()

    email = await auth_service.introspect_token(header)
    return Requester(email=email)


def get_url_service(ctx: RequestContext = Depends(get_request_context)) -> UrlRedirectService:
    return UrlRedirectService.from_context(ctx)
