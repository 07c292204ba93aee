"""Bearer token introspection against the external SSO.

This module turns an ``Authorization`` header into the email of the user it
belongs to. The identity provider is the source of truth; Redis is a short-lived
memo in front of it so that a burst of requests with the same token costs one
provider round-trip instead of one per request.

Architecture Overview
==================
::
    ┌─────────────────────────────────────────────────────────┐
    │                 AuthenticationService                    │
    │  ┌──────────────────┐  ┌──────────────────┐             │
    │  │ introspect_token │  │  exchange_token  │             │
    │  │ • cache GET      │  │ • code → token   │             │
    │  │ • GET /profile   │  │ • POST /oauth2/  │             │
    │  │ • SET NX EX (bg) │  │   token          │             │
    │  └──────────────────┘  └──────────────────┘             │
    └─────────────────────────────────────────────────────────┘
                │                      │
                ▼                      ▼
    ┌─────────────────┐     ┌─────────────────┐
    │     Redis       │     │  Identity       │
    │  token:{header} │     │  provider (SSO) │
    └─────────────────┘     └─────────────────┘

Introspection Flow
------------------
::
    ┌─────────────┐
    │ Authorization│
    │ header       │
    └──────┬──────┘
           ▼
    ┌─────────────┐   hit    ┌─────────────┐
    │ GET          │────────▶│ return email │
    │ token:{hdr}  │         └─────────────┘
    └──────┬──────┘
    miss / │ redis error (logged)
           ▼
    ┌─────────────┐  400/401 ┌──────────────────┐
    │ GET /profile │────────▶│ UnauthorizedError │
    └──────┬──────┘          └──────────────────┘
       200 │   other / transport ┌───────────────────────┐
           │ ───────────────────▶│ IdentityProviderError │
           ▼                     └───────────────────────┘
    ┌─────────────┐
    │ spawn task:  │  (not awaited, failures logged)
    │ SET NX EX 30 │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ return email │
    └─────────────┘

Key Behaviours
===============
- A cache read failure is a miss, never an authentication failure.
- 400 and 401 from the provider mean "bad credential"; anything else that is
  not a 200 means "provider problem" and is reported as a server error.
- The cache write is ``SET ... NX EX``: it never overwrites a value that a
  concurrent request stored first, so racing misses converge on one entry.
- The cache write runs as a detached task. The caller's response does not wait
  for it, and its failure is only logged.
- Pending writes are tracked so they are not garbage collected mid-flight and
  can be drained on shutdown with ``wait_for_pending_writes()``.
"""

import asyncio
import logging
import time
from typing import NoReturn, Optional

import httpx
import redis.asyncio as redis
from prometheus_client import Counter, Histogram
from pydantic import ValidationError
from redis.exceptions import RedisError

from redirector.config import Settings
from redirector.enums import CacheStatus, ProviderOutcome
from redirector.exceptions import IdentityProviderError, UnauthorizedError
from redirector.schemas import AuthResponse, Profile

__all__ = ["AuthenticationService", "token_key"]


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

TOKEN_CACHE_LOOKUPS_TOTAL = Counter(
    "redirector_token_cache_lookups_total",
    "Token cache lookups by result",
    ["result"],
)
TOKEN_CACHE_WRITE_FAILURES_TOTAL = Counter(
    "redirector_token_cache_write_failures_total",
    "Background token cache writes that failed",
)
IDENTITY_PROVIDER_REQUESTS_TOTAL = Counter(
    "redirector_identity_provider_requests_total",
    "Calls to the identity provider",
    ["endpoint", "outcome"],
)
IDENTITY_PROVIDER_DURATION = Histogram(
    "redirector_identity_provider_duration_seconds",
    "Identity provider call latency",
    ["endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)


def token_key(token: str) -> str:
    return f"token:{token}"


class AuthenticationService:
    """Resolves bearer tokens to user emails via the SSO, with a Redis memo.

    One instance is shared by every request; it holds no per-request state.

    Example:
        >>> service = AuthenticationService(http_client, kvs, settings)
        >>> email = await service.introspect_token("Bearer abc")
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        kvs: redis.Redis,
        settings: Settings,
        logger: Optional[logging.Logger] = None,
    ):
        self._http = http_client
        self._kvs = kvs
        self._settings = settings
        self._host = settings.SSO_HOST.rstrip("/")
        self._logger = logger or logging.getLogger("redirector.auth")
        self._pending_writes: set[asyncio.Task[None]] = set()

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def introspect_token(self, header: str) -> str:
        """Return the email of the user owning ``header``'s bearer token.

        Args:
            header: Raw ``Authorization`` header value, e.g. ``"Bearer abc"``.

        Returns:
            str: The authenticated user's email.

        Raises:
            UnauthorizedError: The provider rejected the token (400/401).
            IdentityProviderError: The provider was unreachable or answered
                with anything other than 200/400/401.
        """
        cached = await self._get_cached_token(header)
        if cached is not None:
            self._logger.debug("Token cache hit, skipping profile call")
            return cached

        email = await self._fetch_profile_email(header)
        self._schedule_cache_write(header, email)
        return email

    async def exchange_token(self, authorization_code: str) -> AuthResponse:
        """Exchange an OAuth authorization code for an access token.

        Raises:
            UnauthorizedError: The provider rejected the code (400).
            IdentityProviderError: Any other failure talking to the provider.
        """
        endpoint = "oauth2/token"
        form = {
            "grant_type": "authorization_code",
            "client_id": self._settings.CLIENT_ID,
            "client_secret": self._settings.CLIENT_SECRET,
            "redirect_uri": self._settings.REDIRECT_URI,
            "code": authorization_code,
        }
        response = await self._call_provider("POST", endpoint, data=form)

        if response.status_code == httpx.codes.BAD_REQUEST:
            IDENTITY_PROVIDER_REQUESTS_TOTAL.labels(endpoint=endpoint, outcome=ProviderOutcome.UNAUTHORIZED).inc()
            raise UnauthorizedError()

        if response.status_code != httpx.codes.OK:
            self._raise_unexpected_status(endpoint, response)

        try:
            token = AuthResponse.model_validate_json(response.content)
        except ValidationError as exc:
            IDENTITY_PROVIDER_REQUESTS_TOTAL.labels(endpoint=endpoint, outcome=ProviderOutcome.UPSTREAM_ERROR).inc()
            self._logger.error(f"Unparseable token response from identity provider: {exc}")
            raise IdentityProviderError(context={"endpoint": endpoint}) from exc

        IDENTITY_PROVIDER_REQUESTS_TOTAL.labels(endpoint=endpoint, outcome=ProviderOutcome.OK).inc()
        return token

    async def wait_for_pending_writes(self) -> None:
        """Block until every in-flight background cache write has finished."""
        while self._pending_writes:
            await asyncio.wait(set(self._pending_writes))

    @property
    def pending_writes(self) -> int:
        return len(self._pending_writes)

    # ========================================================================
    # IDENTITY PROVIDER
    # ========================================================================

    async def _fetch_profile_email(self, header: str) -> str:
        endpoint = "profile"
        response = await self._call_provider("GET", endpoint, headers={"Authorization": header})

        if response.status_code in (httpx.codes.UNAUTHORIZED, httpx.codes.BAD_REQUEST):
            IDENTITY_PROVIDER_REQUESTS_TOTAL.labels(endpoint=endpoint, outcome=ProviderOutcome.UNAUTHORIZED).inc()
            self._logger.info(f"Identity provider rejected token with status {response.status_code}")
            raise UnauthorizedError()

        if response.status_code != httpx.codes.OK:
            self._raise_unexpected_status(endpoint, response)

        try:
            profile = Profile.model_validate_json(response.content)
        except ValidationError as exc:
            IDENTITY_PROVIDER_REQUESTS_TOTAL.labels(endpoint=endpoint, outcome=ProviderOutcome.UPSTREAM_ERROR).inc()
            self._logger.error(f"Unparseable profile from identity provider: {exc}")
            raise IdentityProviderError(context={"endpoint": endpoint}) from exc

        IDENTITY_PROVIDER_REQUESTS_TOTAL.labels(endpoint=endpoint, outcome=ProviderOutcome.OK).inc()
        return profile.email

    async def _call_provider(self, method: str, endpoint: str, **kwargs) -> httpx.Response:
        start_time = time.perf_counter()
        try:
            return await self._http.request(method, f"{self._host}/{endpoint}", **kwargs)
        except httpx.HTTPError as exc:
            IDENTITY_PROVIDER_REQUESTS_TOTAL.labels(endpoint=endpoint, outcome=ProviderOutcome.UPSTREAM_ERROR).inc()
            self._logger.error(f"Identity provider {method} /{endpoint} failed: {exc!r}")
            raise IdentityProviderError(context={"endpoint": endpoint, "error": repr(exc)}) from exc
        finally:
            IDENTITY_PROVIDER_DURATION.labels(endpoint=endpoint).observe(time.perf_counter() - start_time)

    def _raise_unexpected_status(self, endpoint: str, response: httpx.Response) -> NoReturn:
        IDENTITY_PROVIDER_REQUESTS_TOTAL.labels(endpoint=endpoint, outcome=ProviderOutcome.UPSTREAM_ERROR).inc()
        self._logger.error(f"Unexpected status code from identity provider /{endpoint}: {response.status_code}")
        raise IdentityProviderError(context={"endpoint": endpoint, "status_code": response.status_code})

    # ========================================================================
    # TOKEN CACHE
    # ========================================================================

    async def _get_cached_token(self, header: str) -> Optional[str]:
        try:
            email = await self._kvs.get(token_key(header))
        except RedisError as exc:
            TOKEN_CACHE_LOOKUPS_TOTAL.labels(result=CacheStatus.ERROR).inc()
            self._logger.error(f"Failed to get token from cache: {exc!r}")
            return None

        TOKEN_CACHE_LOOKUPS_TOTAL.labels(result=CacheStatus.HIT if email else CacheStatus.MISS).inc()
        return email or None

    def _schedule_cache_write(self, header: str, email: str) -> None:
        task = asyncio.create_task(self._cache_token(header, email))
        self._pending_writes.add(task)
        task.add_done_callback(self._on_cache_write_done)

    def _on_cache_write_done(self, task: asyncio.Task[None]) -> None:
        self._pending_writes.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            TOKEN_CACHE_WRITE_FAILURES_TOTAL.inc()
            self._logger.error(f"Token cache write task crashed: {exc!r}")

    async def _cache_token(self, header: str, email: str) -> None:
        try:
            stored = await self._kvs.set(
                token_key(header),
                email,
                ex=self._settings.TOKEN_CACHE_TTL_SECONDS,
                nx=True,
            )
        except RedisError as exc:
            TOKEN_CACHE_WRITE_FAILURES_TOTAL.inc()
            self._logger.error(f"Failed to store token cache: {exc!r}")
            return

        if not stored:
            self._logger.debug("Token already cached by a concurrent request")
