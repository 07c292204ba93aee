"""Redis connection pool management for the token cache.

This module owns the single pooled Redis client used by the service. Only the
authentication layer talks to Redis: it memoizes ``token -> email`` lookups so
that repeated requests with the same bearer token skip the identity provider.

Flow Diagram — Redis Operations
=============================
::
    ┌─────────────┐
    │ Auth service│
    │ (cache-aside)│
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ get_redis()  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check global │
    │ client var   │
    └──────┬──────┘
    EXISTS?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ pooled  │  │ existing│
│ client  │  │ client  │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Get the client**::
    kvs = await get_redis()
    email = await kvs.get("token:Bearer abc")

**Step 2 — Cleanup on shutdown**::
    await close_redis()

Key Behaviours
===============
- The client is created lazily on first access and reused across requests.
- Each command checks a connection out of the pool and returns it afterwards,
  so no request holds a connection across an ``await`` of other work.
- Socket and pool timeouts raise ``redis.RedisError`` subclasses; callers decide
  whether that is fatal (for the token cache it never is).
- UTF-8 encoding with decode_responses for string operations.

Functions:
    get_redis():  Return the shared pooled client.
    close_redis():  Cleanup function for shutdown.
"""

import redis.asyncio as redis

from redirector.config import get_settings

__all__ = ["close_redis", "get_redis"]

settings = get_settings()

redis_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    global redis_client
    if redis_client is None:
        redis_client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        )
    return redis_client


async def close_redis() -> None:
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
