"""Async engine and per-request sessions for the ``url_redirects`` store.

Every HTTP request that touches redirects gets exactly one ``AsyncSession``
through ``get_db``. The session is handed to ``UrlRedirectService`` via the
``RequestContext`` and is the only unit of work for that request: the
repository commits or rolls back on it, and it is closed when the response
has been produced.

Session Lifetime per Request
============================
::
    request ──▶ get_db() ──▶ RequestContext.database
                                   │
                                   ▼
                         UrlRedirectService
                         ├─ SELECT ... WHERE user_email = :owner
                         ├─ INSERT / UPDATE / DELETE
                         └─ COMMIT  (IntegrityError ─▶ ROLLBACK)
                                   │
                                   ▼
    response ◀── session.close() (connection back to pool)

Key Behaviours
===============
- ``expire_on_commit=False`` so a committed ``UrlRedirect`` can still be
  serialized into the response without another query. Deleted rows keep their
  last loaded state for the same reason.
- Pool size and overflow come from ``DB_POOL_SIZE`` / ``DB_MAX_OVERFLOW`` and
  connections are pinged before reuse.
- ``init_db()`` creates the ``url_redirects`` table (with its unique key
  constraint) at startup; ``close_db()`` disposes the engine at shutdown.
- SQL echo is enabled only when ``APP_ENV`` is ``development``.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from redirector.config import get_settings

__all__ = ["Base", "get_db", "init_db", "close_db"]

settings = get_settings()

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=(settings.APP_ENV == "development"),
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
