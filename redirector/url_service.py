"""Redirect repository - ownership-scoped persistence for url_redirects.

This module owns every read and write against the ``url_redirects`` table.
Callers pass the requester's email, which becomes part of the WHERE clause of
every owner-scoped query. A record owned by someone else is therefore
indistinguishable from one that does not exist.

Architecture Overview
==================
::
    ┌──────────────────────────────────────────────────────────┐
    │                  UrlRedirectService                       │
    │  ┌────────────────┐  ┌────────────────┐  ┌─────────────┐ │
    │  │ Reads          │  │ Writes         │  │ Errors      │ │
    │  │ • get_by_key   │  │ • insert       │  │ • unique    │ │
    │  │ • get_by_id_   │  │ • update       │  │   → 409     │ │
    │  │   and_email    │  │ • delete       │  │ • other     │ │
    │  │ • list_by_email│  │                │  │   → 500     │ │
    │  └────────────────┘  └────────────────┘  └─────────────┘ │
    └──────────────────────────────────────────────────────────┘
                               │
                               ▼
                    ┌─────────────────────┐
                    │     PostgreSQL       │
                    │  url_redirects       │
                    │  UNIQUE (key)        │
                    └─────────────────────┘

Cursor Pagination
-----------------
::
    keys owned by user:   a   b   c   d   e
    list(after=None, 2) → a   b            last = "b"
    list(after="b",  2) →         c   d    last = "d"
    list(after="d",  2) →                e last = "e"

Pages are ``key > after ORDER BY key LIMIT n``. Inserting or deleting keys
before the cursor never shifts the next page, unlike OFFSET.

Key Behaviours
===============
- Owner scoping is a single query predicate (``id = ? AND user_email = ?``),
  never a fetch followed by an ownership check.
- ``get_by_key`` is the only unscoped lookup; it backs the public redirect.
- A unique violation on ``key`` becomes ``KeyAlreadyExistsError``; any other
  SQLAlchemy failure is logged here and re-raised as ``DatabaseError``.
- ``update`` stamps ``updated_at``; ``user_email`` is never written after insert.
- ``delete`` is physical and returns the row as it was before deletion.
"""

import datetime
import uuid
from typing import Optional

from prometheus_client import Counter
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from redirector.enums import RequestStatus
from redirector.exceptions import DatabaseError, KeyAlreadyExistsError
from redirector.keys import RedirectKey
from redirector.models import KEY_UNIQUE_CONSTRAINT, UrlRedirect

__all__ = ["UrlRedirectService"]


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

REDIRECT_OPERATIONS_TOTAL = Counter(
    "redirector_redirect_operations_total",
    "Redirect repository operations by result",
    ["operation", "status"],
)

# Postgres reports the constraint name, SQLite reports table.column.
_KEY_CONFLICT_MARKERS = (KEY_UNIQUE_CONSTRAINT, "url_redirects.key")


def _is_key_conflict(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return any(marker in message for marker in _KEY_CONFLICT_MARKERS)


class UrlRedirectService:
    """Repository for redirects, scoped by owner email.

    Example:
        >>> service = UrlRedirectService.from_context(ctx)
        >>> redirect = await service.insert("me@example.com", validate_key("docs"), "https://docs.example.com")
        >>> await service.get_by_key("docs")
        <UrlRedirect(id=..., key='docs', user_email='me@example.com')>
    """

    def __init__(self, ctx: "RequestContext"):
        self._db = ctx.database
        self._logger = ctx.logger

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "UrlRedirectService":
        return cls(ctx)

    # ========================================================================
    # READS
    # ========================================================================

    async def list_by_email(
        self,
        user_email: str,
        after: Optional[str],
        limit: int,
    ) -> list[UrlRedirect]:
        """Return one page of the user's redirects, ascending by key.

        Args:
            user_email: Owner whose redirects are listed.
            after: Cursor; only keys strictly greater than this are returned.
            limit: Maximum page size (the API layer supplies the default).
        """
        query = (
            select(UrlRedirect)
            .where(UrlRedirect.user_email == user_email)
            .order_by(UrlRedirect.key.asc())
            .limit(limit)
        )
        if after is not None:
            query = query.where(UrlRedirect.key > after)

        try:
            result = await self._db.execute(query)
            redirects = list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise self._database_error("list_by_email", exc) from exc

        REDIRECT_OPERATIONS_TOTAL.labels(operation="list_by_email", status=RequestStatus.SUCCESS).inc()
        return redirects

    async def get_by_id_and_email(self, redirect_id: uuid.UUID, user_email: str) -> Optional[UrlRedirect]:
        try:
            redirect = await self._find_owned(redirect_id, user_email)
        except SQLAlchemyError as exc:
            raise self._database_error("get_by_id_and_email", exc) from exc

        self._count("get_by_id_and_email", redirect)
        return redirect

    async def get_by_key(self, key: str) -> Optional[UrlRedirect]:
        try:
            result = await self._db.execute(select(UrlRedirect).where(UrlRedirect.key == key))
            redirect = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise self._database_error("get_by_key", exc) from exc

        self._count("get_by_key", redirect)
        return redirect

    # ========================================================================
    # WRITES
    # ========================================================================

    async def insert(self, user_email: str, key: RedirectKey, target: str) -> UrlRedirect:
        """Create a redirect owned by ``user_email``.

        Raises:
            KeyAlreadyExistsError: Another redirect already uses ``key``.
            DatabaseError: Any other persistence failure.
        """
        redirect = UrlRedirect(id=uuid.uuid4(), user_email=user_email, key=key, target=target)
        self._db.add(redirect)
        await self._commit("insert", key)

        REDIRECT_OPERATIONS_TOTAL.labels(operation="insert", status=RequestStatus.SUCCESS).inc()
        self._logger.info(f"Redirect created: {key} -> {target} by {user_email}")
        return redirect

    async def update(
        self,
        redirect_id: uuid.UUID,
        user_email: str,
        key: RedirectKey,
        target: str,
    ) -> Optional[UrlRedirect]:
        """Rewrite key and target of a redirect the user owns.

        Returns:
            Optional[UrlRedirect]: The updated record, or None when no record
            with this id belongs to ``user_email``. Nothing is written then.

        Raises:
            KeyAlreadyExistsError: ``key`` is taken by another redirect.
            DatabaseError: Any other persistence failure.
        """
        try:
            redirect = await self._find_owned(redirect_id, user_email)
        except SQLAlchemyError as exc:
            raise self._database_error("update", exc) from exc

        if redirect is None:
            self._count("update", None)
            return None

        redirect.key = key
        redirect.target = target
        redirect.updated_at = datetime.datetime.now(datetime.timezone.utc)
        await self._commit("update", key)

        REDIRECT_OPERATIONS_TOTAL.labels(operation="update", status=RequestStatus.SUCCESS).inc()
        self._logger.info(f"Redirect {redirect_id} updated: {key} -> {target}")
        return redirect

    async def delete(self, redirect_id: uuid.UUID, user_email: str) -> Optional[UrlRedirect]:
        """Delete a redirect the user owns and return its last state."""
        try:
            redirect = await self._find_owned(redirect_id, user_email)
            if redirect is None:
                self._count("delete", None)
                return None

            await self._db.delete(redirect)
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise self._database_error("delete", exc) from exc

        REDIRECT_OPERATIONS_TOTAL.labels(operation="delete", status=RequestStatus.SUCCESS).inc()
        self._logger.info(f"Redirect {redirect_id} ({redirect.key}) deleted by {user_email}")
        return redirect

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    async def _find_owned(self, redirect_id: uuid.UUID, user_email: str) -> Optional[UrlRedirect]:
        result = await self._db.execute(
            select(UrlRedirect).where(
                UrlRedirect.id == redirect_id,
                UrlRedirect.user_email == user_email,
            )
        )
        return result.scalar_one_or_none()

    async def _commit(self, operation: str, key: str) -> None:
        try:
            await self._db.commit()
        except IntegrityError as exc:
            await self._db.rollback()
            if _is_key_conflict(exc):
                REDIRECT_OPERATIONS_TOTAL.labels(operation=operation, status=RequestStatus.CONFLICT).inc()
                self._logger.warning(f"Redirect {operation} rejected, key already exists: {key}")
                raise KeyAlreadyExistsError(key) from exc
            raise self._database_error(operation, exc) from exc
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise self._database_error(operation, exc) from exc

    def _database_error(self, operation: str, exc: SQLAlchemyError) -> DatabaseError:
        REDIRECT_OPERATIONS_TOTAL.labels(operation=operation, status=RequestStatus.ERROR).inc()
        self._logger.error(f"Database error during {operation}: {exc}")
        return DatabaseError(context={"operation": operation, "error": str(exc)})

    def _count(self, operation: str, redirect: Optional[UrlRedirect]) -> None:
        status = RequestStatus.SUCCESS if redirect is not None else RequestStatus.NOT_FOUND
        REDIRECT_OPERATIONS_TOTAL.labels(operation=operation, status=status).inc()
