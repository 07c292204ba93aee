"""SQLAlchemy ORM models for the URL redirector.

Data Model Layout
=================
::
    url_redirects table
    ├─ id (UUID PRIMARY KEY)
    ├─ user_email (VARCHAR NOT NULL, INDEXED)
    ├─ key (VARCHAR(100) NOT NULL, UNIQUE "url_redirects_key_key")
    ├─ target (TEXT NOT NULL)
    ├─ created_at (TIMESTAMPTZ, DEFAULT NOW())
    └─ updated_at (TIMESTAMPTZ, DEFAULT NOW())

How to Use
===========
**Step 1 — Import**::
    from redirector.models import UrlRedirect

**Step 2 — Query redirects owned by a user**::
    result = await db.execute(
        select(UrlRedirect).where(UrlRedirect.user_email == "me@example.com")
    )
    redirects = result.scalars().all()

Key Behaviours
===============
- ``key`` is unique across all users; the constraint name is what the
  repository matches on to report a conflict instead of a database failure.
- ``user_email`` is written once on insert and never updated.
- Timestamps are assigned in Python at insert time (with a server default as a
  fallback) so freshly inserted rows are usable without a refresh round-trip.

Classes:
    UrlRedirect:  A short key owned by one user that redirects to a target.
"""

import datetime
import uuid

from sqlalchemy import DateTime, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from redirector.database import Base

__all__ = ["KEY_UNIQUE_CONSTRAINT", "UrlRedirect"]

KEY_UNIQUE_CONSTRAINT = "url_redirects_key_key"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class UrlRedirect(Base):
    __tablename__ = "url_redirects"
    __table_args__ = (UniqueConstraint("key", name=KEY_UNIQUE_CONSTRAINT),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_email: Mapped[str] = mapped_column(String(320), index=True, nullable=False)
    key: Mapped[str] = mapped_column(String(100), nullable=False)
    target: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<UrlRedirect(id={self.id}, key='{self.key}', user_email='{self.user_email}')>"
