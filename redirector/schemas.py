"""Pydantic schemas for request/response validation in the URL redirector.

Schema Hierarchy
=================
::
    NewUrl (Input, POST /urls and PATCH /urls/{id})
    ├─ key: str (validated with validate_key)
    └─ target: str (not validated)

    UrlRedirectResponse (Output)
    ├─ id: UUID
    ├─ key: str
    ├─ target: str
    ├─ created_at: datetime
    └─ updated_at: datetime

    PagedResponse (Output, GET /urls)
    ├─ data: list[UrlRedirectResponse]
    └─ last: str | None (cursor for the next page)

    AuthRequest / AuthResponse / MeResponse / HealthResponse

Key Behaviours
===============
- Key format errors surface as 422 with the offending characters in the message.
- ``last`` is the key of the final item, to be passed back as ``after``.
- Models are configured for ORM attribute mapping.
"""

import datetime
import uuid

from pydantic import BaseModel, field_validator

from redirector.enums import HealthStatus
from redirector.keys import validate_key

__all__ = [
    "NewUrl",
    "UrlRedirectResponse",
    "PagedResponse",
    "AuthRequest",
    "AuthResponse",
    "MeResponse",
    "Profile",
    "HealthResponse",
]


class NewUrl(BaseModel):
    key: str
    target: str

    @field_validator("key")
    @classmethod
    def validate_redirect_key(cls, v: str) -> str:
        return validate_key(v)


class UrlRedirectResponse(BaseModel):
    id: uuid.UUID
    key: str
    target: str
    created_at: datetime.datetime
    updated_at: datetime.datetime

    model_config = {"from_attributes": True}


class PagedResponse(BaseModel):
    data: list[UrlRedirectResponse]
    last: str | None = None

    @classmethod
    def from_items(cls, items: list[UrlRedirectResponse]) -> "PagedResponse":
        return cls(data=items, last=items[-1].key if items else None)


class AuthRequest(BaseModel):
    authorization_code: str


class AuthResponse(BaseModel):
    access_token: str
    token_type: str


class MeResponse(BaseModel):
    email: str


class Profile(BaseModel):
    """Subset of the identity provider's ``/profile`` body that we rely on."""

    email: str


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus
