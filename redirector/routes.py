"""FastAPI route definitions for the URL redirector REST API.

API Endpoint Overview
=====================
::
    GET    /health
        └─ HealthResponse (200)

    POST   /auth/callback
        ├─ AuthRequest (request body)
        └─ AuthResponse (200) or 401

    GET    /me                              [auth]
        └─ MeResponse (200) or 401

    GET    /urls/redirect/:key
        └─ 308 Redirect or 404

    GET    /urls?after=&limit=              [auth]
        └─ PagedResponse (200)

    POST   /urls                            [auth]
        ├─ NewUrl (request body)
        └─ UrlRedirectResponse (201) or 409/422

    GET    /urls/:id                        [auth]
    PATCH  /urls/:id                        [auth]  (NewUrl body, may 409/422)
    DELETE /urls/:id                        [auth]
        └─ UrlRedirectResponse (200) or 404

Request Flow Diagram
====================
::
    ┌─────────────┐
    │  HTTP       │
    │  Request    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ get_requester│  401 / 500 on failure
    │ (bearer →    │
    │  email)      │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Validate     │  422 on bad key
    │ body         │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Repository   │  scoped by requester.email
    │ call         │  409 on key conflict
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Serialize    │  404 when absent
    └─────────────┘

Key Behaviours
===============
- The owner email always comes from ``Requester``, never from the body.
- "Not yours" and "does not exist" both answer 404.
- The public redirect is the only unauthenticated lookup.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse
from sqlalchemy import text

from redirector.auth_service import AuthenticationService
from redirector.config import get_settings
from redirector.dependencies import (
    RequestContext,
    Requester,
    get_auth_service,
    get_request_context,
    get_requester,
    get_url_service,
)
from redirector.enums import HealthStatus
from redirector.keys import RedirectKey
from redirector.schemas import (
    AuthRequest,
    AuthResponse,
    HealthResponse,
    MeResponse,
    NewUrl,
    PagedResponse,
    UrlRedirectResponse,
)
from redirector.url_service import UrlRedirectService

__all__ = ["router"]

settings = get_settings()

router = APIRouter()


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="not found")


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await ctx.database.execute(text("SELECT 1"))
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    try:
        await ctx.kvs.ping()
    except Exception as e:
        ctx.logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.post("/auth/callback", response_model=AuthResponse, tags=["auth"])
async def auth_callback(
    payload: AuthRequest,
    auth_service: AuthenticationService = Depends(get_auth_service),
) -> AuthResponse:
    return await auth_service.exchange_token(payload.authorization_code)


@router.get("/me", response_model=MeResponse, tags=["auth"])
async def me(requester: Requester = Depends(get_requester)) -> MeResponse:
    return MeResponse(email=requester.email)


@router.get("/urls/redirect/{key}", tags=["redirect"])
async def redirect_to_target(
    key: str,
    ctx: RequestContext = Depends(get_request_context),
    service: UrlRedirectService = Depends(get_url_service),
) -> RedirectResponse:
    redirect = await service.get_by_key(key)
    if redirect is None:
        ctx.logger.info(f"Redirect not found: {key} ({ctx.get_duration():.1f}ms)")
        raise _not_found()

    ctx.logger.info(f"Redirect served: {key} -> {redirect.target} ({ctx.get_duration():.1f}ms)")
    return RedirectResponse(url=redirect.target, status_code=308)


@router.get("/urls", response_model=PagedResponse, tags=["urls"])
async def list_urls(
    after: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1, le=settings.MAX_PAGE_LIMIT),
    requester: Requester = Depends(get_requester),
    service: UrlRedirectService = Depends(get_url_service),
) -> PagedResponse:
    redirects = await service.list_by_email(
        requester.email,
        after,
        limit or settings.DEFAULT_PAGE_LIMIT,
    )
    return PagedResponse.from_items([UrlRedirectResponse.model_validate(r) for r in redirects])


@router.post("/urls", response_model=UrlRedirectResponse, status_code=201, tags=["urls"])
async def create_url(
    payload: NewUrl,
    requester: Requester = Depends(get_requester),
    ctx: RequestContext = Depends(get_request_context),
    service: UrlRedirectService = Depends(get_url_service),
) -> UrlRedirectResponse:
    redirect = await service.insert(requester.email, RedirectKey(payload.key), payload.target)
    ctx.logger.info(f"Create request for {redirect.key} completed ({ctx.get_duration():.1f}ms)")
    return UrlRedirectResponse.model_validate(redirect)


@router.get("/urls/{redirect_id}", response_model=UrlRedirectResponse, tags=["urls"])
async def get_url(
    redirect_id: uuid.UUID,
    requester: Requester = Depends(get_requester),
    service: UrlRedirectService = Depends(get_url_service),
) -> UrlRedirectResponse:
    redirect = await service.get_by_id_and_email(redirect_id, requester.email)
    if redirect is None:
        raise _not_found()
    return UrlRedirectResponse.model_validate(redirect)


@router.patch("/urls/{redirect_id}", response_model=UrlRedirectResponse, tags=["urls"])
async def update_url(
    redirect_id: uuid.UUID,
    payload: NewUrl,
    requester: Requester = Depends(get_requester),
    service: UrlRedirectService = Depends(get_url_service),
) -> UrlRedirectResponse:
    redirect = await service.update(redirect_id, requester.email, RedirectKey(payload.key), payload.target)
    if redirect is None:
        raise _not_found()
    return UrlRedirectResponse.model_validate(redirect)


@router.delete("/urls/{redirect_id}", response_model=UrlRedirectResponse, tags=["urls"])
async def delete_url(
    redirect_id: uuid.UUID,
    requester: Requester = Depends(get_requester),
    service: UrlRedirectService = Depends(get_url_service),
) -> UrlRedirectResponse:
    redirect = await service.delete(redirect_id, requester.email)
    if redirect is None:
        raise _not_found()
    return UrlRedirectResponse.model_validate(redirect)
