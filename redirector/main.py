"""FastAPI application entry point for the URL redirector service.

This module configures and initializes the FastAPI application with middleware,
lifecycle management, error translation and route registration.

Application Lifecycle Diagram
===========================
::
    ┌─────────────┐
    │  uvicorn    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ startup:    │
    │ init_db()   │
    │ services    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Serve HTTP  │
    │ requests    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ shutdown:   │
    │ drain cache │
    │ writes,     │
    │ close_redis()│
    │ close_db()  │
    └─────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn redirector.main:app --host 0.0.0.0 --port 8000

**Step 2 — Make API calls**::
    curl http://localhost:8000/health

    curl -X POST http://localhost:8000/urls \
         -H "Authorization: Bearer <token>" \
         -H "Content-Type: application/json" \
         -d '{"key": "docs", "target": "https://docs.example.com"}'

    curl -i http://localhost:8000/urls/redirect/docs

Key Behaviours
===============
- Database tables are created automatically on startup.
- Application errors are mapped to HTTP responses in one place; server-side
  failures return a generic body and their detail only goes to the log.
- CORS is restricted to ``ALLOWED_ORIGINS``.
- Prometheus metrics are exposed at /metrics.
"""

__all__ = ["app"]

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from prometheus_fastapi_instrumentator import Instrumentator

from redirector.config import get_settings
from redirector.database import close_db, init_db
from redirector.dependencies import _service_manager
from redirector.exceptions import (
    DatabaseError,
    IdentityProviderError,
    KeyAlreadyExistsError,
    UnauthorizedError,
)
from redirector.redis import close_redis
from redirector.routes import router

settings = get_settings()

logger = logging.getLogger("redirector")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize()
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_redis()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="URL redirect management behind SSO",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)


# ============================================================================
# ERROR TRANSLATION
# ============================================================================


@app.exception_handler(UnauthorizedError)
async def unauthorized_handler(request: Request, exc: UnauthorizedError) -> PlainTextResponse:
    return PlainTextResponse(exc.message, status_code=401)


@app.exception_handler(IdentityProviderError)
async def identity_provider_handler(request: Request, exc: IdentityProviderError) -> PlainTextResponse:
    logger.error(f"Internal server error on authentication: {exc.context}")
    return PlainTextResponse("Internal Server Error", status_code=500)


@app.exception_handler(KeyAlreadyExistsError)
async def key_conflict_handler(request: Request, exc: KeyAlreadyExistsError) -> PlainTextResponse:
    return PlainTextResponse(exc.message, status_code=409)


@app.exception_handler(DatabaseError)
async def database_error_handler(request: Request, exc: DatabaseError) -> PlainTextResponse:
    return PlainTextResponse("internal server error", status_code=500)


app.include_router(router)
