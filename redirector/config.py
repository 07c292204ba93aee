"""Configuration management for the URL redirector service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from redirector.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    sso_host = settings.SSO_HOST

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables (and a local ``.env`` file) override defaults.
- ``TOKEN_CACHE_TTL_SECONDS`` bounds how long a revoked token keeps working.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "url-redirector"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # External SSO (identity provider)
    SSO_HOST: str = "https://sso.v2.agus.dev"
    SSO_TIMEOUT_SECONDS: float = 5.0
    CLIENT_ID: str = ""
    CLIENT_SECRET: str = ""
    REDIRECT_URI: str = ""

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://redirector:redirector@db:5432/redirector"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Redis (token cache)
    REDIS_URL: str = "redis://redis:6379/0"
    REDIS_MAX_CONNECTIONS: int = 50
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 1.0
    TOKEN_CACHE_TTL_SECONDS: int = 30

    # Listing
    DEFAULT_PAGE_LIMIT: int = 50
    MAX_PAGE_LIMIT: int = 500

    # CORS
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
