"""Shared enums for the URL redirector.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "CacheStatus", "ProviderOutcome", "RequestStatus"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class CacheStatus(StrEnum):
    """Outcome of a token cache lookup."""

    HIT = "hit"
    MISS = "miss"
    ERROR = "error"


class ProviderOutcome(StrEnum):
    """How a call to the identity provider ended."""

    OK = "ok"
    UNAUTHORIZED = "unauthorized"
    UPSTREAM_ERROR = "upstream_error"


class RequestStatus(StrEnum):
    """Repository operation result labels for metrics."""

    SUCCESS = "success"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    ERROR = "error"
