"""Application exception hierarchy for the URL redirector.

Exception Hierarchy
===================
::
    RedirectorError (base)
    ├── AuthenticationError
    │   ├── UnauthorizedError          → 401 (missing / rejected credential)
    │   └── IdentityProviderError      → 500 (provider unreachable or misbehaving)
    ├── KeyValidationError (ValueError) → 422
    │   ├── KeyTooLongError
    │   └── InvalidKeyCharactersError
    ├── KeyAlreadyExistsError          → 409
    └── DatabaseError                  → 500

Key Behaviours
===============
- ``message`` is safe to return to the client.
- ``context`` carries debugging detail for logs only and is never serialized
  into a response.
- ``KeyValidationError`` is also a ``ValueError`` so Pydantic validators can
  raise it directly and FastAPI reports it as a 422.
"""

from typing import Any, Optional

__all__ = [
    "RedirectorError",
    "AuthenticationError",
    "UnauthorizedError",
    "IdentityProviderError",
    "KeyValidationError",
    "KeyTooLongError",
    "InvalidKeyCharactersError",
    "KeyAlreadyExistsError",
    "DatabaseError",
]


class RedirectorError(Exception):
    """Base exception for all redirector errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class AuthenticationError(RedirectorError):
    """Raised when a request's bearer credential cannot be resolved to a user."""


class UnauthorizedError(AuthenticationError):
    """The credential is missing, malformed, or rejected by the identity provider."""

    def __init__(self, message: str = "unauthorized", context: Optional[dict[str, Any]] = None):
        super().__init__(message, context)


class IdentityProviderError(AuthenticationError):
    """The identity provider could not give a usable answer.

    Covers transport failures, timeouts, unexpected status codes and
    unparseable bodies. This is a server-side failure, not a statement about
    the caller's credential.
    """

    def __init__(self, message: str = "Internal Server Error", context: Optional[dict[str, Any]] = None):
        super().__init__(message, context)


class KeyValidationError(RedirectorError, ValueError):
    """A user-supplied redirect key does not satisfy the key format."""


class KeyTooLongError(KeyValidationError):
    def __init__(self, length: int, max_length: int):
        self.length = length
        self.max_length = max_length
        super().__init__(
            f"key must be at most {max_length} characters long, got {length}",
            {"length": length, "max_length": max_length},
        )


class InvalidKeyCharactersError(KeyValidationError):
    def __init__(self, characters: frozenset[str]):
        self.characters = characters
        rendered = ", ".join(repr(c) for c in sorted(characters))
        super().__init__(
            f"key contains invalid characters: {rendered}",
            {"characters": sorted(characters)},
        )


class KeyAlreadyExistsError(RedirectorError):
    """Another redirect already uses the requested key."""

    def __init__(self, key: str):
        self.key = key
        super().__init__("key already exists", {"key": key})


class DatabaseError(RedirectorError):
    """An unclassified failure from the relational store."""

    def __init__(self, message: str = "internal server error", context: Optional[dict[str, Any]] = None):
        super().__init__(message, context)
