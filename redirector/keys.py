"""Redirect key format validation.

A redirect key is the public path segment users share (``/urls/redirect/<key>``).
Keys are at most 100 characters of ASCII letters, digits, ``-`` and ``_``.

How to Use
===========
::
    from redirector.keys import validate_key

    key = validate_key("launch-2024_Q3")   # RedirectKey("launch-2024_Q3")
    validate_key("a b")                    # raises InvalidKeyCharactersError({" "})

Key Behaviours
===============
- Length is checked before characters; the first failing rule is reported.
- Invalid character errors carry every offending character, not just the first.
- Pure function: no I/O.
"""

import string
from typing import NewType

from redirector.exceptions import InvalidKeyCharactersError, KeyTooLongError

__all__ = ["MAX_KEY_LENGTH", "RedirectKey", "validate_key"]

MAX_KEY_LENGTH = 100
ALLOWED_KEY_CHARACTERS = frozenset(string.ascii_letters + string.digits + "-_")

RedirectKey = NewType("RedirectKey", str)


def validate_key(raw: str) -> RedirectKey:
    if len(raw) > MAX_KEY_LENGTH:
        raise KeyTooLongError(len(raw), MAX_KEY_LENGTH)

    invalid = frozenset(raw) - ALLOWED_KEY_CHARACTERS
    if invalid:
        raise InvalidKeyCharactersError(invalid)

    return RedirectKey(raw)
