"""Short code generation and alias validation.

Generated codes are drawn uniformly from a 62 character alphanumeric alphabet
with nanoid. Uniqueness is not checked here: the store's unique constraint is
the arbiter, and the caller retries on ``DuplicateCodeError``.
"""

import re

from nanoid import generate

from shortlink.exceptions import ValidationError

__all__ = ["ALPHABET", "RESERVED_CODES", "generate_short_code", "validate_alias", "is_plausible_code"]

ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"

# Paths served by the application itself.
RESERVED_CODES = frozenset({"api", "health", "metrics", "docs", "redoc", "openapi.json"})

_ALIAS_PATTERN = re.compile(r"^[A-Za-z0-9_-]{3,50}$")
_CODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,50}$")


def generate_short_code(length: int = 8) -> str:
    if length < 1:
        raise ValueError("length must be positive")
    return generate(ALPHABET, length)


def validate_alias(alias: str) -> str:
    """Return the alias unchanged or raise ``ValidationError``.

    Aliases are 3 to 50 characters of letters, digits, ``_`` or ``-`` and
    must not shadow an application route.
    """
    if not _ALIAS_PATTERN.match(alias):
        raise ValidationError(
            "Custom alias must be 3-50 characters of letters, digits, '_' or '-'"
        )
    if alias.lower() in RESERVED_CODES:
        raise ValidationError(f"Custom alias '{alias}' is reserved")
    return alias


def is_plausible_code(code: str) -> bool:
    """Cheap shape check used to reject lookups that can never match."""
    return bool(_CODE_PATTERN.match(code))
