"""Shared enums for the shortlink service.

This module defines all status and outcome enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "CacheStatus", "ResolutionOutcome", "ResolutionSource", "RateLimitScope"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @classmethod
    def from_str(cls, value: str) -> "HealthStatus":
        """Safely parse from string, falling back to UNHEALTHY for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNHEALTHY


class CacheStatus(StrEnum):
    """Cache lookup result labels used in metrics."""

    HIT = "hit"
    MISS = "miss"
    ERROR = "error"
    SKIPPED = "skipped"


class ResolutionOutcome(StrEnum):
    """Terminal states of a short-code resolution."""

    REDIRECT = "redirect"
    NOT_FOUND = "not_found"
    PASSWORD_REQUIRED = "password_required"
    FORBIDDEN = "forbidden"


class ResolutionSource(StrEnum):
    """Which layer answered the lookup."""

    CACHE = "cache"
    STORE = "store"
    NONE = "none"


class RateLimitScope(StrEnum):
    """Named rate limit policies."""

    GENERAL = "general"
    AUTH = "auth"
    CREATE = "create"

    @classmethod
    def from_str(cls, value: str) -> "RateLimitScope":
        """Safely parse from string, falling back to GENERAL for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return cls.GENERAL
