"""Fixed-window rate limiting backed by the cache layer.

Each policy counts requests per client identifier in a Redis key that
expires with the window. The (limit + 1)-th request inside a window is
denied; the first request after the key expires starts a new window.

Policies
========
::
    scope     limit  window   used by
    general   100    900s     redirects, listing, analytics, profile
    auth      5      900s     register, login
    create    10     60s      link creation

How to Use
===========
**Step 1 — Build limiters once at startup**::
    limiters = build_rate_limiters(cache, settings)

**Step 2 — Gate a route**::
    @router.post("/api/links", dependencies=[Depends(rate_limit(RateLimitScope.CREATE))])
    async def create_link(...): ...

Key Behaviours
===============
- With the cache unavailable the limiter fails open by default
  (``RATE_LIMIT_FAIL_OPEN``); set it to False to deny instead.
- Denials raise HTTP 429 with ``Retry-After`` and ``X-RateLimit-*`` headers.
- The identifier is the first ``X-Forwarded-For`` hop, else the peer address.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from fastapi import HTTPException, Request, Response, status
from prometheus_client import Counter

from shortlink.cache import LinkCache, RateLimitResult
from shortlink.config import Settings
from shortlink.enums import RateLimitScope

__all__ = [
    "RateLimitPolicy",
    "RateLimiter",
    "build_rate_limiters",
    "client_identifier",
    "rate_limit",
    "apply_rate_limit_headers",
]

logger = logging.getLogger(__name__)

RATE_LIMIT_DECISIONS_TOTAL = Counter(
    "shortlink_rate_limit_decisions_total",
    "Rate limit decisions by scope and result",
    ["scope", "result"],
)


@dataclass(frozen=True)
class RateLimitPolicy:
    scope: RateLimitScope
    limit: int
    window_seconds: int


class RateLimiter:
    def __init__(self, cache: LinkCache, policy: RateLimitPolicy, fail_open: bool = True) -> None:
        self._cache = cache
        self.policy = policy
        self.fail_open = fail_open

    async def check(self, identifier: str) -> RateLimitResult:
        result = await self._cache.check_and_increment_rate_counter(
            f"{self.policy.scope}:{identifier}",
            self.policy.limit,
            self.policy.window_seconds,
        )
        if result.degraded:
            if self.fail_open:
                RATE_LIMIT_DECISIONS_TOTAL.labels(scope=self.policy.scope, result="fail_open").inc()
                return result
            RATE_LIMIT_DECISIONS_TOTAL.labels(scope=self.policy.scope, result="fail_closed").inc()
            logger.warning(f"Rate limiter for {self.policy.scope} failing closed, cache unavailable")
            return RateLimitResult(
                allowed=False,
                limit=self.policy.limit,
                remaining=0,
                reset_after=self.policy.window_seconds,
                degraded=True,
            )

        RATE_LIMIT_DECISIONS_TOTAL.labels(
            scope=self.policy.scope, result="allowed" if result.allowed else "denied"
        ).inc()
        return result


def build_rate_limiters(cache: LinkCache, settings: Settings) -> dict[RateLimitScope, RateLimiter]:
    policies = [
        RateLimitPolicy(
            RateLimitScope.GENERAL, settings.RATE_LIMIT_MAX_REQUESTS, settings.RATE_LIMIT_WINDOW_SECONDS
        ),
        RateLimitPolicy(
            RateLimitScope.AUTH, settings.AUTH_RATE_LIMIT_MAX_REQUESTS, settings.AUTH_RATE_LIMIT_WINDOW_SECONDS
        ),
        RateLimitPolicy(
            RateLimitScope.CREATE,
            settings.CREATE_RATE_LIMIT_MAX_REQUESTS,
            settings.CREATE_RATE_LIMIT_WINDOW_SECONDS,
        ),
    ]
    return {
        policy.scope: RateLimiter(cache, policy, fail_open=settings.RATE_LIMIT_FAIL_OPEN)
        for policy in policies
    }


def client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit(scope: RateLimitScope) -> Callable[[Request, Response], Awaitable[None]]:
    """Build a FastAPI dependency that enforces the named policy."""

    async def _enforce(request: Request, response: Response) -> None:
        limiter: RateLimiter = request.app.state.services.rate_limiters[scope]
        result = await limiter.check(client_identifier(request))
        headers = {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
        }
        if not result.allowed:
            headers["Retry-After"] = str(max(result.reset_after, 1))
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests, please try again later",
                headers=headers,
            )
        request.state.rate_limit_headers = headers
        response.headers.update(headers)

    return _enforce


def apply_rate_limit_headers(request: Request, response: Response) -> Response:
    """Copy the rate headers onto a response the handler built itself."""
    headers = getattr(request.state, "rate_limit_headers", None)
    if headers:
        response.headers.update(headers)
    return response
