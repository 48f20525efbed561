"""Redis cache layer: link projections, ephemeral click counters and rate counters.

Every operation here is best-effort. When Redis is unreachable, slow or
misbehaving the layer logs a warning and answers as if there were no cache:
``get`` misses, ``put`` and ``invalidate`` report False, counters read 0 and
rate checks allow. No cache failure ever escapes this module.

Key Layout
==========
::
    link:{short_code}    JSON CachedLinkPayload, TTL 1h (2h once popular)
    clicks:{short_code}  INCR counter, TTL 24h, display hint only
    rate:{identifier}    INCR counter, TTL = window, first hit sets expiry
    deleted:{short_code} id of the deleted link, TTL = longest projection TTL

Flow Diagram — guarded command
==============================
::
    ┌─────────────┐
    │ get / put / │
    │ incr ...    │
    └──────┬──────┘
           ▼
    ┌─────────────┐   client None or
    │ Circuit     │── breaker open ──▶ "no cache" answer
    │ closed?     │
    └──────┬──────┘
           ▼
    ┌─────────────┐   RedisError / OSError /
    │ Redis call  │── timeout ──▶ record failure, "no cache" answer
    │ (wait_for)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ record      │
    │ success     │
    └─────────────┘

Key Behaviours
===============
- One shared ``redis.asyncio.Redis`` per process; its pool reconnects on demand.
- Each command is bounded by ``CACHE_TIMEOUT_SECONDS``, kept below the store timeout.
- After ``CACHE_FAILURE_THRESHOLD`` consecutive failures the breaker opens and
  commands are skipped for ``CACHE_RETRY_INTERVAL_SECONDS``; the next command
  after that probes Redis again.
- A failed invalidation is remembered in-process; that code reads as a miss
  and the delete is retried until Redis acknowledges it.
- The projection never carries a password hash, only ``has_password``.

Classes:
    RateLimitResult:  Outcome of one fixed-window rate counter check.
    LinkCache:  Cache-aside operations over the shared Redis client.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import pydantic
import redis.asyncio as redis
from prometheus_client import Counter, Gauge
from redis.exceptions import RedisError

from shortlink.config import Settings
from shortlink.enums import CacheStatus
from shortlink.schemas import CachedLinkPayload

__all__ = ["RateLimitResult", "LinkCache", "link_key", "clicks_key", "rate_key", "tombstone_key"]

logger = logging.getLogger(__name__)

CACHE_LOOKUPS_TOTAL = Counter(
    "shortlink_cache_lookups_total",
    "Total link projection lookups by result",
    ["status"],
)
CACHE_OPERATIONS_TOTAL = Counter(
    "shortlink_cache_operations_total",
    "Total Redis operations by outcome",
    ["operation", "status"],
)
CACHE_CIRCUIT_OPEN = Gauge(
    "shortlink_cache_circuit_open",
    "1 while the cache circuit breaker is open",
)

_CACHE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)
_UNAVAILABLE = object()


def link_key(code: str) -> str:
    return f"link:{code}"


def clicks_key(code: str) -> str:
    return f"clicks:{code}"


def rate_key(identifier: str) -> str:
    return f"rate:{identifier}"


def tombstone_key(code: str) -> str:
    return f"deleted:{code}"


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    current: int = 0
    reset_after: int = 0
    degraded: bool = False


class LinkCache:
    """Cache-aside operations over one shared Redis client.

    Pass ``client=None`` to run without a cache; every call then takes the
    "no cache" path without touching the network.
    """

    def __init__(self, client: redis.Redis | None, settings: Settings) -> None:
        self._client = client
        self._settings = settings
        self._timeout = settings.CACHE_TIMEOUT_SECONDS
        self._failure_threshold = max(settings.CACHE_FAILURE_THRESHOLD, 1)
        self._retry_interval = settings.CACHE_RETRY_INTERVAL_SECONDS
        self.consecutive_failures = 0
        self.circuit_open_until = 0.0
        self._pending_invalidations: dict[str, int | None] = {}

    @property
    def enabled(self) -> bool:
        return self._client is not None

    @property
    def circuit_open(self) -> bool:
        return self.circuit_open_until > time.monotonic()

    @property
    def available(self) -> bool:
        return self.enabled and not self.circuit_open

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        """Health-check the connection at startup. A dead cache is logged, not fatal."""
        if not self.enabled:
            logger.info("Cache disabled, serving from the store only")
            return False
        healthy = await self.ping()
        if healthy:
            logger.info("Cache connected")
        else:
            logger.warning("Cache unreachable at startup, running degraded")
        return healthy

    async def ping(self) -> bool:
        result = await self._execute("ping", lambda client: client.ping())
        return result is not _UNAVAILABLE and bool(result)

    async def close(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.aclose()
        except _CACHE_ERRORS as exc:
            logger.warning(f"Error closing cache client: {exc}")

    # ------------------------------------------------------------------
    # link projections
    # ------------------------------------------------------------------

    async def get(self, code: str) -> CachedLinkPayload | None:
        if code in self._pending_invalidations:
            await self.invalidate(code, self._pending_invalidations[code])
            CACHE_LOOKUPS_TOTAL.labels(status=CacheStatus.SKIPPED).inc()
            return None

        raw = await self._execute("get", lambda client: client.get(link_key(code)))
        if raw is _UNAVAILABLE:
            CACHE_LOOKUPS_TOTAL.labels(status=CacheStatus.ERROR).inc()
            return None
        if raw is None:
            CACHE_LOOKUPS_TOTAL.labels(status=CacheStatus.MISS).inc()
            return None

        try:
            payload = CachedLinkPayload.model_validate_json(raw)
        except pydantic.ValidationError as exc:
            logger.warning(f"Dropping undecodable cache entry for {code}: {exc}")
            await self._execute("delete", lambda client: client.delete(link_key(code)))
            CACHE_LOOKUPS_TOTAL.labels(status=CacheStatus.ERROR).inc()
            return None

        CACHE_LOOKUPS_TOTAL.labels(status=CacheStatus.HIT).inc()
        return payload

    async def put(self, code: str, projection: CachedLinkPayload, ttl: int | None = None) -> bool:
        """Write a projection unless that link has been deleted.

        Fills and TTL promotions run detached, so one can land after a
        delete. Invalidation writes the tombstone before deleting the entry
        and a put writes the entry before reading the tombstone; whichever
        side runs second removes the entry.
        """
        ttl = ttl or self._settings.CACHE_TTL_SECONDS
        data = projection.model_dump_json()
        key = link_key(code)

        async def _put(client: redis.Redis) -> bool:
            await client.set(key, data, ex=ttl)
            deleted_id = await client.get(tombstone_key(code))
            if deleted_id is not None and str(deleted_id) == str(projection.id):
                await client.delete(key)
                return False
            return True

        result = await self._execute("set", _put)
        if result is False:
            logger.info(f"Dropped cache write for deleted link {code}")
        return result is True

    async def invalidate(self, code: str, link_id: int | None = None) -> bool:
        """Delete a projection. Returns True once Redis has acknowledged it.

        Passing the deleted ``link_id`` also leaves a tombstone so that a
        detached write of the same link cannot bring the entry back.
        """
        if not self.enabled:
            return True
        tombstone_ttl = max(self._settings.CACHE_TTL_SECONDS, self._settings.CACHE_POPULAR_TTL_SECONDS)

        async def _invalidate(client: redis.Redis) -> int:
            if link_id is not None:
                await client.set(tombstone_key(code), str(link_id), ex=tombstone_ttl)
            return await client.delete(link_key(code))

        result = await self._execute("delete", _invalidate)
        if result is _UNAVAILABLE:
            self._pending_invalidations[code] = link_id
            logger.error(f"Cache invalidation for {code} deferred, cache unavailable")
            return False
        self._pending_invalidations.pop(code, None)
        return True

    # ------------------------------------------------------------------
    # ephemeral click counter
    # ------------------------------------------------------------------

    async def increment_click_counter(self, code: str) -> int:
        key = clicks_key(code)
        ttl = self._settings.CLICK_COUNTER_TTL_SECONDS

        async def _incr(client: redis.Redis) -> int:
            count = await client.incr(key)
            if count == 1:
                await client.expire(key, ttl)
            return int(count)

        result = await self._execute("incr_clicks", _incr)
        return 0 if result is _UNAVAILABLE else result

    async def get_click_counter(self, code: str) -> int:
        raw = await self._execute("get_clicks", lambda client: client.get(clicks_key(code)))
        if raw is _UNAVAILABLE or raw is None:
            return 0
        try:
            return int(raw)
        except ValueError:
            return 0

    # ------------------------------------------------------------------
    # rate counter
    # ------------------------------------------------------------------

    async def check_and_increment_rate_counter(self, identifier: str, limit: int, window: int) -> RateLimitResult:
        """Count one request against a fixed window.

        The first request in a window sets the key's expiry; the window
        resets when the key expires. When Redis is unavailable the result is
        ``allowed`` with ``degraded=True`` so the caller can apply its own
        fail-open or fail-closed policy.
        """
        key = rate_key(identifier)

        async def _check(client: redis.Redis) -> tuple[int, int]:
            current = int(await client.incr(key))
            if current == 1:
                await client.expire(key, window)
                return current, window
            ttl = int(await client.ttl(key))
            if ttl < 0:
                # Counter lost its expiry; re-arm so the window can reset.
                await client.expire(key, window)
                ttl = window
            return current, ttl

        result = await self._execute("rate_check", _check)
        if result is _UNAVAILABLE:
            return RateLimitResult(allowed=True, limit=limit, remaining=limit, degraded=True)

        current, reset_after = result
        return RateLimitResult(
            allowed=current <= limit,
            limit=limit,
            remaining=max(0, limit - current),
            current=current,
            reset_after=reset_after,
        )

    # ------------------------------------------------------------------
    # guarded execution
    # ------------------------------------------------------------------

    async def _execute(self, operation: str, command: Callable[[redis.Redis], Awaitable[Any]]) -> Any:
        if self._client is None:
            return _UNAVAILABLE
        if self.circuit_open:
            CACHE_OPERATIONS_TOTAL.labels(operation=operation, status=CacheStatus.SKIPPED).inc()
            return _UNAVAILABLE

        try:
            result = await asyncio.wait_for(command(self._client), timeout=self._timeout)
        except _CACHE_ERRORS as exc:
            CACHE_OPERATIONS_TOTAL.labels(operation=operation, status=CacheStatus.ERROR).inc()
            logger.warning(f"Cache {operation} failed: {exc!r}")
            self._record_failure()
            return _UNAVAILABLE

        CACHE_OPERATIONS_TOTAL.labels(operation=operation, status="success").inc()
        self._record_success()
        return result

    def _record_success(self) -> None:
        if self.consecutive_failures > 0:
            self.consecutive_failures = 0
        if self.circuit_open_until:
            self.circuit_open_until = 0.0
            CACHE_CIRCUIT_OPEN.set(0)
            logger.info("Cache circuit breaker closed")

    def _record_failure(self) -> None:
        self.consecutive_failures += 1
        if self.consecutive_failures >= self._failure_threshold and not self.circuit_open:
            self.circuit_open_until = time.monotonic() + self._retry_interval
            CACHE_CIRCUIT_OPEN.set(1)
            logger.warning(
                f"Cache circuit breaker opened for {self._retry_interval}s "
                f"after {self.consecutive_failures} consecutive failures"
            )
