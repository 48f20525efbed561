"""Resolution engine: cache-aside lookup, policy checks and click accounting.

This is the redirect hot path. A short code is resolved against the cache
first and the relational store second; expiry and password policy are
evaluated on data from whichever layer answered, and a successful redirect
schedules click accounting without waiting for it.

State Machine — ResolutionEngine.resolve()
==========================================
::
    START
      │
      ▼
    CACHE_LOOKUP ──────── hit ────────┐
      │ miss                           │ has_password?
      ▼                                ├── no ──▶ POLICY_CHECK
    STORE_LOOKUP ◀──────── yes ────────┘
      │ absent ──▶ NOT_FOUND (stale cache entry invalidated)
      │ present ─▶ schedule cache fill (non-blocking)
      ▼
    POLICY_CHECK
      ├─ expired ─────────────▶ NOT_FOUND
      ├─ password missing ────▶ PASSWORD_REQUIRED
      ├─ password wrong ──────▶ FORBIDDEN
      └─ ok ──────────────────▶ REDIRECT ──▶ (detached) CLICK_ACCOUNTING

Key Behaviours
===============
- A cached ``has_password`` flag always forces a store read: the hash is
  never cached, so verification only ever runs against the store.
- Expired and absent links produce the same ``NOT_FOUND`` outcome.
- Click accounting runs as a detached task: one atomic store increment plus
  the ephemeral cache counter. Failures are logged and dropped, never retried.
- Codes that cannot exist (bad charset or length) stop before any I/O.

Classes:
    Resolution:  Result of one resolution.
    ClickRecorder:  Owner of detached background tasks (click accounting, cache fills).
    ResolutionEngine:  The state machine above.
"""

import asyncio
import logging
import time
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any

from prometheus_client import Counter, Histogram

from shortlink.cache import LinkCache
from shortlink.codegen import is_plausible_code
from shortlink.config import Settings
from shortlink.enums import ResolutionOutcome, ResolutionSource
from shortlink.models import Link
from shortlink.schemas import CachedLinkPayload
from shortlink.store import LinkStore

__all__ = ["Resolution", "ClickRecorder", "ResolutionEngine"]

logger = logging.getLogger(__name__)

RESOLUTIONS_TOTAL = Counter(
    "shortlink_resolutions_total",
    "Total short code resolutions by outcome and answering layer",
    ["outcome", "source"],
)
RESOLUTION_DURATION = Histogram(
    "shortlink_resolution_duration_seconds",
    "Time taken to resolve a short code",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)
CLICKS_RECORDED_TOTAL = Counter(
    "shortlink_clicks_recorded_total",
    "Clicks persisted to the store",
)
CLICKS_DROPPED_TOTAL = Counter(
    "shortlink_clicks_dropped_total",
    "Clicks that failed to persist and were dropped",
)


@dataclass
class Resolution:
    outcome: ResolutionOutcome
    original_url: str | None = None
    link_id: int | None = None
    source: ResolutionSource = ResolutionSource.NONE


class ClickRecorder:
    """Runs click accounting and cache fills off the response path.

    Tasks are held in a set so they are not garbage collected mid-flight;
    ``drain()`` waits for whatever is still running (shutdown, tests).
    """

    def __init__(self, store: LinkStore, cache: LinkCache, settings: Settings) -> None:
        self._store = store
        self._cache = cache
        self._settings = settings
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def record(self, link_id: int, code: str, projection: CachedLinkPayload | None = None) -> asyncio.Task:
        return self.spawn(self._record(link_id, code, projection), name=f"click:{code}")

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _record(self, link_id: int, code: str, projection: CachedLinkPayload | None) -> None:
        try:
            new_count = await self._store.increment_clicks(link_id)
        except Exception as exc:
            CLICKS_DROPPED_TOTAL.inc()
            logger.error(f"Click accounting failed for {code}: {exc}")
            return

        if new_count is None:
            CLICKS_DROPPED_TOTAL.inc()
            logger.info(f"Click for {code} dropped, link no longer exists")
            return
        CLICKS_RECORDED_TOTAL.inc()

        recent = await self._cache.increment_click_counter(code)
        if projection is not None and recent == self._settings.CACHE_POPULAR_THRESHOLD:
            await self._cache.put(code, projection, ttl=self._settings.CACHE_POPULAR_TTL_SECONDS)
            logger.debug(f"Promoted {code} to popular TTL")


class ResolutionEngine:
    """Resolve a short code to its destination under the link's policies.

    Example:
        >>> engine = ResolutionEngine(cache, store, clicks)
        >>> result = await engine.resolve("aB3dE5fG")
        >>> result.outcome
        <ResolutionOutcome.REDIRECT: 'redirect'>
    """

    def __init__(self, cache: LinkCache, store: LinkStore, clicks: ClickRecorder) -> None:
        self._cache = cache
        self._store = store
        self._clicks = clicks

    async def resolve(self, code: str, password: str | None = None) -> Resolution:
        """Run one resolution.

        Args:
            code: Short code from the request path.
            password: Caller-supplied plaintext password, if any.

        Returns:
            Resolution: ``REDIRECT`` carries ``original_url``; every other
            outcome leaves it unset.

        Raises:
            DependencyUnavailableError: If the store is needed and unreachable.
                Cache failures never raise.
        """
        start_time = time.perf_counter()
        result = await self._resolve(code, password)
        RESOLUTION_DURATION.observe(time.perf_counter() - start_time)
        RESOLUTIONS_TOTAL.labels(outcome=result.outcome, source=result.source).inc()
        return result

    async def _resolve(self, code: str, password: str | None) -> Resolution:
        if not is_plausible_code(code):
            return Resolution(ResolutionOutcome.NOT_FOUND)

        link: Link | None = None
        projection = await self._cache.get(code)

        if projection is None:
            link = await self._store.find_by_code(code)
            if link is None:
                return Resolution(ResolutionOutcome.NOT_FOUND, source=ResolutionSource.STORE)
            projection = CachedLinkPayload.model_validate(link)
            self._clicks.spawn(self._cache.put(code, projection), name=f"cache-fill:{code}")
            source = ResolutionSource.STORE
        elif projection.has_password:
            link = await self._store.find_by_code(code)
            if link is None or link.id != projection.id:
                logger.info(f"Stale cache entry for {code}, invalidating")
                await self._cache.invalidate(code, link_id=projection.id)
                if link is None:
                    return Resolution(ResolutionOutcome.NOT_FOUND, source=ResolutionSource.STORE)
            projection = CachedLinkPayload.model_validate(link)
            source = ResolutionSource.STORE
        else:
            source = ResolutionSource.CACHE

        if projection.is_expired():
            return Resolution(ResolutionOutcome.NOT_FOUND, link_id=projection.id, source=source)

        if link is not None and link.has_password:
            if not password:
                return Resolution(ResolutionOutcome.PASSWORD_REQUIRED, link_id=link.id, source=source)
            if not await self._store.verify_password(link, password):
                logger.info(f"Invalid password for {code}")
                return Resolution(ResolutionOutcome.FORBIDDEN, link_id=link.id, source=source)

        self._clicks.record(projection.id, code, projection)
        return Resolution(
            ResolutionOutcome.REDIRECT,
            original_url=projection.original_url,
            link_id=projection.id,
            source=source,
        )
