"""Link service: creation, listing, analytics and deletion.

This module orchestrates the write side of the system. Resolution lives in
``shortlink.resolver``; everything an owner does to a link goes through here.

Flow Diagram — create / shorten
===============================
::
    ┌─────────────┐
    │ validated   │
    │ payload     │
    └──────┬──────┘
    alias? │
    ┌──────┴──────┐
    │ YES          │ NO
    ▼              ▼
┌──────────┐  ┌──────────────┐
│ INSERT   │  │ generate code│◀─┐
│ alias    │  │ INSERT       │  │ DuplicateCodeError
└────┬─────┘  └──────┬───────┘──┘ (bounded retries)
     │ dup → 409     │
     ▼               ▼
    ┌─────────────────┐
    │ cache.put       │
    │ (projection)    │
    └──────┬──────────┘
           ▼
        Link

Flow Diagram — delete
=====================
::
    find_by_code ─▶ owner check ─▶ store.delete ─▶ cache.invalidate (synchronous)

Key Behaviours
===============
- Generated codes retry on collision up to ``CODE_GENERATION_MAX_ATTEMPTS``;
  alias collisions go straight back to the caller.
- Creation writes the projection to the cache straight away.
- Deletion invalidates the cache entry before returning, never relying on TTL.
  It also leaves a tombstone so detached cache writes cannot restore the entry.
- Analytics, listing and deletion are owner-only.
- Destinations matching ``URL_BLOCKLIST`` are refused before any store call.
"""

import logging
import time

from prometheus_client import Counter, Histogram

from shortlink.cache import LinkCache
from shortlink.codegen import generate_short_code
from shortlink.config import Settings
from shortlink.exceptions import AuthDeniedError, DuplicateCodeError, NotFoundError, ValidationError
from shortlink.models import Link, User
from shortlink.schemas import CachedLinkPayload, LinkAnalytics, LinkCreate, LinkPage, LinkResponse, LinkShorten
from shortlink.store import LinkStore, NewLink

__all__ = ["LinkService"]

logger = logging.getLogger(__name__)

LINK_CREATION_REQUESTS_TOTAL = Counter(
    "shortlink_creation_requests_total",
    "Total link creation requests",
    ["status"],
)
LINK_CREATION_DURATION = Histogram(
    "shortlink_creation_duration_seconds",
    "Time taken to create short links",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
LINK_DELETIONS_TOTAL = Counter(
    "shortlink_deletions_total",
    "Total links deleted by their owners",
)


class LinkService:
    """Owner-facing link operations.

    Example:
        >>> service = LinkService(store, cache, settings)
        >>> link = await service.shorten(LinkShorten(original_url="https://example.com/a/b"))
        >>> link.short_code
        'aB3dE5fG'
    """

    def __init__(self, store: LinkStore, cache: LinkCache, settings: Settings) -> None:
        self._store = store
        self._cache = cache
        self._settings = settings

    async def shorten(self, payload: LinkShorten, owner: User | None = None) -> Link:
        """Public creation variant: destination and optional alias only."""
        return await self._create(
            NewLink(
                original_url=payload.original_url,
                short_code=payload.custom_alias or "",
                custom_alias=payload.custom_alias,
                owner_id=owner.id if owner else None,
            )
        )

    async def create(self, payload: LinkCreate, owner: User) -> Link:
        """Authenticated creation variant with expiry, password and platform reference.

        Args:
            payload: Validated creation request.
            owner: Authenticated caller who will own the link.

        Returns:
            Link: The persisted link.

        Raises:
            DuplicateAliasError: If the requested alias is taken.
            DuplicateCodeError: If no free generated code was found.
            DependencyUnavailableError: If the store is unreachable.
        """
        return await self._create(
            NewLink(
                original_url=payload.original_url,
                short_code=payload.custom_alias or "",
                custom_alias=payload.custom_alias,
                expires_at=payload.expires_at,
                password=payload.password,
                platform_reference=payload.platform_reference,
                owner_id=owner.id,
            )
        )

    async def list_links(self, owner: User, page: int = 1, limit: int | None = None) -> LinkPage:
        page = max(page, 1)
        limit = min(max(limit or self._settings.DEFAULT_PAGE_SIZE, 1), self._settings.MAX_PAGE_SIZE)
        links = await self._store.find_by_owner(owner.id, page=page, limit=limit)
        total = await self._store.count_by_owner(owner.id)
        return LinkPage(
            items=[LinkResponse.from_link(link, self._settings.BASE_URL) for link in links],
            page=page,
            limit=limit,
            total=total,
        )

    async def analytics(self, code: str, owner: User) -> LinkAnalytics:
        link = await self._owned_link(code, owner)
        recent_clicks = await self._cache.get_click_counter(code)
        return LinkAnalytics(
            short_code=link.short_code,
            original_url=link.original_url,
            click_count=link.click_count,
            recent_clicks=recent_clicks,
            is_expired=link.is_expired(),
            has_password=link.has_password,
            expires_at=link.expires_at,
            created_at=link.created_at,
        )

    async def delete(self, code: str, owner: User) -> None:
        link = await self._owned_link(code, owner)
        deleted = await self._store.delete(link.id)
        # Invalidate even when another request already removed the row.
        invalidated = await self._cache.invalidate(code, link_id=link.id)
        if not deleted:
            raise NotFoundError()
        LINK_DELETIONS_TOTAL.inc()
        logger.info(f"Deleted link {code} (cache invalidated: {invalidated})")

    async def _owned_link(self, code: str, owner: User) -> Link:
        link = await self._store.find_by_code(code)
        if link is None:
            raise NotFoundError()
        if link.owner_id != owner.id:
            raise AuthDeniedError()
        return link

    def _check_destination(self, url: str) -> None:
        lowered = url.lower()
        if any(entry.lower() in lowered for entry in self._settings.URL_BLOCKLIST):
            logger.warning(f"Refused blocklisted destination: {url}")
            raise ValidationError("URL is not allowed")

    async def _create(self, new_link: NewLink) -> Link:
        start_time = time.perf_counter()
        try:
            self._check_destination(new_link.original_url)
            if new_link.custom_alias is not None:
                link = await self._store.create(new_link)
            else:
                link = await self._create_with_generated_code(new_link)
        except Exception:
            LINK_CREATION_REQUESTS_TOTAL.labels(status="error").inc()
            raise
        finally:
            LINK_CREATION_DURATION.observe(time.perf_counter() - start_time)

        LINK_CREATION_REQUESTS_TOTAL.labels(status="success").inc()
        await self._cache.put(link.short_code, CachedLinkPayload.model_validate(link))
        logger.info(f"Created link {link.short_code} (owner={link.owner_id}, protected={link.has_password})")
        return link

    async def _create_with_generated_code(self, new_link: NewLink) -> Link:
        attempts = max(self._settings.CODE_GENERATION_MAX_ATTEMPTS, 1)
        for attempt in range(1, attempts + 1):
            new_link.short_code = generate_short_code(self._settings.SHORT_CODE_LENGTH)
            try:
                return await self._store.create(new_link)
            except DuplicateCodeError:
                logger.warning(f"Short code collision on attempt {attempt}/{attempts}")
        logger.error(f"Gave up generating a short code after {attempts} attempts")
        raise DuplicateCodeError("Could not allocate a unique short code")
