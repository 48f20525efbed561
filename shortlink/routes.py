"""FastAPI route definitions for the shortlink REST API.

This module provides all HTTP endpoints with dependency injection, error
translation and response serialization. Handlers stay thin: they call the
resolution engine, the link service or the authenticator and map domain
outcomes onto HTTP.

API Endpoint Overview
=====================
::
    GET    /health                      HealthResponse (200)
    POST   /api/auth/register           TokenResponse (201) or 409/422      [auth rate]
    POST   /api/auth/login              TokenResponse (200) or 401          [auth rate]
    GET    /api/auth/me                 UserResponse (200) or 401           [general rate]
    POST   /api/shorten                 ShortenResponse (201) or 409/422    [create rate]
    POST   /api/links                   LinkResponse (201) or 401/409/422   [create rate]
    GET    /api/links?page&limit        LinkPage (200) or 401               [general rate]
    GET    /api/analytics/:code         LinkAnalytics (200) or 403/404      [general rate]
    DELETE /api/links/:code             204 or 403/404                      [general rate]
    GET    /:code?password=             302 or 401/403/404                  [general rate]
    POST   /:code  {"password": ...}    302 or 401/403/404                  [general rate]

Resolution Outcome Mapping
==========================
::
    REDIRECT           -> 302 Location: original_url
    NOT_FOUND          -> 404 "Short URL not found" (absent and expired alike)
    PASSWORD_REQUIRED  -> 401 {"detail": "Password required", "requires_password": true}
    FORBIDDEN          -> 403 "Invalid password"

Error Mapping
=============
::
    ValidationError -> 422    DuplicateError -> 409    NotFoundError -> 404
    AuthRequiredError -> 401  AuthDeniedError -> 403   DependencyUnavailableError -> 503

Key Behaviours
===============
- Store outages surface as 503; cache outages never surface at all.
- The catch-all redirect route is registered last so API paths win.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse

from shortlink.auth import Authenticator
from shortlink.dependencies import (
    RequestContext,
    get_authenticator,
    get_current_user,
    get_link_service,
    get_optional_user,
    get_request_context,
    get_resolution_engine,
)
from shortlink.enums import HealthStatus, RateLimitScope, ResolutionOutcome
from shortlink.exceptions import AuthRequiredError, ShortLinkError
from shortlink.models import User
from shortlink.rate_limit import apply_rate_limit_headers, rate_limit
from shortlink.resolver import ResolutionEngine
from shortlink.schemas import (
    HealthResponse,
    LinkAnalytics,
    LinkCreate,
    LinkPage,
    LinkResponse,
    LinkShorten,
    RedirectPassword,
    ShortenResponse,
    TokenResponse,
    UserLogin,
    UserRegister,
    UserResponse,
    short_url_for,
)
from shortlink.service import LinkService

__all__ = ["router", "http_error"]

router = APIRouter()

general_limit = Depends(rate_limit(RateLimitScope.GENERAL))
auth_limit = Depends(rate_limit(RateLimitScope.AUTH))
create_limit = Depends(rate_limit(RateLimitScope.CREATE))


def http_error(exc: ShortLinkError) -> HTTPException:
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthRequiredError) else None
    return HTTPException(status_code=exc.status_code, detail=exc.message, headers=headers)


def _user_response(user: User, link_count: int = 0) -> UserResponse:
    return UserResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        created_at=user.created_at,
        link_count=link_count,
    )


# ============================================================================
# HEALTH
# ============================================================================


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    manager = ctx.service_manager
    db_status = HealthStatus.HEALTHY if await manager.check_database() else HealthStatus.UNHEALTHY
    cache_status = HealthStatus.HEALTHY if await manager.cache.ping() else HealthStatus.UNHEALTHY

    if db_status is HealthStatus.UNHEALTHY:
        overall = HealthStatus.UNHEALTHY
    elif cache_status is HealthStatus.UNHEALTHY:
        # Redirects still work from the store alone.
        overall = HealthStatus.DEGRADED
    else:
        overall = HealthStatus.HEALTHY

    ctx.logger.debug(f"Health check completed: {overall.value}")
    return HealthResponse(status=overall, database=db_status, cache=cache_status)


# ============================================================================
# AUTH
# ============================================================================


@router.post(
    "/api/auth/register",
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["auth"],
    dependencies=[auth_limit],
)
async def register(
    payload: UserRegister,
    ctx: RequestContext = Depends(get_request_context),
    authenticator: Authenticator = Depends(get_authenticator),
) -> TokenResponse:
    try:
        user, token = await authenticator.register(payload)
    except ShortLinkError as exc:
        ctx.logger.warning(f"Registration failed: {exc.message}")
        raise http_error(exc) from exc
    return TokenResponse(access_token=token, user=_user_response(user))


@router.post("/api/auth/login", response_model=TokenResponse, tags=["auth"], dependencies=[auth_limit])
async def login(
    payload: UserLogin,
    ctx: RequestContext = Depends(get_request_context),
    authenticator: Authenticator = Depends(get_authenticator),
) -> TokenResponse:
    try:
        user, token = await authenticator.login(payload)
    except ShortLinkError as exc:
        ctx.logger.warning(f"Login failed: {exc.message}")
        raise http_error(exc) from exc
    return TokenResponse(access_token=token, user=_user_response(user))


@router.get("/api/auth/me", response_model=UserResponse, tags=["auth"], dependencies=[general_limit])
async def me(
    user: User = Depends(get_current_user),
    ctx: RequestContext = Depends(get_request_context),
) -> UserResponse:
    try:
        link_count = await ctx.service_manager.links.count_by_owner(user.id)
    except ShortLinkError as exc:
        raise http_error(exc) from exc
    return _user_response(user, link_count)


# ============================================================================
# LINKS
# ============================================================================


@router.post(
    "/api/shorten",
    response_model=ShortenResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["links"],
    dependencies=[create_limit],
)
async def shorten(
    payload: LinkShorten,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
    user: User | None = Depends(get_optional_user),
) -> ShortenResponse:
    try:
        link = await service.shorten(payload, owner=user)
    except ShortLinkError as exc:
        ctx.logger.warning(f"Shortening failed: {exc.message}")
        raise http_error(exc) from exc

    ctx.logger.info(f"Link shortened: {link.short_code} in {ctx.get_duration():.1f}ms")
    return ShortenResponse(
        short_code=link.short_code,
        short_url=short_url_for(ctx.settings.BASE_URL, link.short_code),
        original_url=link.original_url,
    )


@router.post(
    "/api/links",
    response_model=LinkResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["links"],
    dependencies=[create_limit],
)
async def create_link(
    payload: LinkCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
    user: User = Depends(get_current_user),
) -> LinkResponse:
    try:
        link = await service.create(payload, owner=user)
    except ShortLinkError as exc:
        ctx.logger.warning(f"Link creation failed: {exc.message}")
        raise http_error(exc) from exc
    return LinkResponse.from_link(link, ctx.settings.BASE_URL)


@router.get("/api/links", response_model=LinkPage, tags=["links"], dependencies=[general_limit])
async def list_links(
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    service: LinkService = Depends(get_link_service),
    user: User = Depends(get_current_user),
) -> LinkPage:
    try:
        return await service.list_links(user, page=page, limit=limit)
    except ShortLinkError as exc:
        raise http_error(exc) from exc


@router.get(
    "/api/analytics/{short_code}",
    response_model=LinkAnalytics,
    tags=["links"],
    dependencies=[general_limit],
)
async def analytics(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
    user: User = Depends(get_current_user),
) -> LinkAnalytics:
    try:
        return await service.analytics(short_code, user)
    except ShortLinkError as exc:
        ctx.logger.info(f"Analytics for {short_code} refused: {exc.message}")
        raise http_error(exc) from exc


@router.delete(
    "/api/links/{short_code}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["links"],
    dependencies=[general_limit],
)
async def delete_link(
    short_code: str,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
    user: User = Depends(get_current_user),
) -> Response:
    try:
        await service.delete(short_code, user)
    except ShortLinkError as exc:
        ctx.logger.info(f"Delete of {short_code} refused: {exc.message}")
        raise http_error(exc) from exc
    return apply_rate_limit_headers(request, Response(status_code=status.HTTP_204_NO_CONTENT))


# ============================================================================
# REDIRECT (registered last)
# ============================================================================


async def _resolve_to_response(
    request: Request,
    short_code: str,
    password: str | None,
    ctx: RequestContext,
    engine: ResolutionEngine,
) -> Response:
    try:
        result = await engine.resolve(short_code, password)
    except ShortLinkError as exc:
        ctx.logger.error(f"Resolution of {short_code} failed: {exc.message}")
        raise http_error(exc) from exc

    if result.outcome is ResolutionOutcome.REDIRECT:
        ctx.logger.info(f"Redirect {short_code} ({result.source}) in {ctx.get_duration():.1f}ms")
        redirect = RedirectResponse(
            url=result.original_url,
            status_code=status.HTTP_302_FOUND,
            headers={"Cache-Control": "private, no-cache"},
        )
        return apply_rate_limit_headers(request, redirect)
    if result.outcome is ResolutionOutcome.PASSWORD_REQUIRED:
        prompt = JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": "Password required", "requires_password": True},
        )
        return apply_rate_limit_headers(request, prompt)
    if result.outcome is ResolutionOutcome.FORBIDDEN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid password")
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Short URL not found")


@router.get("/{short_code}", tags=["redirect"], dependencies=[general_limit])
async def redirect_to_url(
    short_code: str,
    request: Request,
    password: str | None = Query(None, max_length=50),
    ctx: RequestContext = Depends(get_request_context),
    engine: ResolutionEngine = Depends(get_resolution_engine),
) -> Response:
    return await _resolve_to_response(request, short_code, password, ctx, engine)


@router.post("/{short_code}", tags=["redirect"], dependencies=[general_limit])
async def redirect_with_password(
    short_code: str,
    request: Request,
    payload: RedirectPassword | None = None,
    ctx: RequestContext = Depends(get_request_context),
    engine: ResolutionEngine = Depends(get_resolution_engine),
) -> Response:
    return await _resolve_to_response(request, short_code, payload.password if payload else None, ctx, engine)
