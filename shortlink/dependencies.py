"""Shared resources and dependency injection for the shortlink API.

This module owns the process-wide handles (engine, session factory, Redis
client) behind one ``ServiceManager`` with an explicit lifecycle, and hands
them to request handlers through FastAPI dependencies. The manager lives on
``app.state.services``; nothing here is a module-level global.

Lifecycle Diagram
=================
::
    lifespan startup                      lifespan shutdown
    ┌──────────────────┐                  ┌──────────────────┐
    │ ServiceManager   │                  │ cleanup()        │
    │ .initialize()    │                  │ ├─ drain clicks  │
    │ ├─ logger        │                  │ ├─ close cache   │
    │ ├─ engine + pool │                  │ └─ dispose engine│
    │ ├─ redis client  │                  └──────────────────┘
    │ ├─ cache ping    │
    │ └─ components    │
    └────────┬─────────┘
             ▼
    app.state.services ──▶ get_request_context() ──▶ route handlers

Key Behaviours
===============
- One engine and one Redis client per process, shared by every request and
  by background click accounting.
- A dead cache at startup is logged and tolerated; a dead store is not.
- ``RequestContext`` carries request identity into every log line through a
  ``LoggerAdapter``.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from shortlink.auth import Authenticator
from shortlink.cache import LinkCache
from shortlink.config import Settings, get_settings
from shortlink.database import build_engine, build_session_factory, close_db, init_db
from shortlink.enums import RateLimitScope
from shortlink.exceptions import AuthRequiredError
from shortlink.models import User
from shortlink.rate_limit import RateLimiter, build_rate_limiters
from shortlink.resolver import ClickRecorder, ResolutionEngine
from shortlink.service import LinkService
from shortlink.store import LinkStore, UserStore

__all__ = [
    "ServiceManager",
    "RequestContext",
    "get_service_manager",
    "get_request_context",
    "get_link_service",
    "get_resolution_engine",
    "get_authenticator",
    "get_current_user",
    "get_optional_user",
    "RequestContextFilter",
    "LOG_FORMAT",
]

LOGGER_NAME = "shortlink"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s %(client_ip)s] - %(message)s"


class RequestContextFilter(logging.Filter):
    """Fill request fields on records logged outside a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name in ("request_id", "client_ip"):
            if getattr(record, name, None) is None:
                setattr(record, name, "-")
        return True


# ============================================================================
# SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Shared resources constructed once per process.

    Tests may pass a prebuilt ``cache`` (for example one wrapping a mocked
    client) to replace the Redis-backed one.
    """

    def __init__(self, settings: Settings | None = None, cache: LinkCache | None = None) -> None:
        self.settings = settings or get_settings()
        self._cache_override = cache
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Initialize shared resources once at startup."""
        if self._initialized:
            return
        self.logger = self._setup_logger()
        self.engine: AsyncEngine = build_engine(self.settings)
        self.session_factory: async_sessionmaker[AsyncSession] = build_session_factory(self.engine)
        await init_db(self.engine)

        self.cache = self._cache_override or LinkCache(self._setup_redis(), self.settings)
        await self.cache.connect()

        self.links = LinkStore(
            self.session_factory,
            timeout=self.settings.STORE_TIMEOUT_SECONDS,
            bcrypt_rounds=self.settings.BCRYPT_ROUNDS,
        )
        self.users = UserStore(
            self.session_factory,
            timeout=self.settings.STORE_TIMEOUT_SECONDS,
            bcrypt_rounds=self.settings.BCRYPT_ROUNDS,
        )
        self.clicks = ClickRecorder(self.links, self.cache, self.settings)
        self.resolver = ResolutionEngine(self.cache, self.links, self.clicks)
        self.link_service = LinkService(self.links, self.cache, self.settings)
        self.authenticator = Authenticator(self.settings, self.users)
        self.rate_limiters: dict[RateLimitScope, RateLimiter] = build_rate_limiters(self.cache, self.settings)

        self._initialized = True
        self.logger.info(f"{self.settings.APP_NAME} services initialized ({self.settings.APP_ENV})")

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger(LOGGER_NAME)
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            handler.addFilter(RequestContextFilter())
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    def _setup_redis(self) -> redis.Redis | None:
        """Setup the shared Redis client once."""
        if not self.settings.CACHE_ENABLED:
            return None
        return redis.from_url(
            self.settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=self.settings.CACHE_TIMEOUT_SECONDS,
            socket_connect_timeout=self.settings.CACHE_TIMEOUT_SECONDS,
            health_check_interval=30,
        )

    async def check_database(self) -> bool:
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
        except Exception as exc:
            self.logger.error(f"Database health check failed: {exc}")
            return False
        return True

    async def cleanup(self) -> None:
        """Cleanup shared resources at shutdown."""
        if not self._initialized:
            return
        await self.clicks.drain()
        await self.cache.close()
        await close_db(self.engine)
        self._initialized = False
        self.logger.info("Services shut down")


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request tracking plus access to shared resources.

    Attributes:
        service_manager: Process-wide shared resources
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        user_agent: Client user agent string
        client_ip: Client IP address
        start_time: Request start timestamp
    """

    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Shared logger carrying this request's identity."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
            },
        )

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================

_bearer = HTTPBearer(auto_error=False)


async def get_service_manager(request: Request) -> ServiceManager:
    manager: ServiceManager = request.app.state.services
    if not manager.initialized:
        await manager.initialize()
    return manager


async def get_request_context(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    client_ip = request.client.host if request.client else None
    return RequestContext(
        service_manager=manager,
        request_id=request.headers.get("x-request-id") or str(uuid.uuid4()),
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        client_ip=client_ip,
    )


def get_link_service(manager: ServiceManager = Depends(get_service_manager)) -> LinkService:
    return manager.link_service


def get_resolution_engine(manager: ServiceManager = Depends(get_service_manager)) -> ResolutionEngine:
    return manager.resolver


def get_authenticator(manager: ServiceManager = Depends(get_service_manager)) -> Authenticator:
    return manager.authenticator


async def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    authenticator: Authenticator = Depends(get_authenticator),
) -> User | None:
    """Resolve the bearer token if one was sent; anonymous callers get None."""
    if credentials is None:
        return None
    return await authenticator.resolve(credentials.credentials)


async def get_current_user(user: User | None = Depends(get_optional_user)) -> User:
    if user is None:
        raise AuthRequiredError()
    return user
