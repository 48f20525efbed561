"""FastAPI application entry point for the shortlink service.

This module builds the FastAPI application: lifecycle management, metrics,
error translation and route registration.

Application Lifecycle Diagram
=============================
::
    ┌──────────────┐
    │  uvicorn     │
    │  startup     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ create_app() │
    │ CORS, metrics│
    │ routes       │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ startup:     │
    │ services     │
    │ .initialize()│
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ Serve HTTP   │
    │ requests     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ shutdown:    │
    │ drain clicks │
    │ close cache  │
    │ dispose pool │
    └──────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shortlink.main:app --host 0.0.0.0 --port 8080

**Step 2 — Make API calls**::
    curl -X POST http://localhost:8080/api/shorten \
         -H "Content-Type: application/json" \
         -d '{"original_url": "https://example.com/a/b"}'

    curl -i http://localhost:8080/aB3dE5fG

**Step 3 — Build an isolated app in tests**::
    app = create_app(Settings(DATABASE_URL="sqlite+aiosqlite:///test.db", CACHE_ENABLED=False))

Key Behaviours
===============
- Tables are created on startup.
- A cache that is down at startup leaves the app running in degraded mode.
- Domain errors raised from dependencies map to their HTTP status codes;
  anything unexpected is logged and returned as a generic 500.
- Prometheus metrics are exposed at /metrics.
"""

__all__ = ["app", "create_app"]

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from shortlink.config import Settings, get_settings
from shortlink.dependencies import LOGGER_NAME, ServiceManager
from shortlink.exceptions import ShortLinkError
from shortlink.routes import http_error, router

logger = logging.getLogger(LOGGER_NAME)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    services: ServiceManager = app.state.services
    await services.initialize()
    yield
    await services.cleanup()


async def _domain_error_handler(request: Request, exc: ShortLinkError) -> JSONResponse:
    error = http_error(exc)
    return JSONResponse(status_code=error.status_code, content={"detail": error.detail}, headers=error.headers)


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app(settings: Settings | None = None, services: ServiceManager | None = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description="Short-link resolution and caching service",
        lifespan=lifespan,
    )
    app.state.services = services or ServiceManager(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ShortLinkError, _domain_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=False,
        should_respect_env_var=False,
    ).instrument(app).expose(app)

    app.include_router(router)
    return app


app = create_app()
