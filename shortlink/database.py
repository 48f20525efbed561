"""Database configuration and session management for the shortlink service.

This module provides SQLAlchemy async engine setup, session factories,
and database lifecycle operations. PostgreSQL (asyncpg) is the production
backend; SQLite (aiosqlite) is supported for local runs and tests.

Flow Diagram — Database Operations
=================================
::
    ┌─────────────┐
    │ ServiceMgr  │
    │ initialize()│
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ build_engine│
    │ (one/proc)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ session     │
    │ factory     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ LinkStore / │
    │ UserStore   │
    │ short-lived │
    │ sessions    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ close_db()   │
    │ (dispose)    │
    └─────────────┘

How to Use
===========
**Step 1 — Build on startup**::
    engine = build_engine(settings)
    session_factory = build_session_factory(engine)
    await init_db(engine)  # Creates tables

**Step 2 — Open a short-lived session**::
    async with session_factory() as session:
        result = await session.execute(select(Link))

**Step 3 — Cleanup on shutdown**::
    await close_db(engine)

Key Behaviours
===============
- One engine per process; its pool is shared by every request and by the
  background click-accounting tasks.
- Pool size is bounded and idle connections are recycled.
- SQLite engines skip pool sizing (the dialect picks its own pool).
- Engine is properly disposed on application shutdown.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    build_engine():  Creates the async engine from settings.
    build_session_factory():  Creates the session factory bound to an engine.
    init_db():  Creates all tables on startup.
    close_db():  Disposes the engine on shutdown.
"""

from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortlink.config import Settings

__all__ = ["Base", "build_engine", "build_session_factory", "init_db", "close_db"]


class Base(DeclarativeBase):
    pass


def _engine_kwargs(settings: Settings) -> dict[str, Any]:
    if make_url(settings.DATABASE_URL).get_backend_name() == "sqlite":
        # Writers wait on the file lock instead of failing fast.
        return {"connect_args": {"timeout": settings.STORE_TIMEOUT_SECONDS}}
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT_SECONDS,
        "pool_recycle": settings.DB_POOL_RECYCLE_SECONDS,
        "pool_pre_ping": True,
    }


def build_engine(settings: Settings) -> AsyncEngine:
    return create_async_engine(
        settings.DATABASE_URL,
        echo=False,
        **_engine_kwargs(settings),
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    # Model modules must be imported so their tables are registered on Base.
    from shortlink import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    await engine.dispose()
