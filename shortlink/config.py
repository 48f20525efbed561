"""Configuration management for the shortlink service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from shortlink.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    db_url = settings.DATABASE_URL

**Step 3 — Override in tests**::
    settings = Settings(DATABASE_URL="sqlite+aiosqlite://", CACHE_ENABLED=False)
    app = create_app(settings)

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- Cache timeouts are kept below store timeouts so a slow cache degrades to the
  store-only path instead of stalling a request.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "shortlink"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # Relational store
    DATABASE_URL: str = "postgresql+asyncpg://shortlink:shortlink@db:5432/shortlink"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT_SECONDS: float = 5.0
    # Connections idle longer than this are recycled on next checkout
    DB_POOL_RECYCLE_SECONDS: int = 1800
    STORE_TIMEOUT_SECONDS: float = 2.0

    # Redis cache
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_ENABLED: bool = True
    CACHE_TIMEOUT_SECONDS: float = 0.25
    CACHE_TTL_SECONDS: int = 3600
    CACHE_POPULAR_TTL_SECONDS: int = 7200
    CACHE_POPULAR_THRESHOLD: int = 100
    CLICK_COUNTER_TTL_SECONDS: int = 86400
    CACHE_FAILURE_THRESHOLD: int = 3
    CACHE_RETRY_INTERVAL_SECONDS: float = 5.0

    # Short code config
    SHORT_CODE_LENGTH: int = 8
    CODE_GENERATION_MAX_ATTEMPTS: int = 5

    # Destinations containing any of these (case-insensitive) are refused
    URL_BLOCKLIST: list[str] = ["localhost", "127.0.0.1", "0.0.0.0", "malware", "phishing", "spam"]

    # Credentials
    BCRYPT_ROUNDS: int = 12
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRES_MINUTES: int = 60 * 24 * 7

    # Rate limiting (fixed window per client identifier)
    RATE_LIMIT_FAIL_OPEN: bool = True
    RATE_LIMIT_WINDOW_SECONDS: int = 900
    RATE_LIMIT_MAX_REQUESTS: int = 100
    AUTH_RATE_LIMIT_WINDOW_SECONDS: int = 900
    AUTH_RATE_LIMIT_MAX_REQUESTS: int = 5
    CREATE_RATE_LIMIT_WINDOW_SECONDS: int = 60
    CREATE_RATE_LIMIT_MAX_REQUESTS: int = 10

    # Listing
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
