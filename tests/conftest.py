"""Shared pytest fixtures for API, store, cache and resolver tests."""

import math
import time
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
import redis.asyncio as redis
from httpx import ASGITransport, AsyncClient

from shortlink.cache import LinkCache
from shortlink.config import Settings
from shortlink.dependencies import ServiceManager
from shortlink.main import app


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'shortlink.db'}",
        CACHE_ENABLED=False,
        BCRYPT_ROUNDS=4,
        JWT_SECRET="test-secret-key-with-enough-length-for-hs256",
        BASE_URL="http://test",
        LOG_LEVEL="DEBUG",
        STORE_TIMEOUT_SECONDS=10.0,
    )


def build_memory_redis() -> AsyncMock:
    """Redis mock backed by a dict, honouring key expiry against ``time.time()``."""
    data: dict[str, str] = {}
    expires: dict[str, float] = {}

    def _alive(key: str) -> bool:
        deadline = expires.get(key)
        if deadline is not None and deadline <= time.time():
            data.pop(key, None)
            expires.pop(key, None)
        return key in data

    def _get(key: str) -> str | None:
        return data[key] if _alive(key) else None

    def _set(key: str, value: str, ex: int | None = None) -> bool:
        data[key] = value
        if ex:
            expires[key] = time.time() + ex
        else:
            expires.pop(key, None)
        return True

    def _delete(*keys: str) -> int:
        removed = 0
        for key in keys:
            if _alive(key):
                removed += 1
            data.pop(key, None)
            expires.pop(key, None)
        return removed

    def _incr(key: str) -> int:
        value = int(data[key]) + 1 if _alive(key) else 1
        data[key] = str(value)
        return value

    def _expire(key: str, seconds: int) -> bool:
        if not _alive(key):
            return False
        expires[key] = time.time() + seconds
        return True

    def _ttl(key: str) -> int:
        if not _alive(key):
            return -2
        if key not in expires:
            return -1
        return math.ceil(expires[key] - time.time())

    client = AsyncMock(spec=redis.Redis)
    client.get = AsyncMock(side_effect=_get)
    client.set = AsyncMock(side_effect=_set)
    client.delete = AsyncMock(side_effect=_delete)
    client.incr = AsyncMock(side_effect=_incr)
    client.expire = AsyncMock(side_effect=_expire)
    client.ttl = AsyncMock(side_effect=_ttl)
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock(return_value=None)
    client.data = data
    return client


@pytest.fixture
def memory_redis() -> AsyncMock:
    return build_memory_redis()


@pytest_asyncio.fixture(scope="function")
async def services(settings: Settings) -> AsyncGenerator[ServiceManager, None]:
    """Services with the cache disabled: every lookup goes to the store."""
    manager = ServiceManager(settings)
    await manager.initialize()
    yield manager
    await manager.cleanup()


@pytest_asyncio.fixture(scope="function")
async def cached_services(settings: Settings, memory_redis: AsyncMock) -> AsyncGenerator[ServiceManager, None]:
    """Services with a working in-memory cache."""
    manager = ServiceManager(settings, cache=LinkCache(memory_redis, settings))
    await manager.initialize()
    yield manager
    await manager.cleanup()


async def _client_for(manager: ServiceManager) -> AsyncGenerator[AsyncClient, None]:
    previous = app.state.services
    app.state.services = manager
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.state.services = previous


@pytest_asyncio.fixture(scope="function")
async def client(services: ServiceManager) -> AsyncGenerator[AsyncClient, None]:
    async for ac in _client_for(services):
        yield ac


@pytest_asyncio.fixture(scope="function")
async def cached_client(cached_services: ServiceManager) -> AsyncGenerator[AsyncClient, None]:
    async for ac in _client_for(cached_services):
        yield ac


async def register_user(
    client: AsyncClient,
    username: str = "alice",
    email: str = "alice@example.com",
    password: str = "Secret123",
) -> dict[str, str]:
    """Register a user and return bearer auth headers."""
    response = await client.post(
        "/api/auth/register",
        json={"username": username, "email": email, "password": password},
    )
    assert response.status_code == 201, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def register():
    return register_user


@pytest_asyncio.fixture(scope="function")
async def auth_headers(client: AsyncClient) -> dict[str, str]:
    return await register_user(client)
