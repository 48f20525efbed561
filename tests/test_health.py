"""Health endpoint tests."""

import pytest
from httpx import AsyncClient

from shortlink.dependencies import ServiceManager
from shortlink.enums import HealthStatus


@pytest.mark.asyncio
async def test_health_check(cached_client: AsyncClient) -> None:
    response = await cached_client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == HealthStatus.HEALTHY.value
    assert data["database"] == HealthStatus.HEALTHY.value
    assert data["cache"] == HealthStatus.HEALTHY.value


@pytest.mark.asyncio
async def test_health_degraded_without_cache(client: AsyncClient) -> None:
    data = (await client.get("/health")).json()

    assert data["status"] == HealthStatus.DEGRADED.value
    assert data["database"] == HealthStatus.HEALTHY.value
    assert data["cache"] == HealthStatus.UNHEALTHY.value


@pytest.mark.asyncio
async def test_health_unhealthy_when_store_is_down(client: AsyncClient, services: ServiceManager) -> None:
    async def _down() -> bool:
        return False

    services.check_database = _down

    data = (await client.get("/health")).json()

    assert data["status"] == HealthStatus.UNHEALTHY.value
    assert data["database"] == HealthStatus.UNHEALTHY.value


@pytest.mark.asyncio
async def test_metrics_endpoint_is_exposed(client: AsyncClient) -> None:
    await client.get("/health")

    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "shortlink_" in response.text or "http_request" in response.text
