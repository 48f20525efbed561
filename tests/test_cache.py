"""Cache layer tests: projections, counters, degradation and the circuit breaker."""

import asyncio
import datetime
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError

from shortlink.cache import LinkCache, clicks_key, link_key, rate_key, tombstone_key
from shortlink.config import Settings
from shortlink.schemas import CachedLinkPayload


@pytest.fixture
def broken_redis() -> AsyncMock:
    client = AsyncMock(spec=redis.Redis)
    error = RedisConnectionError("Connection refused")
    for name in ("get", "set", "delete", "incr", "expire", "ttl", "ping"):
        setattr(client, name, AsyncMock(side_effect=error))
    client.aclose = AsyncMock(return_value=None)
    return client


def _projection(**overrides) -> CachedLinkPayload:
    values = {
        "id": 1,
        "original_url": "https://example.com/a/b",
        "expires_at": None,
        "has_password": False,
    }
    values.update(overrides)
    return CachedLinkPayload(**values)


class TestLinkProjection:
    @pytest.mark.asyncio
    async def test_put_then_get_returns_projection(self, memory_redis: AsyncMock, settings: Settings) -> None:
        cache = LinkCache(memory_redis, settings)

        assert await cache.put("abc123", _projection()) is True
        cached = await cache.get("abc123")

        assert cached == _projection()
        memory_redis.set.assert_awaited_once()
        assert memory_redis.set.await_args.kwargs["ex"] == settings.CACHE_TTL_SECONDS

    @pytest.mark.asyncio
    async def test_put_with_explicit_ttl(self, memory_redis: AsyncMock, settings: Settings) -> None:
        cache = LinkCache(memory_redis, settings)

        await cache.put("abc123", _projection(), ttl=settings.CACHE_POPULAR_TTL_SECONDS)

        assert memory_redis.set.await_args.kwargs["ex"] == 7200

    @pytest.mark.asyncio
    async def test_projection_never_contains_a_hash(self, memory_redis: AsyncMock, settings: Settings) -> None:
        cache = LinkCache(memory_redis, settings)

        await cache.put("locked", _projection(has_password=True))

        raw = memory_redis.data[link_key("locked")]
        assert "password_hash" not in raw
        assert '"has_password":true' in raw

    @pytest.mark.asyncio
    async def test_expiry_round_trips_as_aware_timestamp(self, memory_redis: AsyncMock, settings: Settings) -> None:
        cache = LinkCache(memory_redis, settings)
        expires_at = datetime.datetime(2030, 1, 1, tzinfo=datetime.timezone.utc)

        await cache.put("later", _projection(expires_at=expires_at))
        cached = await cache.get("later")

        assert cached is not None
        assert cached.expires_at == expires_at
        assert not cached.is_expired()

    @pytest.mark.asyncio
    async def test_missing_key_is_a_miss(self, memory_redis: AsyncMock, settings: Settings) -> None:
        cache = LinkCache(memory_redis, settings)
        assert await cache.get("nothing") is None

    @pytest.mark.asyncio
    async def test_undecodable_entry_is_dropped(self, memory_redis: AsyncMock, settings: Settings) -> None:
        cache = LinkCache(memory_redis, settings)
        memory_redis.data[link_key("garbled")] = "{not json"

        assert await cache.get("garbled") is None
        assert link_key("garbled") not in memory_redis.data

    @pytest.mark.asyncio
    async def test_invalidate_removes_entry(self, memory_redis: AsyncMock, settings: Settings) -> None:
        cache = LinkCache(memory_redis, settings)
        await cache.put("gone", _projection())

        assert await cache.invalidate("gone") is True
        assert await cache.get("gone") is None

    @pytest.mark.asyncio
    async def test_put_after_delete_is_dropped(self, memory_redis: AsyncMock, settings: Settings) -> None:
        cache = LinkCache(memory_redis, settings)
        await cache.put("gone", _projection(id=7))

        assert await cache.invalidate("gone", link_id=7) is True
        assert memory_redis.data[tombstone_key("gone")] == "7"

        assert await cache.put("gone", _projection(id=7)) is False
        assert link_key("gone") not in memory_redis.data

    @pytest.mark.asyncio
    async def test_reused_code_can_be_cached_again(self, memory_redis: AsyncMock, settings: Settings) -> None:
        cache = LinkCache(memory_redis, settings)
        await cache.invalidate("reused", link_id=7)

        assert await cache.put("reused", _projection(id=8)) is True
        assert (await cache.get("reused")).id == 8

    @pytest.mark.asyncio
    async def test_tombstone_outlives_longest_projection(self, memory_redis: AsyncMock, settings: Settings) -> None:
        cache = LinkCache(memory_redis, settings)

        await cache.invalidate("gone", link_id=7)

        tombstone_call = memory_redis.set.await_args_list[-1]
        assert tombstone_call.args[0] == tombstone_key("gone")
        assert tombstone_call.kwargs["ex"] >= settings.CACHE_POPULAR_TTL_SECONDS


class TestCounters:
    @pytest.mark.asyncio
    async def test_click_counter_sets_expiry_on_first_hit(self, memory_redis: AsyncMock, settings: Settings) -> None:
        cache = LinkCache(memory_redis, settings)

        assert await cache.increment_click_counter("abc") == 1
        assert await cache.increment_click_counter("abc") == 2

        memory_redis.expire.assert_awaited_once_with(clicks_key("abc"), settings.CLICK_COUNTER_TTL_SECONDS)
        assert await cache.get_click_counter("abc") == 2

    @pytest.mark.asyncio
    async def test_rate_counter_allows_up_to_limit(self, memory_redis: AsyncMock, settings: Settings) -> None:
        cache = LinkCache(memory_redis, settings)

        results = [await cache.check_and_increment_rate_counter("general:1.2.3.4", 3, 60) for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert results[0].reset_after == 60
        memory_redis.expire.assert_awaited_once_with(rate_key("general:1.2.3.4"), 60)

    @pytest.mark.asyncio
    async def test_rate_counter_rearms_missing_expiry(self, memory_redis: AsyncMock, settings: Settings) -> None:
        cache = LinkCache(memory_redis, settings)
        memory_redis.data[rate_key("auth:x")] = "2"

        result = await cache.check_and_increment_rate_counter("auth:x", 5, 900)

        assert result.current == 3
        assert result.reset_after == 900
        memory_redis.expire.assert_awaited_once_with(rate_key("auth:x"), 900)


class TestDegradation:
    @pytest.mark.asyncio
    async def test_every_operation_degrades_silently(self, broken_redis: AsyncMock, settings: Settings) -> None:
        cache = LinkCache(broken_redis, settings.model_copy(update={"CACHE_FAILURE_THRESHOLD": 100}))

        assert await cache.get("abc") is None
        assert await cache.put("abc", _projection()) is False
        assert await cache.invalidate("abc") is False
        assert await cache.increment_click_counter("abc") == 0
        assert await cache.get_click_counter("abc") == 0
        assert await cache.ping() is False

        result = await cache.check_and_increment_rate_counter("general:x", 10, 60)
        assert result.allowed is True
        assert result.remaining == 10
        assert result.degraded is True

    @pytest.mark.asyncio
    async def test_timeout_degrades_to_miss(self, settings: Settings) -> None:
        async def _slow_get(key: str) -> str:
            await asyncio.sleep(1)
            return "{}"

        client = AsyncMock(spec=redis.Redis)
        client.get = AsyncMock(side_effect=_slow_get)
        cache = LinkCache(client, settings.model_copy(update={"CACHE_TIMEOUT_SECONDS": 0.01}))

        assert await cache.get("slow") is None

    @pytest.mark.asyncio
    async def test_disabled_cache_never_touches_network(self, settings: Settings) -> None:
        cache = LinkCache(None, settings)

        assert cache.enabled is False
        assert await cache.connect() is False
        assert await cache.get("abc") is None
        assert await cache.put("abc", _projection()) is False
        assert await cache.invalidate("abc") is True
        assert (await cache.check_and_increment_rate_counter("general:x", 5, 60)).degraded is True

    @pytest.mark.asyncio
    async def test_failed_invalidation_masks_entry_until_retried(
        self, memory_redis: AsyncMock, settings: Settings
    ) -> None:
        cache = LinkCache(memory_redis, settings.model_copy(update={"CACHE_FAILURE_THRESHOLD": 100}))
        await cache.put("stale", _projection())

        real_delete = memory_redis.delete.side_effect
        memory_redis.delete.side_effect = RedisConnectionError("down")
        assert await cache.invalidate("stale") is False

        memory_redis.delete.side_effect = real_delete
        assert await cache.get("stale") is None
        assert link_key("stale") not in memory_redis.data


class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_opens_after_threshold_and_skips_calls(self, broken_redis: AsyncMock, settings: Settings) -> None:
        cache = LinkCache(
            broken_redis,
            settings.model_copy(update={"CACHE_FAILURE_THRESHOLD": 3, "CACHE_RETRY_INTERVAL_SECONDS": 60}),
        )

        for _ in range(3):
            await cache.get("abc")
        assert cache.circuit_open is True
        assert broken_redis.get.await_count == 3

        assert await cache.get("abc") is None
        assert broken_redis.get.await_count == 3

    @pytest.mark.asyncio
    async def test_probes_again_after_retry_interval(self, memory_redis: AsyncMock, settings: Settings) -> None:
        cache = LinkCache(
            memory_redis,
            settings.model_copy(update={"CACHE_FAILURE_THRESHOLD": 1, "CACHE_RETRY_INTERVAL_SECONDS": 60}),
        )
        await cache.put("abc", _projection())

        real_get = memory_redis.get.side_effect
        memory_redis.get.side_effect = RedisConnectionError("down")
        assert await cache.get("abc") is None
        assert cache.circuit_open is True

        # Retry interval elapsed
        cache.circuit_open_until = 0.0
        memory_redis.get.side_effect = real_get

        assert await cache.get("abc") == _projection()
        assert cache.circuit_open is False
        assert cache.consecutive_failures == 0
