"""
Unit tests for the two-tier read-through cache.
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from service_directory.app.caching.memory_tier import MISS
from service_directory.app.caching.read_through import CacheSource, ReadThroughCache, TtlPolicy
from service_directory.app.domain.models import CachePriority


class TestReadThroughCache:
    """Test cases for ReadThroughCache."""

    @pytest.fixture
    def cache(self, memory, remote, metrics):
        return ReadThroughCache(memory, remote, metrics=metrics)

    @pytest.mark.asyncio
    async def test_second_call_does_not_recompute(self, cache):
        compute = AsyncMock(return_value=[{"id": 1}])

        first = await cache.get_or_compute("k", compute)
        second = await cache.get_or_compute("k", compute)

        assert first == second == [{"id": 1}]
        compute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_miss_fills_both_tiers(self, cache, memory, fake_redis):
        lookup = await cache.fetch("k", AsyncMock(return_value={"a": 1}), priority=CachePriority.HOT)

        assert lookup.source == CacheSource.ORIGIN
        assert not lookup.hit
        assert memory.get("k") == {"a": 1}
        assert json.loads(fake_redis.store["k"]) == {"a": 1}
        assert fake_redis.ttls["k"] == 8 * 60 * 60

    @pytest.mark.asyncio
    async def test_remote_hit_populates_memory(self, cache, memory, fake_redis):
        fake_redis.store["k"] = json.dumps(["from-redis"])
        compute = AsyncMock()

        lookup = await cache.fetch("k", compute)

        assert lookup.source == CacheSource.REMOTE
        assert lookup.value == ["from-redis"]
        assert memory.get("k") == ["from-redis"]
        compute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_memory_hit_skips_remote(self, cache, memory, fake_redis):
        memory.set("k", "local", ttl_ms=1000)
        fake_redis.fail = True

        lookup = await cache.fetch("k", AsyncMock())

        assert lookup.source == CacheSource.MEMORY
        assert lookup.value == "local"

    @pytest.mark.asyncio
    async def test_explicit_ttls_override_priority(self, cache, fake_redis, memory, clock):
        await cache.get_or_compute(
            "k",
            AsyncMock(return_value=1),
            memory_ttl_ms=50,
            remote_ttl_seconds=7,
            priority=CachePriority.HOT,
        )
        assert fake_redis.ttls["k"] == 7
        clock.advance(0.05)
        assert memory.get("k") is MISS

    @pytest.mark.asyncio
    async def test_remote_always_failing_still_returns_value(self, cache, fake_redis):
        fake_redis.fail = True
        compute = AsyncMock(return_value=[{"id": 9}])

        for i in range(5):
            assert await cache.get_or_compute(f"k{i}", compute) == [{"id": 9}]

        assert compute.await_count == 5
        assert cache.remote.circuit_breaker.is_open()

    @pytest.mark.asyncio
    async def test_origin_error_propagates_and_caches_nothing(self, cache, memory, fake_redis):
        compute = AsyncMock(side_effect=RuntimeError("db down"))

        with pytest.raises(RuntimeError, match="db down"):
            await cache.get_or_compute("k", compute)

        assert memory.get("k") is MISS
        assert "k" not in fake_redis.store

    @pytest.mark.asyncio
    async def test_none_result_is_not_cached(self, cache, memory, fake_redis):
        assert await cache.get_or_compute("k", AsyncMock(return_value=None)) is None
        assert memory.get("k") is MISS
        assert "k" not in fake_redis.store

    @pytest.mark.asyncio
    async def test_remote_write_failure_is_ignored(self, cache, memory, remote):
        with patch.object(remote, "set", new_callable=AsyncMock) as mock_set:
            mock_set.side_effect = ConnectionError("boom")
            value = await cache.get_or_compute("k", AsyncMock(return_value=3))

        assert value == 3
        assert memory.get("k") == 3

    @pytest.mark.asyncio
    async def test_bypass_touches_no_tier(self, cache, memory, remote):
        with patch.object(remote, "get", new_callable=AsyncMock) as mock_get, \
                patch.object(remote, "set", new_callable=AsyncMock) as mock_set:
            lookup = await cache.bypass(AsyncMock(return_value=[1]))

        assert lookup.value == [1]
        assert not lookup.hit
        mock_get.assert_not_awaited()
        mock_set.assert_not_awaited()
        assert len(memory) == 0

    @pytest.mark.asyncio
    async def test_origin_duration_observed(self, cache, metrics):
        await cache.get_or_compute("k", AsyncMock(return_value=1))
        assert [name for name, _, _ in metrics.histograms] == ["origin_fetch_duration_seconds"]

    @pytest.mark.asyncio
    async def test_concurrent_fills_may_each_compute(self, cache):
        gate = asyncio.Event()
        calls = 0

        async def compute():
            nonlocal calls
            calls += 1
            await gate.wait()
            return "v"

        tasks = [asyncio.create_task(cache.get_or_compute("k", compute)) for _ in range(3)]
        for _ in range(50):
            if calls == 3:
                break
            await asyncio.sleep(0)
        gate.set()

        assert await asyncio.gather(*tasks) == ["v", "v", "v"]
        assert calls == 3

    @pytest.mark.asyncio
    async def test_coalesced_fills_share_one_compute(self, memory, remote):
        cache = ReadThroughCache(memory, remote, coalesce_fills=True)
        gate = asyncio.Event()
        calls = 0

        async def compute():
            nonlocal calls
            calls += 1
            await gate.wait()
            return "v"

        tasks = [asyncio.create_task(cache.get_or_compute("k", compute)) for _ in range(3)]
        for _ in range(50):
            await asyncio.sleep(0)
        gate.set()

        assert await asyncio.gather(*tasks) == ["v", "v", "v"]
        assert calls == 1
        assert cache._inflight == {}


class TestTtlPolicy:
    """Test cases for TtlPolicy."""

    def test_default_tiers(self):
        policy = TtlPolicy.default()
        assert policy.memory_ms[CachePriority.HOT] == 30 * 60 * 1000
        assert policy.memory_ms[CachePriority.WARM] == 10 * 60 * 1000
        assert policy.memory_ms[CachePriority.COLD] == 5 * 60 * 1000
        assert policy.remote_seconds[CachePriority.COLD] == 3600

    def test_from_config(self, directory_config):
        directory_config.cold_remote_ttl_seconds = 120
        policy = TtlPolicy.from_config(directory_config)
        assert policy.remote_seconds[CachePriority.COLD] == 120
        assert policy.memory_ms == TtlPolicy.default().memory_ms
