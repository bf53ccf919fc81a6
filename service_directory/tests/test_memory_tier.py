"""
Unit tests for the in-process cache tier.
"""

import asyncio

import pytest

from service_directory.app.caching.memory_tier import MISS, MemoryTier, glob_to_regex
from service_directory.app.caching.remote_cache import escape_glob


class TestMemoryTier:
    """Test cases for MemoryTier."""

    def test_get_missing_returns_miss(self, memory):
        assert memory.get("nope") is MISS
        assert not MISS

    def test_set_then_get(self, memory):
        memory.set("k", [{"id": 1}], ttl_ms=1000)
        assert memory.get("k") == [{"id": 1}]

    def test_falsy_values_are_cached(self, memory):
        memory.set("empty", [], ttl_ms=1000)
        assert memory.get("empty") == []

    def test_expired_entry_is_removed_on_read(self, memory, clock):
        memory.set("k", "v", ttl_ms=500)
        clock.advance(0.5)
        assert memory.get("k") is MISS
        assert len(memory) == 0

    def test_hit_count_increments(self, memory):
        memory.set("k", "v", ttl_ms=1000)
        memory.get("k")
        memory.get("k")
        assert memory.hit_count("k") == 2

    def test_overwrite_resets_hits(self, memory):
        memory.set("k", "v", ttl_ms=1000)
        memory.get("k")
        memory.set("k", "v2", ttl_ms=1000)
        assert memory.hit_count("k") == 0

    def test_evicts_lowest_hit_count(self, clock):
        tier = MemoryTier(capacity=3, clock=clock)
        tier.set("a", 1, ttl_ms=10_000)
        tier.set("b", 2, ttl_ms=10_000)
        tier.set("c", 3, ttl_ms=10_000)
        tier.get("a")
        tier.get("a")
        tier.get("c")

        tier.set("d", 4, ttl_ms=10_000)

        assert "b" not in tier
        assert all(key in tier for key in ("a", "c", "d"))
        assert len(tier) == 3

    def test_eviction_ties_go_to_oldest(self, clock):
        tier = MemoryTier(capacity=2, clock=clock)
        tier.set("first", 1, ttl_ms=10_000)
        tier.set("second", 2, ttl_ms=10_000)
        tier.set("third", 3, ttl_ms=10_000)
        assert "first" not in tier
        assert "second" in tier and "third" in tier

    def test_overwrite_at_capacity_does_not_evict(self, clock):
        tier = MemoryTier(capacity=2, clock=clock)
        tier.set("a", 1, ttl_ms=10_000)
        tier.set("b", 2, ttl_ms=10_000)
        tier.set("a", 10, ttl_ms=10_000)
        assert len(tier) == 2
        assert tier.get("b") == 2
        assert tier.stats()["evictions"] == 0

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            MemoryTier(capacity=0)

    def test_delete_prefix(self, memory):
        memory.set("ns:CSM:A:", 1, ttl_ms=1000)
        memory.set("ns:CSM:A:lib", 2, ttl_ms=1000)
        memory.set("ns:Skyline:B:", 3, ttl_ms=1000)
        assert memory.delete_prefix("ns:CSM:A:") == 2
        assert "ns:Skyline:B:" in memory

    def test_delete_matching_glob(self, memory):
        memory.set("ns:CSM:A:", 1, ttl_ms=1000)
        memory.set("ns:Skyline:A:", 2, ttl_ms=1000)
        memory.set("ns:Skyline:B:", 3, ttl_ms=1000)
        assert memory.delete_matching("ns:*:A:*") == 2
        assert len(memory) == 1

    def test_delete_matching_honours_escapes(self, memory):
        memory.set("api:v2:index:A*B::", 1, ttl_ms=1000)
        memory.set("api:v2:index:AxB::", 2, ttl_ms=1000)

        pattern = escape_glob("api:v2:index:A*B::")
        assert memory.delete_matching(pattern) == 1
        assert "api:v2:index:A*B::" not in memory
        assert "api:v2:index:AxB::" in memory

    def test_delete_matching_negated_class(self, memory):
        memory.set("ns::A:", 1, ttl_ms=1000)
        memory.set("ns::B:", 2, ttl_ms=1000)
        memory.set("ns::!:", 3, ttl_ms=1000)

        assert memory.delete_matching("ns::[^A]:") == 2
        assert "ns::A:" in memory

    def test_glob_to_regex(self):
        assert glob_to_regex("ns:[a-c]?:*").match("ns:bx:anything")
        assert not glob_to_regex("ns:[a-c]?:*").match("ns:dx:anything")
        assert glob_to_regex("a\\?b").match("a?b")
        assert not glob_to_regex("a\\?b").match("axb")
        assert glob_to_regex("ns:[!]").match("ns:!")

    def test_delete_and_clear(self, memory):
        memory.set("a", 1, ttl_ms=1000)
        memory.set("b", 1, ttl_ms=1000)
        assert memory.delete("a") is True
        assert memory.delete("a") is False
        memory.clear()
        assert len(memory) == 0

    def test_sweep_drops_only_expired(self, memory, clock):
        memory.set("short", 1, ttl_ms=100)
        memory.set("long", 2, ttl_ms=10_000)
        clock.advance(1)
        assert memory.sweep() == 1
        assert "long" in memory

    def test_stats_ranks_by_hits(self, memory):
        memory.set("cold", 1, ttl_ms=1000)
        memory.set("hot", 2, ttl_ms=1000)
        for _ in range(3):
            memory.get("hot")

        stats = memory.stats()

        assert stats["size"] == 2
        assert stats["capacity"] == 500
        assert stats["total_hits"] == 3
        assert stats["top_entries"][0]["key"] == "hot"
        assert stats["top_entries"][0]["expires_in_ms"] == 1000

    @pytest.mark.asyncio
    async def test_sweeper_lifecycle(self):
        tier = MemoryTier(capacity=10)
        task = tier.start_sweeper(0.01)
        assert task is not None
        assert tier.start_sweeper(0.01) is task

        tier.set("gone", 1, ttl_ms=1)
        await asyncio.sleep(0.05)
        assert len(tier) == 0

        await tier.stop_sweeper()
        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_sweeper_disabled_with_zero_interval(self, memory):
        assert memory.start_sweeper(0) is None
        await memory.stop_sweeper()
