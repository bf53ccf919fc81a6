"""
Directory cache manager: the listing read path and write-path invalidation.
"""

import asyncio
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Union

from shared.circuit_breaker import CircuitBreaker
from shared.config import DirectoryConfig, get_directory_config
from shared.logging import get_logger
from ..domain.models import ItemFilter
from ..persistence.repository import IndexItemRepository
from .invalidation import InvalidationFanOut
from .keys import (
    build_key,
    classify_priority,
    describe_key,
    is_cacheable_search,
    normalize_filter,
)
from .memory_tier import MemoryTier
from .read_through import CacheLookup, CacheSource, ReadThroughCache, TtlPolicy
from .remote_cache import RemoteCache, escape_glob
from .stats import CacheStatsTracker
from .warm_plan import WarmPlanLoader

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


@dataclass
class ListingResult:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    cache_hit: bool = False
    timing_ms: float = 0.0
    source: str = CacheSource.ORIGIN.value


class DirectoryCacheManager:
    """
    Front door to the directory caches.

    Owns one memory tier for the process and wires it to the remote tier,
    the repository, invalidation and stats. Construct once per process.
    """

    def __init__(
        self,
        repository: IndexItemRepository,
        remote: RemoteCache,
        *,
        config: Optional[DirectoryConfig] = None,
        memory: Optional[MemoryTier] = None,
        metrics: Optional["MetricsCollector"] = None,
        warm_plan_path: Optional[Union[str, Path]] = None,
    ):
        self.config = config or get_directory_config()
        self.repository = repository
        self.remote = remote
        self.metrics = metrics
        self.logger = get_logger("directory.cache_manager")

        self.memory = memory or MemoryTier(self.config.memory_capacity)
        self.cache = ReadThroughCache(
            self.memory,
            remote,
            ttl_policy=TtlPolicy.from_config(self.config),
            coalesce_fills=self.config.coalesce_fills,
            metrics=metrics,
        )
        self.invalidation = InvalidationFanOut(
            self.memory,
            remote,
            [self.config.cache_namespace, self.config.count_namespace],
            metrics=metrics,
        )
        self.stats = CacheStatsTracker(remote, prefix=self.config.stats_prefix, metrics=metrics)
        self.warm_plan_loader = WarmPlanLoader(warm_plan_path or self.config.warm_plan_file)
        self._warm_semaphore: Optional[asyncio.Semaphore] = None
        self._warming = False

    @classmethod
    def from_config(
        cls,
        config: DirectoryConfig,
        repository: IndexItemRepository,
        *,
        metrics: Optional["MetricsCollector"] = None,
    ) -> "DirectoryCacheManager":
        """Build a manager with a Redis remote tier configured from settings."""
        remote = RemoteCache(
            config.redis_url,
            timeout_seconds=config.remote_timeout_seconds,
            circuit_breaker=CircuitBreaker(
                failure_threshold=config.remote_failure_threshold,
                recovery_timeout=config.remote_recovery_seconds,
                name="remote_cache",
            ),
        )
        return cls(repository, remote, config=config, metrics=metrics)

    async def start(self) -> None:
        self.memory.start_sweeper(self.config.memory_sweep_interval_seconds)
        self.logger.info(
            "Directory cache started",
            capacity=self.config.memory_capacity,
            namespace=self.config.cache_namespace,
        )

    async def stop(self) -> None:
        await self.invalidation.drain()
        await self.memory.stop_sweeper()
        await self.remote.close()
        self.logger.info("Directory cache stopped")

    @property
    def is_warming(self) -> bool:
        return self._warming

    def _cacheable(self, filters: ItemFilter) -> bool:
        return is_cacheable_search(
            filters.search,
            self.config.search_min_length,
            self.config.search_max_length,
        )

    async def list_items(self, filters: ItemFilter) -> ListingResult:
        """Return the listing for ``filters``, served from cache where possible."""
        start = time.perf_counter()
        query = normalize_filter(filters)

        async def compute() -> List[Dict[str, Any]]:
            return await self.repository.find_many(query)

        if not self._cacheable(filters):
            lookup = await self.cache.bypass(compute)
            source = "bypass"
            await self.stats.record_miss("uncacheable")
        else:
            key = build_key(self.config.cache_namespace, filters)
            lookup = await self.cache.fetch(key, compute, priority=classify_priority(filters))
            source = lookup.source.value
            if lookup.hit:
                await self.stats.record_hit(source)
            else:
                await self.stats.record_miss("miss")

        timing_ms = round((time.perf_counter() - start) * 1000, 2)
        self.logger.debug(
            "Listed index items",
            filters=query.as_dict(),
            source=source,
            timing_ms=timing_ms,
        )
        return ListingResult(
            rows=list(lookup.value or []),
            cache_hit=lookup.hit,
            timing_ms=timing_ms,
            source=source,
        )

    async def count_items(self, filters: ItemFilter) -> int:
        """Row count for ``filters``, cached alongside the listings."""
        query = normalize_filter(filters)

        async def compute() -> int:
            return await self.repository.count(query)

        if not self._cacheable(filters):
            lookup: CacheLookup = await self.cache.bypass(compute)
        else:
            key = build_key(self.config.count_namespace, filters)
            lookup = await self.cache.fetch(key, compute, priority=classify_priority(filters))
        return int(lookup.value or 0)

    def on_item_written(
        self,
        old_row: Optional[Dict[str, Any]] = None,
        new_row: Optional[Dict[str, Any]] = None,
    ) -> Optional[asyncio.Task]:
        """
        Schedule invalidation after a committed create, update or delete.

        Pass ``new_row`` alone for a create, ``old_row`` alone for a delete
        and both for an update. Returns the background task, or None when
        there was nothing to invalidate. Must be called after the write.
        """
        if old_row is None and new_row is None:
            return None

        if old_row is None:
            created = ItemFilter.from_row(new_row)
            return self.invalidation.schedule(created.campus, created.letter)

        old = ItemFilter.from_row(old_row)
        if new_row is None:
            return self.invalidation.schedule(old.campus, old.letter)

        new = ItemFilter.from_row(new_row)
        return self.invalidation.schedule(old.campus, old.letter, new.campus, new.letter)

    async def get_cache_stats(self) -> Dict[str, Any]:
        """Dashboard view of both tiers and today's hit rate."""
        stats = await self.stats.get_stats()

        namespace = self.config.cache_namespace
        by_type: Dict[str, int] = {}
        total_keys = 0
        remote_error: Optional[str] = None
        try:
            keys = await self.remote.keys(escape_glob(namespace) + ":*")
            total_keys = len(keys)
            by_type = dict(Counter(describe_key(namespace, key) for key in keys))
        except Exception as e:
            remote_error = str(e)
            self.logger.warning("Cache stats key scan failed", error=remote_error)

        if self.metrics:
            self.metrics.set_gauge("memory_tier_entries", len(self.memory))

        result: Dict[str, Any] = {
            "total_keys": total_keys,
            "hit_rate": stats["hit_rate"],
            "total_requests": stats["total_requests"],
            "cached_requests": stats["cached_requests"],
            "date": stats["date"],
            "by_type": by_type,
            "memory": self.memory.stats(),
            "remote": self.remote.circuit_breaker.get_state(),
            "warming": self._warming,
        }
        if remote_error:
            result["error"] = remote_error
        return result

    async def invalidate_by_pattern(self, pattern: str) -> Dict[str, Any]:
        result = await self.invalidation.invalidate_pattern(pattern)
        return {
            "invalidated": result.remote_deleted,
            "memory_invalidated": result.memory_deleted,
            "errors": result.errors,
        }

    async def invalidate_keys(self, keys: Iterable[str]) -> Dict[str, Any]:
        result = await self.invalidation.invalidate_keys(keys)
        return {
            "invalidated": result.remote_deleted,
            "memory_invalidated": result.memory_deleted,
            "errors": result.errors,
        }

    async def warm_cache(self) -> Dict[str, Any]:
        """
        Pre-load the listings named by the warm plan.

        Returns a summary with counts of planned, warmed (fetched from
        origin), already cached and skipped entries plus any errors. A warm
        requested while another is running returns immediately with status
        ``in_progress``.
        """
        summary: Dict[str, Any] = {
            "status": "completed",
            "planned": 0,
            "warmed": 0,
            "already_cached": 0,
            "skipped": 0,
            "errors": [],
        }
        if self._warming:
            self.logger.info("Cache warm already running; skipping")
            summary["status"] = "in_progress"
            return summary

        self._warming = True
        # Semaphores bind to the loop that first waits on them
        self._warm_semaphore = asyncio.Semaphore(max(1, self.config.warm_concurrency))
        start = time.perf_counter()
        try:
            plan = self.warm_plan_loader.plan.filters()
            summary["planned"] = len(plan)

            results = await asyncio.gather(
                *(self._warm_entry(filters) for filters in plan),
                return_exceptions=True,
            )
            for filters, outcome in zip(plan, results):
                if isinstance(outcome, Exception):
                    self.logger.error("Cache warm task failed", filters=filters.as_dict(), error=str(outcome))
                    summary["errors"].append(str(outcome))
                    self._record_warm("error")
                    continue
                summary[outcome] += 1
                self._record_warm(outcome)
        finally:
            self._warming = False

        summary["duration_ms"] = round((time.perf_counter() - start) * 1000, 2)
        self.logger.info(
            "Cache warm completed",
            planned=summary["planned"],
            warmed=summary["warmed"],
            already_cached=summary["already_cached"],
            skipped=summary["skipped"],
            errors=len(summary["errors"]),
        )
        return summary

    async def _warm_entry(self, filters: ItemFilter) -> str:
        if not self._cacheable(filters):
            return "skipped"

        query = normalize_filter(filters)
        key = build_key(self.config.cache_namespace, filters)

        async def compute() -> List[Dict[str, Any]]:
            return await self.repository.find_many(query)

        async with self._warm_semaphore:
            lookup = await self.cache.fetch(key, compute, priority=classify_priority(filters))
        return "already_cached" if lookup.hit else "warmed"

    def _record_warm(self, result: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("cache_warm_total", result=result)

    async def health_check(self) -> Dict[str, Any]:
        """Ping the remote tier; never raises."""
        try:
            await self.remote.ping()
            remote_ok = True
        except Exception as e:
            self.logger.warning("Remote cache health check failed", error=str(e))
            remote_ok = False
        return {
            "remote_cache": remote_ok,
            "circuit_breaker": self.remote.circuit_breaker.get_state()["state"],
            "memory_entries": len(self.memory),
        }
