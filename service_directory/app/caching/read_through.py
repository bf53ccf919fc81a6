"""
Two-tier read-through cache: memory, then Redis, then the origin fetch.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional

from shared.logging import get_logger
from ..domain.models import CachePriority
from .memory_tier import MISS, MemoryTier
from .remote_cache import RemoteCache

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.config import DirectoryConfig
    from shared.metrics import MetricsCollector


class CacheSource(str, Enum):
    MEMORY = "memory"
    REMOTE = "remote"
    ORIGIN = "origin"


@dataclass(frozen=True)
class CacheLookup:
    value: Any
    source: CacheSource

    @property
    def hit(self) -> bool:
        return self.source != CacheSource.ORIGIN


@dataclass(frozen=True)
class TtlPolicy:
    """Memory (ms) and remote (s) TTLs for each priority tier."""

    memory_ms: Dict[CachePriority, int]
    remote_seconds: Dict[CachePriority, int]

    @classmethod
    def default(cls) -> "TtlPolicy":
        return cls(
            memory_ms={
                CachePriority.HOT: 30 * 60 * 1000,
                CachePriority.WARM: 10 * 60 * 1000,
                CachePriority.COLD: 5 * 60 * 1000,
            },
            remote_seconds={
                CachePriority.HOT: 8 * 60 * 60,
                CachePriority.WARM: 4 * 60 * 60,
                CachePriority.COLD: 1 * 60 * 60,
            },
        )

    @classmethod
    def from_config(cls, config: "DirectoryConfig") -> "TtlPolicy":
        return cls(
            memory_ms={
                CachePriority.HOT: config.hot_memory_ttl_ms,
                CachePriority.WARM: config.warm_memory_ttl_ms,
                CachePriority.COLD: config.cold_memory_ttl_ms,
            },
            remote_seconds={
                CachePriority.HOT: config.hot_remote_ttl_seconds,
                CachePriority.WARM: config.warm_remote_ttl_seconds,
                CachePriority.COLD: config.cold_remote_ttl_seconds,
            },
        )


class ReadThroughCache:
    """
    Orchestrates lookups across the memory tier, Redis and the origin.

    Remote failures are logged and treated as misses; origin failures
    propagate and nothing is cached for them. Concurrent cold fills of the
    same key may each call the origin unless ``coalesce_fills`` is set.
    """

    def __init__(
        self,
        memory: MemoryTier,
        remote: RemoteCache,
        *,
        ttl_policy: Optional[TtlPolicy] = None,
        coalesce_fills: bool = False,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.memory = memory
        self.remote = remote
        self.ttl_policy = ttl_policy or TtlPolicy.default()
        self.coalesce_fills = coalesce_fills
        self.metrics = metrics
        self.logger = get_logger("directory.cache.read_through")
        self._inflight: Dict[str, asyncio.Future] = {}

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        *,
        memory_ttl_ms: Optional[int] = None,
        remote_ttl_seconds: Optional[int] = None,
        priority: CachePriority = CachePriority.WARM,
    ) -> Any:
        lookup = await self.fetch(
            key,
            compute,
            memory_ttl_ms=memory_ttl_ms,
            remote_ttl_seconds=remote_ttl_seconds,
            priority=priority,
        )
        return lookup.value

    async def fetch(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        *,
        memory_ttl_ms: Optional[int] = None,
        remote_ttl_seconds: Optional[int] = None,
        priority: CachePriority = CachePriority.WARM,
    ) -> CacheLookup:
        """Like ``get_or_compute`` but also reports which tier answered."""
        memory_ttl = memory_ttl_ms if memory_ttl_ms is not None else self.ttl_policy.memory_ms[priority]
        remote_ttl = remote_ttl_seconds if remote_ttl_seconds is not None else self.ttl_policy.remote_seconds[priority]

        cached = self.memory.get(key)
        if cached is not MISS:
            self.logger.debug("Memory cache hit", key=key)
            return CacheLookup(cached, CacheSource.MEMORY)

        remote_value = await self._remote_get(key)
        if remote_value is not None:
            self.memory.set(key, remote_value, memory_ttl)
            self.logger.debug("Remote cache hit", key=key)
            return CacheLookup(remote_value, CacheSource.REMOTE)

        if self.coalesce_fills:
            value = await self._coalesced(key, compute)
        else:
            value = await self._compute(compute)

        # None is indistinguishable from a remote miss, so it is never stored
        if value is not None:
            self.memory.set(key, value, memory_ttl)
            await self._remote_set(key, value, remote_ttl)

        self.logger.debug("Cache miss filled from origin", key=key, priority=priority.value)
        return CacheLookup(value, CacheSource.ORIGIN)

    async def bypass(self, compute: Callable[[], Awaitable[Any]]) -> CacheLookup:
        """Go straight to the origin without reading or writing either tier."""
        value = await self._compute(compute)
        return CacheLookup(value, CacheSource.ORIGIN)

    async def _compute(self, compute: Callable[[], Awaitable[Any]]) -> Any:
        start = time.perf_counter()
        try:
            return await compute()
        finally:
            if self.metrics:
                self.metrics.observe_histogram("origin_fetch_duration_seconds", time.perf_counter() - start)

    async def _coalesced(self, key: str, compute: Callable[[], Awaitable[Any]]) -> Any:
        future = self._inflight.get(key)
        if future is None:
            future = asyncio.ensure_future(self._compute(compute))
            self._inflight[key] = future
            future.add_done_callback(lambda _f, k=key: self._inflight.pop(k, None))
        return await asyncio.shield(future)

    async def _remote_get(self, key: str) -> Optional[Any]:
        try:
            return await self.remote.get(key)
        except Exception as exc:
            self.logger.warning("Remote cache read failed; treating as miss", key=key, error=str(exc))
            return None

    async def _remote_set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            await self.remote.set(key, value, ttl_seconds)
        except Exception as exc:
            self.logger.warning("Remote cache write failed", key=key, error=str(exc))
