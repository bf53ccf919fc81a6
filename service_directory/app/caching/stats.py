"""
Per-day cache hit/miss counters for the admin dashboard.

Counters live in Redis hashes (``<prefix>:hits`` / ``<prefix>:misses``) keyed
by UTC date. Recording is purely observational: any failure is logged and
dropped.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from shared.logging import get_logger
from .remote_cache import RemoteCache

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

STATS_TTL_SECONDS = 30 * 24 * 60 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheStatsTracker:
    """Records cache hits and misses and reports today's hit rate."""

    def __init__(
        self,
        remote: RemoteCache,
        *,
        prefix: str = "cache:stats",
        metrics: Optional["MetricsCollector"] = None,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.remote = remote
        self.prefix = prefix
        self.metrics = metrics
        self._now = now
        self.logger = get_logger("directory.cache.stats")

    def _today(self) -> str:
        return self._now().strftime("%Y-%m-%d")

    async def record_hit(self, tier: str = "remote") -> None:
        if self.metrics:
            self.metrics.increment_counter("cache_hits_total", tier=tier)
        await self._increment("hits")

    async def record_miss(self, reason: str = "miss") -> None:
        if self.metrics:
            self.metrics.increment_counter("cache_misses_total", reason=reason)
        await self._increment("misses")

    async def _increment(self, kind: str) -> None:
        name = f"{self.prefix}:{kind}"
        try:
            await self.remote.hincrby(name, self._today(), 1)
            await self.remote.expire(name, STATS_TTL_SECONDS)
        except Exception as e:
            self.logger.debug("Failed to record cache stat", kind=kind, error=str(e))

    async def get_stats(self) -> Dict[str, Any]:
        """Today's hit rate as a ratio in [0, 1], with the raw counts."""
        today = self._today()
        try:
            hits = int(await self.remote.hget(f"{self.prefix}:hits", today) or 0)
            misses = int(await self.remote.hget(f"{self.prefix}:misses", today) or 0)
        except Exception as e:
            self.logger.warning("Failed to read cache stats", error=str(e))
            hits = misses = 0

        total = hits + misses
        return {
            "hit_rate": hits / total if total else 0.0,
            "total_requests": total,
            "cached_requests": hits,
            "date": today,
        }
