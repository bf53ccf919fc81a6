"""
Invalidation fan-out for directory writes.

A change to a row can surface in any listing scoped to its campus, its
letter, both, or neither, so every write drops each of those key families.
Remote deletes run in parallel and a failing delete never stops the others;
partial invalidation is preferred over blocking the write. Staleness left by
a failed delete is bounded by the entry TTL.
"""

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence, Set

from shared.logging import get_logger
from .keys import build_invalidation_patterns, normalize_campus, normalize_letter
from .memory_tier import MemoryTier
from .remote_cache import RemoteCache, escape_glob

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


@dataclass
class InvalidationResult:
    patterns: List[str] = field(default_factory=list)
    remote_deleted: int = 0
    memory_deleted: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.errors


class InvalidationFanOut:
    """Computes and issues prefix deletes after a committed write."""

    def __init__(
        self,
        memory: MemoryTier,
        remote: RemoteCache,
        namespaces: Sequence[str],
        *,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.memory = memory
        self.remote = remote
        self.namespaces = list(namespaces)
        self.metrics = metrics
        self.logger = get_logger("directory.cache.invalidation")
        self._pending: Set[asyncio.Task] = set()

    def patterns_for(
        self,
        old_campus: Optional[str],
        old_letter: Optional[str],
        new_campus: Optional[str] = None,
        new_letter: Optional[str] = None,
    ) -> List[str]:
        """All prefixes for the old values, plus the new values when they moved."""
        pairs = [(old_campus, old_letter)]

        if new_campus is not None or new_letter is not None:
            moved_campus = new_campus if new_campus is not None else old_campus
            moved_letter = new_letter if new_letter is not None else old_letter
            old_norm = (normalize_campus(old_campus), normalize_letter(old_letter))
            new_norm = (normalize_campus(moved_campus), normalize_letter(moved_letter))
            if new_norm != old_norm:
                pairs.append((moved_campus, moved_letter))

        patterns: List[str] = []
        for namespace in self.namespaces:
            for campus, letter in pairs:
                for pattern in build_invalidation_patterns(namespace, campus, letter):
                    if pattern not in patterns:
                        patterns.append(pattern)
        return patterns

    async def invalidate(
        self,
        old_campus: Optional[str],
        old_letter: Optional[str],
        new_campus: Optional[str] = None,
        new_letter: Optional[str] = None,
    ) -> InvalidationResult:
        """Drop every cached listing that could contain the written row. Never raises."""
        result = InvalidationResult(patterns=self.patterns_for(old_campus, old_letter, new_campus, new_letter))

        for pattern in result.patterns:
            result.memory_deleted += self.memory.delete_prefix(pattern)

        outcomes = await asyncio.gather(
            *(self.remote.delete_pattern(escape_glob(pattern) + "*") for pattern in result.patterns),
            return_exceptions=True,
        )

        for pattern, outcome in zip(result.patterns, outcomes):
            if isinstance(outcome, BaseException):
                result.errors.append(f"{pattern}: {outcome}")
                self.logger.warning("Cache invalidation failed for pattern", pattern=pattern, error=str(outcome))
                self._count("error")
            else:
                result.remote_deleted += outcome
                self._count("ok")

        # Reads that ran during the remote deletes may have backfilled memory from Redis
        for pattern in result.patterns:
            result.memory_deleted += self.memory.delete_prefix(pattern)

        self.logger.info(
            "Cache invalidated",
            patterns=len(result.patterns),
            remote_deleted=result.remote_deleted,
            memory_deleted=result.memory_deleted,
            errors=len(result.errors),
        )
        return result

    def schedule(
        self,
        old_campus: Optional[str],
        old_letter: Optional[str],
        new_campus: Optional[str] = None,
        new_letter: Optional[str] = None,
    ) -> asyncio.Task:
        """Run ``invalidate`` in the background and return its task."""
        task = asyncio.get_running_loop().create_task(
            self.invalidate(old_campus, old_letter, new_campus, new_letter)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for all scheduled invalidations to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def invalidate_pattern(self, pattern: str) -> InvalidationResult:
        """Drop keys matching an admin-supplied glob pattern from both tiers."""
        result = InvalidationResult(patterns=[pattern])
        result.memory_deleted = self.memory.delete_matching(pattern)
        try:
            result.remote_deleted = await self.remote.delete_pattern(pattern)
        except Exception as exc:
            result.errors.append(str(exc))
            self.logger.error("Pattern invalidation failed", pattern=pattern, error=str(exc))
        self.logger.info(
            "Invalidated cache pattern",
            pattern=pattern,
            remote_deleted=result.remote_deleted,
            memory_deleted=result.memory_deleted,
        )
        return result

    async def invalidate_keys(self, keys: Iterable[str]) -> InvalidationResult:
        """Drop exact keys from both tiers."""
        unique = list(dict.fromkeys(keys))
        result = InvalidationResult(patterns=unique)
        result.memory_deleted = sum(1 for key in unique if self.memory.delete(key))
        try:
            result.remote_deleted = await self.remote.delete(*unique)
        except Exception as exc:
            result.errors.append(str(exc))
            self.logger.error("Key invalidation failed", keys=len(unique), error=str(exc))
        return result

    def _count(self, result: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("cache_invalidations_total", result=result)
