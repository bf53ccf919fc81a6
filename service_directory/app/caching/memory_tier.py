"""
In-process cache tier.

A bounded dict of key -> entry with lazy expiry. When full, the entry with
the fewest hits is evicted (least-hit, not least-recent). All operations are
synchronous and never raise, so they are safe to call between awaits without
locking on a single event loop.
"""

import asyncio
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from shared.logging import get_logger


class _Miss:
    """Sentinel for a memory-tier miss (cached values may be falsy)."""

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS = _Miss()


def glob_to_regex(pattern: str) -> "re.Pattern[str]":
    """
    Compile a Redis KEYS/SCAN glob into a regex.

    Follows Redis semantics rather than fnmatch: ``\\`` escapes the next
    character and ``[^...]`` negates a class.
    """
    out = []
    i = 0
    n = len(pattern)
    while i < n:
        ch = pattern[i]
        if ch == "\\" and i + 1 < n:
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if ch == "*":
            out.append(".*")
        elif ch == "?":
            out.append(".")
        elif ch == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(ch))
            else:
                body = pattern[i + 1:end]
                negate = body.startswith("^")
                if negate:
                    body = body[1:]
                parts = []
                j = 0
                while j < len(body):
                    if body[j] == "\\" and j + 1 < len(body):
                        parts.append(re.escape(body[j + 1]))
                        j += 2
                    elif j + 2 < len(body) and body[j + 1] == "-":
                        parts.append(f"{re.escape(body[j])}-{re.escape(body[j + 2])}")
                        j += 3
                    else:
                        parts.append(re.escape(body[j]))
                        j += 1
                if not parts:
                    out.append("." if negate else "(?!)")
                else:
                    out.append(("[^" if negate else "[") + "".join(parts) + "]")
                i = end + 1
                continue
        else:
            out.append(re.escape(ch))
        i += 1
    return re.compile("^" + "".join(out) + "$", re.DOTALL)


@dataclass
class CacheEntry:
    value: Any
    expires_at: float
    hit_count: int = 0


class MemoryTier:
    """Bounded in-process cache with least-hit eviction."""

    def __init__(self, capacity: int = 500, *, clock: Callable[[], float] = time.monotonic):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._evictions = 0
        self._sweeper: Optional[asyncio.Task] = None
        self.logger = get_logger("directory.cache.memory")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.expires_at > self._clock()

    def get(self, key: str) -> Any:
        """Return the cached value or ``MISS``."""
        entry = self._entries.get(key)
        if entry is None:
            return MISS

        if entry.expires_at <= self._clock():
            del self._entries[key]
            return MISS

        entry.hit_count += 1
        return entry.value

    def set(self, key: str, value: Any, ttl_ms: int) -> None:
        if key not in self._entries and len(self._entries) >= self.capacity:
            self._evict_one()

        self._entries[key] = CacheEntry(
            value=value,
            expires_at=self._clock() + ttl_ms / 1000.0,
            hit_count=0,
        )

    def _evict_one(self) -> None:
        # min() keeps the first of equal candidates, i.e. the oldest insert
        victim = min(self._entries, key=lambda k: self._entries[k].hit_count)
        del self._entries[victim]
        self._evictions += 1
        self.logger.debug("Evicted memory cache entry", key=victim)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def delete_matching(self, pattern: str) -> int:
        """Delete keys matching a Redis-style glob pattern."""
        regex = glob_to_regex(pattern)
        doomed = [key for key in self._entries if regex.match(key)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def sweep(self) -> int:
        """Drop expired entries that nobody has read since they expired."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            self.logger.debug("Swept expired memory cache entries", count=len(expired))
        return len(expired)

    def hit_count(self, key: str) -> Optional[int]:
        entry = self._entries.get(key)
        return entry.hit_count if entry else None

    def stats(self, top: int = 10) -> Dict[str, Any]:
        now = self._clock()
        ranked: List[Dict[str, Any]] = sorted(
            (
                {
                    "key": key,
                    "hits": entry.hit_count,
                    "expires_in_ms": max(0, int((entry.expires_at - now) * 1000)),
                }
                for key, entry in self._entries.items()
            ),
            key=lambda item: item["hits"],
            reverse=True,
        )
        return {
            "size": len(self._entries),
            "capacity": self.capacity,
            "total_hits": sum(entry.hit_count for entry in self._entries.values()),
            "evictions": self._evictions,
            "top_entries": ranked[:top],
        }

    def start_sweeper(self, interval_seconds: float) -> Optional[asyncio.Task]:
        """Start a periodic sweep on the running loop. No-op if already running."""
        if interval_seconds <= 0:
            return None
        if self._sweeper is not None and not self._sweeper.done():
            return self._sweeper
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever(interval_seconds))
        return self._sweeper

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self.sweep()
