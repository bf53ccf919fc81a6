"""
Redis-backed remote cache tier.

Every command runs under a short timeout and a circuit breaker. Failures
(including an open breaker) surface as ``CacheError`` so callers can treat
the tier as empty without caring why it is unavailable.
"""

import asyncio
import json
from typing import Any, Awaitable, Callable, List, Optional

import redis.asyncio as redis

from shared.circuit_breaker import CircuitBreaker
from shared.errors import CacheError
from shared.logging import get_logger

_GLOB_SPECIALS = "\\*?[]"


def escape_glob(value: str) -> str:
    """Escape Redis glob metacharacters so a key prefix matches literally."""
    return "".join(f"\\{ch}" if ch in _GLOB_SPECIALS else ch for ch in value)


class RemoteCache:
    """Thin async adapter over Redis for JSON values with per-key TTL."""

    def __init__(
        self,
        redis_url: str,
        *,
        timeout_seconds: float = 0.5,
        circuit_breaker: Optional[CircuitBreaker] = None,
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.timeout_seconds = timeout_seconds
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=3,
            recovery_timeout=15.0,
            name="remote_cache",
        )
        self.logger = get_logger("directory.cache.remote")
        self._redis: Optional[redis.Redis] = client

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self.timeout_seconds,
                socket_timeout=self.timeout_seconds,
            )
        return self._redis

    async def _call(self, operation: str, command: Callable[[redis.Redis], Awaitable[Any]]) -> Any:
        if not self.circuit_breaker.allow_request():
            raise CacheError("circuit open", {"operation": operation})

        try:
            client = await self._get_redis()
            result = await asyncio.wait_for(command(client), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            self.circuit_breaker.record_failure()
            raise CacheError("timeout", {"operation": operation}) from exc
        except Exception as exc:
            self.circuit_breaker.record_failure()
            raise CacheError(str(exc), {"operation": operation}) from exc

        self.circuit_breaker.record_success()
        return result

    async def get(self, key: str) -> Optional[Any]:
        """Return the decoded value, or None when the key is absent."""
        raw = await self._call("get", lambda r: r.get(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            self.logger.warning("Discarding undecodable cache payload", key=key)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        payload = json.dumps(value, default=str)
        await self._call("set", lambda r: r.set(key, payload, ex=max(1, int(ttl_seconds))))
        return True

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._call("delete", lambda r: r.delete(*keys)))

    async def keys(self, pattern: str) -> List[str]:
        return list(await self._call("keys", lambda r: r.keys(pattern)))

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern; returns the count removed."""
        matched = await self.keys(pattern)
        if not matched:
            return 0
        return await self.delete(*matched)

    async def hincrby(self, name: str, field: str, amount: int = 1) -> int:
        return int(await self._call("hincrby", lambda r: r.hincrby(name, field, amount)))

    async def hget(self, name: str, field: str) -> Optional[str]:
        return await self._call("hget", lambda r: r.hget(name, field))

    async def expire(self, key: str, seconds: int) -> bool:
        return bool(await self._call("expire", lambda r: r.expire(key, seconds)))

    async def ping(self) -> bool:
        return bool(await self._call("ping", lambda r: r.ping()))

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self.logger.info("Remote cache connection closed")
