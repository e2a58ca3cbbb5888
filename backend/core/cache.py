"""
Cache port for API-level response caching.

The analytical functions never cache; callers that want caching inject a
``CachePort`` (in-memory for single-process/dev, Redis for shared deployments).
"""

from __future__ import annotations

import json
import time
from typing import Any, Protocol

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger()


class CachePort(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...


class InMemoryCache:
    """Per-instance TTL cache. Expiry uses the monotonic clock."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            self._entries.pop(key, None)
            return
        self._entries[key] = (self._clock() + ttl_seconds, value)


class RedisCache:
    """Redis-backed cache. Values must be JSON-serializable."""

    def __init__(self, client: aioredis.Redis, prefix: str = "commerce-intel:"):
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> RedisCache:
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Any | None:
        raw = await self._client.get(self._prefix + key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        await self._client.set(self._prefix + key, json.dumps(value, default=str), ex=ttl_seconds)
        logger.debug("cache.set", key=key, ttl_seconds=ttl_seconds)
