"""
Commerce Intelligence API Dependencies

Dependency injection for the store port and the response cache.
"""

from functools import lru_cache

from core.cache import CachePort, InMemoryCache, RedisCache
from core.config import get_settings
from db.session import AsyncSessionLocal
from db.store import CommerceStore


def get_store() -> CommerceStore:
    """Store bound to the application's session factory."""
    return CommerceStore(AsyncSessionLocal)


@lru_cache
def get_cache() -> CachePort:
    """Process-wide response cache selected by ``cache_backend``."""
    settings = get_settings()
    if settings.cache_backend == "redis":
        return RedisCache.from_url(settings.redis_url)
    return InMemoryCache()
