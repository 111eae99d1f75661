"""
Caching Service.

Simple memory-based cache for short-lived computed values such as the
snapshot ETA of a request.
"""

from datetime import timedelta
from typing import Dict, Any, Optional

from triptrack.app.core.clock import utcnow

# In-memory store, local to the worker process
_cache_store: Dict[str, dict] = {}


class CacheService:

    @staticmethod
    async def get(key: str) -> Optional[Any]:
        entry = _cache_store.get(key)
        if not entry:
            return None

        if utcnow() > entry["expires_at"]:
            del _cache_store[key]
            return None

        return entry["data"]

    @staticmethod
    async def set(key: str, data: Any, ttl_seconds: float = 300):
        now = utcnow()
        for stale in [k for k, entry in _cache_store.items() if now > entry["expires_at"]]:
            del _cache_store[stale]
        _cache_store[key] = {
            "data": data,
            "expires_at": now + timedelta(seconds=ttl_seconds)
        }

    @staticmethod
    async def delete(key: str):
        _cache_store.pop(key, None)

    @staticmethod
    async def clear():
        _cache_store.clear()
