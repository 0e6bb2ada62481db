"""
ChatPilot Marker Stores - Short-lived distributed markers

Backends:
- RedisMarkerStore: shared across processes (SET NX EX)
- MemoryMarkerStore: single process, for development/testing
- NullMarkerStore: used when no cache is configured; every claim succeeds
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class MarkerStore(ABC):
    """Abstract set-if-absent marker storage. Markers are never deleted, only expire."""

    @abstractmethod
    async def set_if_absent(self, key: str, ttl_seconds: int) -> bool:
        """
        Atomically create ``key`` with an expiry.

        Returns:
            True if the marker was created, False if it already existed.
        """
        pass

    async def close(self) -> None:
        """Close backend connections. Override in subclasses that need cleanup."""
        pass


class NullMarkerStore(MarkerStore):
    """No distributed cache configured: never blocks, warns once."""

    def __init__(self):
        self._warned = False

    async def set_if_absent(self, key: str, ttl_seconds: int) -> bool:
        if not self._warned:
            logger.warning(
                "No distributed cache configured; duplicate-batch protection is disabled"
            )
            self._warned = True
        return True


class MemoryMarkerStore(MarkerStore):
    """In-memory marker store for development/testing."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._expiry: Dict[str, float] = {}

    async def set_if_absent(self, key: str, ttl_seconds: int) -> bool:
        now = self._clock()
        expires = self._expiry.get(key)
        if expires is not None and expires > now:
            return False
        self._expiry[key] = now + ttl_seconds
        return True

    def __contains__(self, key: str) -> bool:
        expires = self._expiry.get(key)
        return expires is not None and expires > self._clock()


class RedisMarkerStore(MarkerStore):
    """
    Redis-backed markers.

    Usage:
        store = RedisMarkerStore(redis_url="redis://localhost:6379")
        created = await store.set_if_absent("chatpilot:inflight:abc", 300)
    """

    def __init__(self, redis_url: str = "redis://localhost:6379", client=None):
        self._redis_url = redis_url
        self._redis = client  # lazy-initialized unless injected

    def _get_client(self):
        if self._redis is None:
            import redis.asyncio as aioredis

            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
        return self._redis

    async def set_if_absent(self, key: str, ttl_seconds: int) -> bool:
        created = await self._get_client().set(key, "1", nx=True, ex=ttl_seconds)
        return bool(created)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def create_marker_store(redis_url: Optional[str]) -> MarkerStore:
    """Redis store when a URL is configured, otherwise the degraded null store."""
    if redis_url:
        logger.info(f"Marker store: redis ({redis_url})")
        return RedisMarkerStore(redis_url=redis_url)
    logger.info("Marker store: none configured, running degraded")
    return NullMarkerStore()
