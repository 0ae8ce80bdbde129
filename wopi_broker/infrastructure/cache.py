"""
Distributed cache backends for the discovery document.
Redis in deployments, an in-process dictionary in development and tests.
"""

import logging
import time
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..domain.services import DistributedCache

logger = logging.getLogger(__name__)


class MemoryCache(DistributedCache):
    """In-process cache with per-key expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic, max_entries: int = 1000):
        self.clock = clock
        self.max_entries = max_entries
        self._entries: Dict[str, Tuple[float, bytes]] = {}

    async def get(self, key: str) -> Optional[bytes]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self.clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        # Re-inserting moves the key to the newest position
        self._entries.pop(key, None)
        self._entries[key] = (self.clock() + ttl, value)

        # Drop the oldest entry beyond the size limit
        if len(self._entries) > self.max_entries:
            oldest_key = next(iter(self._entries))
            del self._entries[oldest_key]

    async def remove(self, key: str) -> None:
        self._entries.pop(key, None)


class RedisCache(DistributedCache):
    """Redis-backed cache; keys are namespaced by app."""

    def __init__(self, redis_client: redis.Redis, namespace: str = "richdocuments"):
        self.redis_client = redis_client
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[bytes]:
        try:
            value = await self.redis_client.get(self._key(key))
        except RedisError as e:
            logger.error(f"Redis read error for {key}: {e}")
            return None
        if value is None:
            return None
        if isinstance(value, str):
            return value.encode("utf-8")
        return value

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        try:
            await self.redis_client.setex(self._key(key), ttl, value)
        except RedisError as e:
            logger.error(f"Redis write error for {key}: {e}")

    async def remove(self, key: str) -> None:
        try:
            await self.redis_client.delete(self._key(key))
        except RedisError as e:
            logger.error(f"Redis delete error for {key}: {e}")
