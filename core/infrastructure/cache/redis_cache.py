"""
Redis aggregation cache backend.

Each entry is a hash {value, etag, expires_at} with a native Redis TTL, so
every orchestrator instance shares the same cache.
"""
import logging
import re
from typing import Optional

import redis.asyncio as aioredis

from core.application.interfaces import ICacheBackend
from core.domain.entities import CacheEntry


logger = logging.getLogger(__name__)

_GLOB_SPECIALS = re.compile(r"([*?\[\]\\])")


class RedisCacheBackend(ICacheBackend):
    """Redis implementation of the aggregation cache backend."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        redis_client: Optional[aioredis.Redis] = None,
        scan_batch: int = 500,
    ):
        """
        Initialize Redis cache backend.

        Args:
            redis_url: Redis connection URL
            redis_client: Pre-built client (skips connecting)
            scan_batch: SCAN page size used by prefix deletion
        """
        self.redis_url = redis_url
        self._redis_client = redis_client
        self._scan_batch = scan_batch

    async def connect(self) -> None:
        if self._redis_client is None:
            self._redis_client = aioredis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)
            await self._redis_client.ping()
            logger.info(f"Aggregation cache connected to Redis: {self.redis_url}")

    async def disconnect(self) -> None:
        if self._redis_client:
            await self._redis_client.aclose()
            self._redis_client = None

    async def get(self, key: str) -> Optional[CacheEntry]:
        await self.connect()
        data = await self._redis_client.hgetall(key)
        if not data:
            return None
        return CacheEntry(
            key=key,
            value=data["value"],
            etag=data["etag"],
            expires_at=float(data["expires_at"]),
        )

    async def set(self, entry: CacheEntry, ttl_seconds: float) -> None:
        await self.connect()
        async with self._redis_client.pipeline(transaction=True) as pipe:
            pipe.hset(
                entry.key,
                mapping={"value": entry.value, "etag": entry.etag, "expires_at": str(entry.expires_at)},
            )
            pipe.pexpire(entry.key, max(int(ttl_seconds * 1000), 1))
            await pipe.execute()

    async def delete(self, key: str) -> bool:
        await self.connect()
        return await self._redis_client.delete(key) > 0

    async def delete_prefix(self, prefix: str) -> int:
        await self.connect()
        pattern = _GLOB_SPECIALS.sub(r"\\\1", prefix) + "*"
        removed = 0
        batch = []
        async for key in self._redis_client.scan_iter(match=pattern, count=self._scan_batch):
            batch.append(key)
            if len(batch) >= self._scan_batch:
                removed += await self._redis_client.delete(*batch)
                batch = []
        if batch:
            removed += await self._redis_client.delete(*batch)
        return removed
