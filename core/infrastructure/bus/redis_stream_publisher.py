"""
Redis Streams Publisher for invalidation events.

Publishes permission and aggregation-cache invalidation events so every
orchestrator instance evicts the same entries.
"""
import logging
from typing import Any, Dict, Optional

import redis.asyncio as aioredis

from core.domain.events import CacheInvalidationEvent, PermissionInvalidationEvent


logger = logging.getLogger(__name__)

PERMISSION_EVENT = "PermissionInvalidated"
CACHE_EVENT = "CacheInvalidated"


class RedisStreamPublisher:
    """
    Publishes events to Redis Streams.

    Message format (all values are strings):
        permission stream: {"event_type", "tenant_id", "actor_id", "reason", "timestamp"}
        cache stream:      {"event_type", "cache_key_prefix"}
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        permission_stream: str = "tenantflow:permissions:stream",
        cache_stream: str = "tenantflow:cache:stream",
        redis_client: Optional[aioredis.Redis] = None,
    ):
        """
        Initialize Redis Stream Publisher.

        Args:
            redis_url: Redis connection URL
            permission_stream: Stream for permission invalidations
            cache_stream: Stream for aggregation cache invalidations
            redis_client: Pre-built client (skips connecting)
        """
        self.redis_url = redis_url
        self.permission_stream = permission_stream
        self.cache_stream = cache_stream
        self._redis_client = redis_client

    async def connect(self) -> None:
        """Establish Redis connection."""
        if self._redis_client is None:
            try:
                self._redis_client = aioredis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
                await self._redis_client.ping()
                logger.info(f"Connected to Redis: {self.redis_url}")
            except Exception as e:
                logger.error(f"Failed to connect to Redis: {e}")
                self._redis_client = None
                raise

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._redis_client:
            await self._redis_client.aclose()
            self._redis_client = None
            logger.info("Disconnected from Redis")

    async def publish_permission_invalidation(self, event: PermissionInvalidationEvent) -> str:
        """
        Publish a permission invalidation.

        Returns:
            Message ID from Redis Stream
        """
        message = {"event_type": PERMISSION_EVENT, **event.to_dict()}
        return await self._publish(self.permission_stream, message)

    async def publish_cache_invalidation(self, event: CacheInvalidationEvent) -> str:
        """
        Publish an aggregation cache invalidation.

        Returns:
            Message ID from Redis Stream
        """
        message = {"event_type": CACHE_EVENT, **event.to_dict()}
        return await self._publish(self.cache_stream, message)

    async def _publish(self, stream: str, message: Dict[str, Any]) -> str:
        if self._redis_client is None:
            await self.connect()

        try:
            msg_id = await self._redis_client.xadd(stream, message, maxlen=10000)
            logger.info(f"Published {message['event_type']} to {stream}: msg_id={msg_id}")
            return msg_id
        except Exception as e:
            logger.error(f"Failed to publish to Redis Stream {stream}: {e}", exc_info=True)
            raise

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.disconnect()
