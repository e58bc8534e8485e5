"""
Redis Streams Consumer for invalidation events.

Reads permission and aggregation-cache invalidation events with a consumer
group and applies them. Eviction is idempotent, so a message redelivered
after a crash is harmless; TTL expiry covers messages that never arrive.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import redis.asyncio as aioredis

from core.domain.events import CacheInvalidationEvent, PermissionInvalidationEvent


logger = logging.getLogger(__name__)

MessageHandler = Callable[[Dict[str, Any]], Awaitable[None]]


class RedisStreamConsumer:
    """
    Consumes events from one or more Redis Streams.

    Features:
    - Consumer groups for load balancing
    - Message acknowledgment (ACK) after successful processing
    - Failed messages stay pending and are redelivered
    """

    def __init__(
        self,
        streams: List[str],
        redis_url: str = "redis://localhost:6379/0",
        consumer_group: str = "tenantflow:orchestrator",
        consumer_name: str = "orchestrator-1",
        redis_client: Optional[aioredis.Redis] = None,
    ):
        """
        Initialize Redis Stream Consumer.

        Args:
            streams: Stream names to read
            redis_url: Redis connection URL
            consumer_group: Consumer group name
            consumer_name: Unique consumer name (for load balancing)
            redis_client: Pre-built client (skips connecting)
        """
        self.streams = list(streams)
        self.redis_url = redis_url
        self.consumer_group = consumer_group
        self.consumer_name = consumer_name
        self._redis_client = redis_client
        self._groups_ready = False

    async def connect(self) -> None:
        """Establish Redis connection and create consumer groups."""
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

        if not self._groups_ready:
            for stream in self.streams:
                try:
                    await self._redis_client.xgroup_create(
                        name=stream,
                        groupname=self.consumer_group,
                        id="0",
                        mkstream=True,
                    )
                    logger.info(f"Created consumer group {self.consumer_group} on {stream}")
                except aioredis.ResponseError as e:
                    if "BUSYGROUP" in str(e):
                        logger.info(f"Consumer group {self.consumer_group} already exists on {stream}")
                    else:
                        raise
            self._groups_ready = True

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._redis_client:
            await self._redis_client.aclose()
            self._redis_client = None
            self._groups_ready = False
            logger.info("Disconnected from Redis")

    async def consume_messages(self, batch_size: int = 10, block_ms: int = 1000) -> List[Dict[str, Any]]:
        """
        Read new messages from every stream.

        Args:
            batch_size: Maximum number of messages per stream
            block_ms: Blocking time in milliseconds

        Returns:
            List of dicts with 'stream', 'id' and 'data' keys
        """
        await self.connect()

        try:
            messages = await self._redis_client.xreadgroup(
                groupname=self.consumer_group,
                consumername=self.consumer_name,
                streams={stream: ">" for stream in self.streams},
                count=batch_size,
                block=block_ms,
            )
        except Exception as e:
            logger.error(f"Failed to read from Redis Streams: {e}")
            raise

        result = []
        for stream_name, stream_messages in messages or []:
            for msg_id, msg_data in stream_messages:
                result.append({"stream": stream_name, "id": msg_id, "data": msg_data})
        return result

    async def acknowledge_message(self, stream: str, message_id: str) -> None:
        """
        Acknowledge message processing (ACK).

        Args:
            stream: Stream the message came from
            message_id: Message ID to acknowledge
        """
        await self.connect()
        try:
            await self._redis_client.xack(stream, self.consumer_group, message_id)
            logger.debug(f"Acknowledged message {message_id} on {stream}")
        except Exception as e:
            logger.error(f"Failed to ACK message {message_id}: {e}")
            raise

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.disconnect()


class InvalidationEventConsumer:
    """
    Routes stream messages to the permission service and aggregation cache.

    Malformed messages are acknowledged and dropped: redelivering them can
    never succeed.
    """

    def __init__(
        self,
        consumer: RedisStreamConsumer,
        permission_stream: str,
        cache_stream: str,
        on_permission_event: Callable[[PermissionInvalidationEvent], Awaitable[Any]],
        on_cache_event: Optional[Callable[[CacheInvalidationEvent], Awaitable[Any]]] = None,
        poll_interval: float = 1.0,
    ):
        self.consumer = consumer
        self.permission_stream = permission_stream
        self.cache_stream = cache_stream
        self._on_permission_event = on_permission_event
        self._on_cache_event = on_cache_event
        self._poll_interval = poll_interval
        self._task: Optional[asyncio.Task] = None
        self.processed = 0

    async def handle_message(self, message: Dict[str, Any]) -> bool:
        """
        Apply one message and ACK it.

        Returns:
            True if the message was applied, False if it was dropped
        """
        stream, msg_id, data = message["stream"], message["id"], message["data"]

        try:
            if stream == self.permission_stream:
                await self._on_permission_event(PermissionInvalidationEvent.from_dict(data))
            elif stream == self.cache_stream and self._on_cache_event is not None:
                await self._on_cache_event(CacheInvalidationEvent.from_dict(data))
            else:
                logger.warning(f"No handler for stream {stream}, dropping {msg_id}")
                await self.consumer.acknowledge_message(stream, msg_id)
                return False
        except ValueError as e:
            logger.error(f"Malformed invalidation event {msg_id} on {stream}: {e}")
            await self.consumer.acknowledge_message(stream, msg_id)
            return False

        await self.consumer.acknowledge_message(stream, msg_id)
        self.processed += 1
        return True

    async def poll_once(self, batch_size: int = 10, block_ms: int = 1000) -> int:
        """Read and apply one batch. Returns the number of messages read."""
        messages = await self.consumer.consume_messages(batch_size=batch_size, block_ms=block_ms)
        for message in messages:
            try:
                await self.handle_message(message)
            except Exception as e:
                logger.error(f"Failed to process message {message['id']}: {e}", exc_info=True)
                # Not ACKed - will be redelivered
        return len(messages)

    async def run(self) -> None:
        """Long-running loop; stops when cancelled."""
        logger.info(f"Starting invalidation consumer on {self.consumer.streams}")
        try:
            await self.consumer.connect()
            while True:
                try:
                    if not await self.poll_once():
                        await asyncio.sleep(self._poll_interval)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Invalidation consumer error: {e}", exc_info=True)
                    await asyncio.sleep(self._poll_interval)
        finally:
            await self.consumer.disconnect()
            logger.info("Invalidation consumer stopped")

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
