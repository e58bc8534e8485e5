"""
Aggregation cache.

Caches shaped results of several domain calls for read-heavy clients.
Concurrent requests for the same key share one computation, and a result
is stored only when every underlying call succeeded.
"""
import asyncio
import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence, Union

from core.application.interfaces import ICacheBackend
from core.domain.entities import CacheEntry
from core.domain.events import CacheInvalidationEvent

logger = logging.getLogger(__name__)

ComputeFn = Callable[[], Awaitable[Any]]


def serialize(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def compute_etag(serialized: str) -> str:
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


@dataclass
class _Flight:
    """Single-flight state of one key; dropped once nobody waits on it."""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0
    invalidated: bool = False


class AggregationCache:
    """Single-flight, JSON-serialized, TTL cache over an ICacheBackend."""

    def __init__(
        self,
        backend: ICacheBackend,
        default_ttl_seconds: float = 60.0,
        key_prefix: str = "",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize aggregation cache.

        Args:
            backend: Entry storage (in-memory or Redis)
            default_ttl_seconds: TTL used when a call passes none
            key_prefix: Namespace prepended to every key
            clock: Wall clock used for entry expiry
        """
        self._backend = backend
        self._default_ttl = default_ttl_seconds
        self._prefix = key_prefix
        self._clock = clock
        self._flights: Dict[str, _Flight] = {}
        self.computations = 0

    async def get_or_compute(self, key: str, ttl: Optional[float], compute_fn: ComputeFn) -> Any:
        """
        Return the cached value for ``key`` or compute and store it.

        Args:
            key: Cache key (without namespace)
            ttl: Seconds to keep the value; None uses the default
            compute_fn: Zero-argument coroutine function producing the value

        Returns:
            The value as it round-trips through JSON

        Raises:
            Whatever ``compute_fn`` raises; nothing is cached in that case
        """
        full_key = self._key(key)
        entry = await self._backend.get(full_key)
        if entry is not None:
            return json.loads(entry.value)

        flight = self._flights.get(full_key)
        if flight is None:
            flight = self._flights[full_key] = _Flight()
        flight.users += 1
        try:
            async with flight.lock:
                entry = await self._backend.get(full_key)
                if entry is not None:
                    return json.loads(entry.value)

                self.computations += 1
                flight.invalidated = False
                value = await compute_fn()
                if flight.invalidated:
                    logger.info(f"Aggregation {key}: invalidated while computing, not caching")
                    return json.loads(serialize(value))

                entry = await self._store(full_key, value, ttl)
                if flight.invalidated:
                    # The invalidation ran while the entry was being written.
                    await self._backend.delete(full_key)
                return json.loads(entry.value)
        finally:
            flight.users -= 1
            if flight.users == 0 and self._flights.get(full_key) is flight:
                del self._flights[full_key]

    async def gather(
        self,
        key: str,
        ttl: Optional[float],
        calls: Union[Mapping[str, ComputeFn], Sequence[ComputeFn]],
    ) -> Any:
        """
        Fan out independent calls in parallel and cache the merged result.

        Args:
            key: Cache key (without namespace)
            ttl: Seconds to keep the merged value
            calls: Named calls (merged into a dict) or a sequence (merged
                into a list)

        Returns:
            The merged result

        Raises:
            The first error raised by any call; no partial result is cached
        """
        if isinstance(calls, Mapping):
            names = list(calls.keys())
            fns = list(calls.values())
        else:
            names = None
            fns = list(calls)

        async def compute() -> Any:
            results = await asyncio.gather(*(fn() for fn in fns), return_exceptions=True)
            for result in results:
                if isinstance(result, BaseException):
                    failed = sum(1 for r in results if isinstance(r, BaseException))
                    logger.warning(f"Aggregation {key}: {failed}/{len(results)} calls failed, not caching")
                    raise result
            if names is None:
                return list(results)
            return dict(zip(names, results))

        return await self.get_or_compute(key, ttl, compute)

    def in_flight(self) -> int:
        """Number of keys with a computation running or waited on."""
        return len(self._flights)

    async def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Raw entry, exposing the etag for conditional requests."""
        return await self._backend.get(self._key(key))

    async def invalidate(self, prefix: str) -> int:
        """Drop every entry whose key starts with ``prefix``.

        Computations in flight for matching keys still answer their callers
        but do not store their result.
        """
        full_prefix = self._key(prefix)
        for flight_key, flight in self._flights.items():
            if flight_key.startswith(full_prefix):
                flight.invalidated = True
        removed = await self._backend.delete_prefix(full_prefix)
        logger.info(f"Aggregation cache invalidated prefix={prefix!r} removed={removed}")
        return removed

    async def handle_invalidation(self, event: CacheInvalidationEvent) -> int:
        return await self.invalidate(event.cache_key_prefix)

    async def _store(self, full_key: str, value: Any, ttl: Optional[float]) -> CacheEntry:
        ttl_seconds = self._default_ttl if ttl is None else ttl
        serialized = serialize(value)
        entry = CacheEntry(
            key=full_key,
            value=serialized,
            etag=compute_etag(serialized),
            expires_at=self._clock() + ttl_seconds,
        )
        if ttl_seconds > 0:
            await self._backend.set(entry, ttl_seconds)
        return entry

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"
