"""In-memory aggregation cache backend."""
import asyncio
import time
from typing import Callable, Dict, Optional

from core.application.interfaces import ICacheBackend
from core.domain.entities import CacheEntry


class InMemoryCacheBackend(ICacheBackend):
    """Process-local entries with lazy TTL expiry."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def get(self, key: str) -> Optional[CacheEntry]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            return entry

    async def set(self, entry: CacheEntry, ttl_seconds: float) -> None:
        async with self._lock:
            self._entries[entry.key] = entry

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def delete_prefix(self, prefix: str) -> int:
        async with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def __len__(self) -> int:
        return len(self._entries)
