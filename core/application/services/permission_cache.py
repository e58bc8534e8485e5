"""
Permission decision cache.

An explicit object handed to the permission context service, never a module
global. Entries live in per (tenant, actor) buckets spread over striped
locks, so invalidating one actor never blocks lookups for another.
"""
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

from core.domain.entities import PermissionCacheEntry, TenantContext

BucketKey = Tuple[str, str]
Generation = Tuple[int, int]


@dataclass
class CacheStats:
    """Counters exposed to operators."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    entries: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "entries": self.entries,
        }


@dataclass(frozen=True)
class CachedContext:
    """A resolved context and the window in which it may be served."""

    context: TenantContext
    cached_at: float
    expires_at: float


@dataclass
class _Bucket:
    decisions: Dict[Tuple[str, str], PermissionCacheEntry] = field(default_factory=dict)
    context: Optional[CachedContext] = None
    generation: int = 0

    def size(self) -> int:
        return len(self.decisions) + (1 if self.context is not None else 0)


class PermissionCache:
    """
    Thread-safe TTL cache of authorization decisions and resolved contexts.

    Every invalidation bumps a generation counter. Callers capture the
    generation before a store lookup and pass it back on ``put``; a fill
    that raced an invalidation is dropped instead of resurrecting stale data.

    Buckets exist only for pairs that hold cached data. Invalidating a pair
    or tenant without a bucket bumps the cache-wide epoch instead, which
    fences in-flight fills without allocating anything.
    """

    def __init__(
        self,
        ttl_seconds: float = 30.0,
        context_ttl_seconds: Optional[float] = None,
        stripes: int = 16,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if stripes < 1:
            raise ValueError("stripes must be at least 1")
        self._ttl = ttl_seconds
        self._context_ttl = ttl_seconds if context_ttl_seconds is None else context_ttl_seconds
        self._clock = clock
        self._locks = [threading.Lock() for _ in range(stripes)]
        self._stripes: list[Dict[BucketKey, _Bucket]] = [{} for _ in range(stripes)]
        self._epoch = 0
        self._epoch_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._stats = CacheStats()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def get(
        self,
        tenant_id: str,
        actor_id: str,
        resource: str,
        action: str,
        max_age: Optional[float] = None,
    ) -> Optional[PermissionCacheEntry]:
        """
        Return a live cached decision.

        Args:
            max_age: Additionally reject entries older than this many seconds

        Returns:
            The entry, or None on miss, expiry or staleness
        """
        now = self._clock()
        index, key = self._locate(tenant_id, actor_id)
        with self._locks[index]:
            bucket = self._stripes[index].get(key)
            entry = bucket.decisions.get((resource, action)) if bucket else None
            if entry is not None and entry.is_expired(now):
                del bucket.decisions[(resource, action)]
                self._count(misses=1, evictions=1)
                return None
        if entry is None or (max_age is not None and entry.age(now) > max_age):
            self._count(misses=1)
            return None
        self._count(hits=1)
        return entry

    def put(
        self,
        tenant_id: str,
        actor_id: str,
        resource: str,
        action: str,
        decision: bool,
        generation: Optional[Generation] = None,
        cached_at: Optional[float] = None,
        expires_at: Optional[float] = None,
    ) -> Optional[PermissionCacheEntry]:
        """
        Store a decision.

        Args:
            generation: Snapshot taken before the data was read; a mismatch
                drops the fill
            cached_at: When the underlying data was read (defaults to now)
            expires_at: Upper bound on the entry's expiry, e.g. the expiry
                of the context the decision was derived from

        Returns:
            The entry, or None when the fill lost a race with an invalidation
        """
        now = self._clock()
        read_at = now if cached_at is None else cached_at
        expiry = read_at + self._ttl
        if expires_at is not None:
            expiry = min(expiry, expires_at)
        entry = PermissionCacheEntry(
            tenant_id=tenant_id,
            actor_id=actor_id,
            resource=resource,
            action=action,
            decision=decision,
            cached_at=read_at,
            expires_at=expiry,
        )
        if entry.is_expired(now):
            return None

        index, key = self._locate(tenant_id, actor_id)
        with self._locks[index]:
            stripe = self._stripes[index]
            if generation is not None and generation != self._generation_of(stripe.get(key)):
                return None
            stripe.setdefault(key, _Bucket()).decisions[(resource, action)] = entry
        return entry

    # ------------------------------------------------------------------
    # Contexts
    # ------------------------------------------------------------------

    def get_context(
        self, tenant_id: str, actor_id: str, max_age: Optional[float] = None
    ) -> Optional[TenantContext]:
        cached = self.get_context_entry(tenant_id, actor_id, max_age=max_age)
        return cached.context if cached is not None else None

    def get_context_entry(
        self, tenant_id: str, actor_id: str, max_age: Optional[float] = None
    ) -> Optional[CachedContext]:
        """Like ``get_context`` but also returns when the context was read and when it expires."""
        now = self._clock()
        index, key = self._locate(tenant_id, actor_id)
        with self._locks[index]:
            bucket = self._stripes[index].get(key)
            cached = bucket.context if bucket else None
            if cached is not None and now >= cached.expires_at:
                bucket.context = None
                self._count(misses=1, evictions=1)
                return None
        if cached is None or (max_age is not None and now - cached.cached_at > max_age):
            self._count(misses=1)
            return None
        self._count(hits=1)
        return cached

    def put_context(self, context: TenantContext, generation: Optional[Generation] = None) -> bool:
        now = self._clock()
        index, key = self._locate(context.tenant_id, context.actor_id)
        with self._locks[index]:
            stripe = self._stripes[index]
            if generation is not None and generation != self._generation_of(stripe.get(key)):
                return False
            stripe.setdefault(key, _Bucket()).context = CachedContext(
                context=context, cached_at=now, expires_at=now + self._context_ttl
            )
        return True

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def generation(self, tenant_id: str, actor_id: str) -> Generation:
        """Snapshot to pass back to ``put`` after a store lookup."""
        index, key = self._locate(tenant_id, actor_id)
        with self._locks[index]:
            return self._generation_of(self._stripes[index].get(key))

    def invalidate(self, tenant_id: str, actor_id: str) -> int:
        """Evict every entry of one (tenant, actor) bucket. Returns the number evicted."""
        index, key = self._locate(tenant_id, actor_id)
        with self._locks[index]:
            bucket = self._stripes[index].get(key)
            if bucket is None:
                self._bump_epoch()
                return 0
            evicted = bucket.size()
            bucket.decisions.clear()
            bucket.context = None
            bucket.generation += 1
        self._count(evictions=evicted)
        return evicted

    def invalidate_tenant(self, tenant_id: str) -> int:
        """Evict every entry of every actor in a tenant."""
        # Covers fills in flight for actors that have no bucket yet.
        self._bump_epoch()

        evicted = 0
        for index, stripe in enumerate(self._stripes):
            with self._locks[index]:
                for (bucket_tenant, _), bucket in stripe.items():
                    if bucket_tenant != tenant_id:
                        continue
                    evicted += bucket.size()
                    bucket.decisions.clear()
                    bucket.context = None
                    bucket.generation += 1
        self._count(evictions=evicted)
        return evicted

    def clear(self) -> None:
        self._bump_epoch()
        for index, stripe in enumerate(self._stripes):
            with self._locks[index]:
                stripe.clear()

    def bucket_count(self) -> int:
        total = 0
        for index, stripe in enumerate(self._stripes):
            with self._locks[index]:
                total += len(stripe)
        return total

    def stats(self) -> CacheStats:
        entries = 0
        for index, stripe in enumerate(self._stripes):
            with self._locks[index]:
                entries += sum(bucket.size() for bucket in stripe.values())
        with self._stats_lock:
            return CacheStats(
                hits=self._stats.hits,
                misses=self._stats.misses,
                evictions=self._stats.evictions,
                entries=entries,
            )

    # ------------------------------------------------------------------

    def _locate(self, tenant_id: str, actor_id: str) -> Tuple[int, BucketKey]:
        key = (tenant_id, actor_id)
        return hash(key) % len(self._locks), key

    def _generation_of(self, bucket: Optional[_Bucket]) -> Generation:
        with self._epoch_lock:
            return self._epoch, bucket.generation if bucket is not None else 0

    def _bump_epoch(self) -> None:
        with self._epoch_lock:
            self._epoch += 1

    def _count(self, hits: int = 0, misses: int = 0, evictions: int = 0) -> None:
        with self._stats_lock:
            self._stats.hits += hits
            self._stats.misses += misses
            self._stats.evictions += evictions
