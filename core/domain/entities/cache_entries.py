"""Cache entry records for the permission cache and aggregation layer."""

from dataclasses import dataclass


@dataclass(frozen=True)
class PermissionCacheEntry:
    """A cached authorization decision. Never authoritative."""

    tenant_id: str
    actor_id: str
    resource: str
    action: str
    decision: bool
    cached_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def age(self, now: float) -> float:
        return now - self.cached_at


@dataclass(frozen=True)
class CacheEntry:
    """A serialized aggregation result."""

    key: str
    value: str
    etag: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at
