"""
Invalidation events consumed from the platform event source.

Both events are safe to receive twice or not at all: eviction is
idempotent and TTL expiry covers lost events.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from tenantflow_sdk.utils.datetime import utc_now


@dataclass(frozen=True)
class PermissionInvalidationEvent:
    """A role or permission mutation for a tenant (and optionally one actor)."""

    tenant_id: str
    actor_id: Optional[str] = None
    reason: str = ""
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "actor_id": self.actor_id or "",
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PermissionInvalidationEvent":
        """
        Build from a stream message or JSON body.

        Raises:
            ValueError: If ``tenant_id`` is missing
        """
        tenant_id = data.get("tenant_id")
        if not tenant_id:
            raise ValueError("Permission invalidation event requires tenant_id")

        raw_ts = data.get("timestamp")
        if isinstance(raw_ts, datetime):
            timestamp = raw_ts
        elif raw_ts:
            timestamp = datetime.fromisoformat(raw_ts)
        else:
            timestamp = utc_now()

        return cls(
            tenant_id=tenant_id,
            actor_id=data.get("actor_id") or None,
            reason=data.get("reason", ""),
            timestamp=timestamp,
        )


@dataclass(frozen=True)
class CacheInvalidationEvent:
    """Drop every aggregation entry whose key starts with the prefix."""

    cache_key_prefix: str

    def to_dict(self) -> Dict[str, Any]:
        return {"cache_key_prefix": self.cache_key_prefix}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheInvalidationEvent":
        prefix = data.get("cache_key_prefix")
        if not prefix:
            raise ValueError("Cache invalidation event requires cache_key_prefix")
        return cls(cache_key_prefix=prefix)
