"""Events consumed by the orchestration core."""
from .invalidation_events import CacheInvalidationEvent, PermissionInvalidationEvent

__all__ = [
    "CacheInvalidationEvent",
    "PermissionInvalidationEvent",
]
