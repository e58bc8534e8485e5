"""Authorization store adapters."""
from .memory_store import InMemoryAuthorizationStore

__all__ = ["InMemoryAuthorizationStore"]
