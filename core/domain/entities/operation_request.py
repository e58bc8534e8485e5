"""Inbound operation request."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class OperationRequest:
    """
    An operation submitted to the gateway.

    Immutable: the payload is frozen into a read-only mapping on creation.
    """

    method: str
    path: str
    tenant_id: str
    actor_id: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    idempotency_key: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    def payload_dict(self) -> dict:
        """Return a mutable copy of the payload."""
        return dict(self.payload)
