"""Execution identity value object."""

from dataclasses import dataclass
from uuid import UUID, uuid4, uuid5

# Fixed namespace so that ids derived from idempotency keys are stable
# across processes and restarts.
EXECUTION_NAMESPACE = UUID("6f1c2a9e-4b7d-5e0f-9a3c-2d8b1e7f4c60")


@dataclass(frozen=True)
class ExecutionID:
    """Unique identifier for a workflow execution."""

    value: UUID

    @classmethod
    def generate(cls) -> "ExecutionID":
        """Generate a random ExecutionID (used when no key is supplied)."""
        return cls(value=uuid4())

    @classmethod
    def from_idempotency_key(cls, tenant_id: str, idempotency_key: str) -> "ExecutionID":
        """
        Derive a stable ExecutionID from the caller's idempotency key.

        The tenant id is part of the name so two tenants using the same key
        never collide.
        """
        return cls(value=uuid5(EXECUTION_NAMESPACE, f"{tenant_id}:{idempotency_key}"))

    @classmethod
    def parse(cls, raw: str) -> "ExecutionID":
        """Parse a string id. Raises ValueError on malformed input."""
        return cls(value=UUID(raw))

    def __str__(self) -> str:
        """Return string representation."""
        return str(self.value)
