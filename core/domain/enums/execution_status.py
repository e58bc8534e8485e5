"""
Execution Status Enums.

State values for executions, compensations and request classification.
"""
from enum import Enum


class ExecutionStatus(str, Enum):
    """Lifecycle states of a workflow execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPENSATING = "compensating"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
)


class CompensationStatus(str, Enum):
    """Status of a single compensation record or of the whole rollback."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class OperationKind(str, Enum):
    """Classifier verdict for an inbound operation."""

    SIMPLE = "simple"
    COMPLEX = "complex"
