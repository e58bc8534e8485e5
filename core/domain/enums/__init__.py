"""Domain enums."""

from .execution_status import (
    TERMINAL_STATUSES,
    CompensationStatus,
    ExecutionStatus,
    OperationKind,
)

__all__ = [
    "TERMINAL_STATUSES",
    "CompensationStatus",
    "ExecutionStatus",
    "OperationKind",
]
