"""Domain layer - pure domain models and the error taxonomy."""

from .entities import (
    ActivityInvocation,
    CompensationRecord,
    OperationRequest,
    TenantContext,
    WorkflowExecution,
)
from .enums import CompensationStatus, ExecutionStatus, OperationKind
from .value_objects import ExecutionID, FatalFailure, Outcome, Permission, RetryableFailure, Success

__all__ = [
    "ActivityInvocation",
    "CompensationRecord",
    "CompensationStatus",
    "ExecutionID",
    "ExecutionStatus",
    "FatalFailure",
    "OperationKind",
    "OperationRequest",
    "Outcome",
    "Permission",
    "RetryableFailure",
    "Success",
    "TenantContext",
    "WorkflowExecution",
]
