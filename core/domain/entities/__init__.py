"""Domain entities."""

from .activity_invocation import ActivityInvocation, CompensationRecord
from .cache_entries import CacheEntry, PermissionCacheEntry
from .operation_request import OperationRequest
from .tenant_context import TenantContext
from .workflow_execution import TerminalExecutionError, WorkflowExecution

__all__ = [
    "ActivityInvocation",
    "CacheEntry",
    "CompensationRecord",
    "OperationRequest",
    "PermissionCacheEntry",
    "TenantContext",
    "TerminalExecutionError",
    "WorkflowExecution",
]
