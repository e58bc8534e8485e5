"""Application services."""
from .aggregation_service import AggregationCache
from .classifier import Classification, ClassifiedRequest, RequestClassifier, RouteRule
from .execution_service import ExecutionStatusService
from .gateway import Gateway, SubmissionResult
from .permission_cache import CacheStats, PermissionCache
from .permission_service import PermissionContextService

__all__ = [
    "AggregationCache",
    "CacheStats",
    "Classification",
    "ClassifiedRequest",
    "ExecutionStatusService",
    "Gateway",
    "PermissionCache",
    "PermissionContextService",
    "RequestClassifier",
    "RouteRule",
    "SubmissionResult",
]
