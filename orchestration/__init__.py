"""Orchestration layer - durable workflow execution with retry and compensation."""

from .activities import ActivityAdapter, ActivityFn, AdapterRegistry
from .bus import ALL_EVENTS, EventBusProtocol, InMemoryEventBus
from .catalog import BUILTIN_WORKFLOWS, build_default_registry
from .dispatcher import WorkflowDispatcher
from .events import Event, EventMetadata
from .models import StepResult
from .saga import SagaCoordinator
from .worker import WorkerPool
from .workflow import RetryPolicy, WorkflowDefinition, WorkflowRegistry, WorkflowStep, pass_payload

__all__ = [
    "ALL_EVENTS",
    "ActivityAdapter",
    "ActivityFn",
    "AdapterRegistry",
    "BUILTIN_WORKFLOWS",
    "Event",
    "EventBusProtocol",
    "EventMetadata",
    "InMemoryEventBus",
    "RetryPolicy",
    "SagaCoordinator",
    "StepResult",
    "WorkerPool",
    "WorkflowDefinition",
    "WorkflowDispatcher",
    "WorkflowRegistry",
    "WorkflowStep",
    "build_default_registry",
    "pass_payload",
]
