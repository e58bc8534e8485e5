"""Orchestration events - Event, EventMetadata."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class EventMetadata:
    """Metadata for an event."""

    execution_id: str
    tenant_id: str
    operation_type: str
    timestamp: datetime
    idempotency_key: str = ""


@dataclass
class Event:
    """Lifecycle event of a workflow execution."""

    name: str
    payload: dict[str, object]
    metadata: EventMetadata
