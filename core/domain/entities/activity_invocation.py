"""Append-only records written by the saga coordinator."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from core.domain.enums.execution_status import CompensationStatus
from core.domain.value_objects.execution_id import ExecutionID
from tenantflow_sdk.utils.datetime import utc_now


@dataclass(frozen=True)
class ActivityInvocation:
    """One attempt of one step (or of one compensation)."""

    execution_id: ExecutionID
    tenant_id: str
    step_index: int
    adapter_name: str
    input: Dict[str, Any]
    attempt: int
    retry_policy: Dict[str, Any]
    outcome: str
    error: Optional[str] = None
    is_compensation: bool = False
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime = field(default_factory=utc_now)


@dataclass
class CompensationRecord:
    """Rollback bookkeeping for one previously-succeeded step."""

    execution_id: ExecutionID
    tenant_id: str
    step_index: int
    adapter_name: str
    status: CompensationStatus = CompensationStatus.PENDING
    attempts: int = 0
    error: Optional[str] = None
    updated_at: datetime = field(default_factory=utc_now)
