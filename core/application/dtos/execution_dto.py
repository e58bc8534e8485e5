"""
Execution DTOs.

Read models returned by the status service. Built from the last persisted
state; never hold a reference to the live aggregate.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.domain.entities import ActivityInvocation, CompensationRecord, WorkflowExecution


@dataclass
class ExecutionStatusDTO:
    """Status snapshot of one execution."""

    execution_id: str
    tenant_id: str
    operation_type: str
    status: str
    step_cursor: int
    started_at: datetime
    updated_at: datetime
    finished_at: Optional[datetime] = None
    result: Any = None
    last_error: Optional[str] = None
    failed_step: Optional[int] = None
    compensation_status: Optional[str] = None
    compensation_error: Optional[str] = None
    cancel_requested: bool = False

    @classmethod
    def from_execution(cls, execution: WorkflowExecution) -> "ExecutionStatusDTO":
        """Create ExecutionStatusDTO from an execution."""
        return cls(
            execution_id=str(execution.execution_id),
            tenant_id=execution.tenant_id,
            operation_type=execution.operation_type,
            status=execution.status.value,
            step_cursor=execution.step_cursor,
            started_at=execution.started_at,
            updated_at=execution.updated_at,
            finished_at=execution.finished_at,
            result=execution.result,
            last_error=execution.last_error,
            failed_step=execution.failed_step,
            compensation_status=(
                execution.compensation_status.value if execution.compensation_status else None
            ),
            compensation_error=execution.compensation_error,
            cancel_requested=execution.cancel_requested,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "tenant_id": self.tenant_id,
            "operation_type": self.operation_type,
            "status": self.status,
            "step_cursor": self.step_cursor,
            "started_at": self.started_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "result": self.result,
            "last_error": self.last_error,
            "failed_step": self.failed_step,
            "compensation_status": self.compensation_status,
            "compensation_error": self.compensation_error,
            "cancel_requested": self.cancel_requested,
        }


@dataclass
class InvocationDTO:
    step_index: int
    adapter_name: str
    attempt: int
    outcome: str
    error: Optional[str]
    is_compensation: bool
    started_at: datetime
    finished_at: Optional[datetime]

    @classmethod
    def from_invocation(cls, invocation: ActivityInvocation) -> "InvocationDTO":
        return cls(
            step_index=invocation.step_index,
            adapter_name=invocation.adapter_name,
            attempt=invocation.attempt,
            outcome=invocation.outcome,
            error=invocation.error,
            is_compensation=invocation.is_compensation,
            started_at=invocation.started_at,
            finished_at=invocation.finished_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_index": self.step_index,
            "adapter_name": self.adapter_name,
            "attempt": self.attempt,
            "outcome": self.outcome,
            "error": self.error,
            "is_compensation": self.is_compensation,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class CompensationDTO:
    step_index: int
    adapter_name: str
    status: str
    attempts: int
    error: Optional[str]

    @classmethod
    def from_record(cls, record: CompensationRecord) -> "CompensationDTO":
        return cls(
            step_index=record.step_index,
            adapter_name=record.adapter_name,
            status=record.status.value,
            attempts=record.attempts,
            error=record.error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_index": self.step_index,
            "adapter_name": self.adapter_name,
            "status": self.status,
            "attempts": self.attempts,
            "error": self.error,
        }


@dataclass
class ExecutionHistoryDTO:
    """Status plus the full invocation log and compensation records."""

    status: ExecutionStatusDTO
    invocations: List[InvocationDTO] = field(default_factory=list)
    compensations: List[CompensationDTO] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution": self.status.to_dict(),
            "invocations": [i.to_dict() for i in self.invocations],
            "compensations": [c.to_dict() for c in self.compensations],
        }


@dataclass
class CancelResultDTO:
    """Answer to a cancellation request."""

    execution_id: str
    accepted: bool
    status: str
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "result": "accepted" if self.accepted else "rejected",
            "status": self.status,
            "reason": self.reason,
        }
