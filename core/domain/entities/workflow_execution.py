"""
Workflow Execution aggregate.

One durable run of a complex operation. Mutated only by the saga
coordinator through the execution backend, and frozen once it reaches a
terminal state.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.domain.enums.execution_status import CompensationStatus, ExecutionStatus
from core.domain.value_objects.execution_id import ExecutionID
from tenantflow_sdk.utils.datetime import utc_now


class TerminalExecutionError(ValueError):
    """Raised when a terminal execution is mutated."""


@dataclass
class WorkflowExecution:
    """Durable state of a complex operation."""

    execution_id: ExecutionID
    tenant_id: str
    actor_id: str
    operation_type: str
    idempotency_key: str
    payload: Dict[str, Any] = field(default_factory=dict)
    status: ExecutionStatus = ExecutionStatus.PENDING
    step_cursor: int = 0
    step_outputs: List[Any] = field(default_factory=list)
    started_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    result: Any = None
    error: Optional[str] = None
    failed_step: Optional[int] = None
    compensation_status: Optional[CompensationStatus] = None
    compensation_error: Optional[str] = None
    cancel_requested: bool = False
    lease_owner: Optional[str] = None
    lease_expires_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def last_error(self) -> Optional[str]:
        """The most operator-relevant error: rollback failure wins."""
        return self.compensation_error or self.error

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def mark_running(self) -> None:
        self._ensure_mutable()
        if self.status == ExecutionStatus.PENDING:
            self.status = ExecutionStatus.RUNNING
        self._touch()

    def record_step_success(self, output: Any) -> None:
        """Persist a step output and advance the cursor."""
        self._ensure_mutable()
        self.step_outputs.append(output)
        self.step_cursor += 1
        self._touch()

    def begin_compensation(self, error: Optional[str], failed_step: Optional[int]) -> None:
        self._ensure_mutable()
        self.status = ExecutionStatus.COMPENSATING
        self.error = error
        self.failed_step = failed_step
        self.compensation_status = CompensationStatus.PENDING
        self._touch()

    def complete(self, result: Any) -> None:
        self._ensure_mutable()
        self.status = ExecutionStatus.COMPLETED
        self.result = result
        self._finish()

    def fail(
        self,
        error: Optional[str],
        compensation_status: Optional[CompensationStatus] = None,
        compensation_error: Optional[str] = None,
    ) -> None:
        self._ensure_mutable()
        self.status = ExecutionStatus.FAILED
        if error is not None:
            self.error = error
        if compensation_status is not None:
            self.compensation_status = compensation_status
        self.compensation_error = compensation_error
        self._finish()

    def cancel(self, compensation_status: Optional[CompensationStatus] = None) -> None:
        self._ensure_mutable()
        self.status = ExecutionStatus.CANCELLED
        self.compensation_status = compensation_status
        self._finish()

    def request_cancel(self) -> None:
        self._ensure_mutable()
        self.cancel_requested = True
        self._touch()

    # ------------------------------------------------------------------

    def _ensure_mutable(self) -> None:
        if self.is_terminal:
            raise TerminalExecutionError(
                f"Execution {self.execution_id} is {self.status.value} and can no longer change"
            )

    def _touch(self) -> None:
        self.updated_at = utc_now()

    def _finish(self) -> None:
        self.finished_at = utc_now()
        self.updated_at = self.finished_at
