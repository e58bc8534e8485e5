"""Saga coordinator - drives one execution through its steps with retry and compensation."""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from core.application.interfaces import IAlertService, IExecutionBackend
from core.domain.entities import ActivityInvocation, CompensationRecord, WorkflowExecution
from core.domain.enums import CompensationStatus, ExecutionStatus
from core.domain.exceptions import (
    AuthorizationError,
    ClassificationError,
    CompensationError,
    FatalActivityError,
    RetryableActivityError,
)
from core.domain.value_objects import FatalFailure, RetryableFailure, Success
from tenantflow_sdk.logging import get_logger
from tenantflow_sdk.utils.datetime import utc_now

from .activities import AdapterRegistry
from .bus import EventBusProtocol, InMemoryEventBus
from .events import Event, EventMetadata
from .models import StepResult
from .workflow import RetryPolicy, WorkflowDefinition, WorkflowRegistry, WorkflowStep

if TYPE_CHECKING:
    from core.application.services.permission_service import PermissionContextService

TIMEOUT_OUTCOME = "timeout"


class SagaCoordinator:
    """
    Runs the declared steps of a workflow execution.

    The coordinator is a state machine over the persisted step cursor: it
    never keeps progress in memory between calls, so any worker can resume
    an execution from where the last one stopped.
    """

    def __init__(
        self,
        backend: IExecutionBackend,
        workflows: WorkflowRegistry,
        adapters: AdapterRegistry,
        permission_service: "PermissionContextService",
        event_bus: EventBusProtocol | None = None,
        alert_service: IAlertService | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize coordinator.

        Args:
            backend: Durable execution backend
            workflows: Registered workflow definitions
            adapters: Registered activity adapters
            permission_service: Tenant context resolution and authorization
            event_bus: Lifecycle event bus
            alert_service: Operator alerting for rollback failures
            sleep: Backoff sleep (injected by tests)
        """
        self._backend = backend
        self._workflows = workflows
        self._adapters = adapters
        self._permissions = permission_service
        self._event_bus = event_bus or InMemoryEventBus()
        self._alerts = alert_service
        self._sleep = sleep
        self._logger = get_logger("orchestration.saga")

    async def run(self, execution: WorkflowExecution) -> WorkflowExecution:
        """Drive a claimed execution as far as it can go.

        Args:
            execution: Execution claimed by the calling worker

        Returns:
            The execution in its last persisted state
        """
        if execution.is_terminal:
            return execution

        try:
            definition = self._workflows.get(execution.operation_type)
        except ClassificationError as exc:
            execution.fail(exc.message)
            await self._backend.save(execution)
            await self._publish("execution.failed", execution, {"error": exc.message})
            return execution

        if execution.status == ExecutionStatus.COMPENSATING:
            self._logger.info(f"[{execution.execution_id}] resuming compensation")
            return await self._compensate(execution, definition)

        if execution.status == ExecutionStatus.PENDING:
            execution.mark_running()
            await self._backend.save(execution)
            await self._publish(
                "execution.started",
                execution,
                {"operation_type": execution.operation_type, "step_count": len(definition.steps)},
            )
            self._logger.info(
                f"[{execution.execution_id}] workflow_starting operation={execution.operation_type} "
                f"tenant={execution.tenant_id} steps={len(definition.steps)}"
            )

        for index in range(execution.step_cursor, len(definition.steps)):
            if await self._cancel_requested(execution):
                return await self._honor_cancel(execution, definition)

            step = definition.steps[index]

            try:
                await self._check_context(execution, definition)
            except AuthorizationError as exc:
                return await self._fail_and_compensate(
                    execution, definition, index, f"Tenant context invalid before step {step.name}: {exc.message}"
                )

            try:
                step_input = step.input_transform(dict(execution.payload), list(execution.step_outputs[:index]))
            except Exception as exc:
                return await self._fail_and_compensate(
                    execution, definition, index, f"Could not build input for step {step.name}: {exc}"
                )

            await self._publish("execution.step.started", execution, {"step": step.name, "step_index": index})
            result = await self._invoke_with_retry(
                execution, index, step.name, step.adapter, step_input, step.retry_policy, is_compensation=False
            )

            if not result.success:
                self._logger.warning(
                    f"[{execution.execution_id}] step_failed step={step.name} "
                    f"attempts={result.attempts} fatal={result.fatal} error={result.error}"
                )
                await self._publish(
                    "execution.step.failed",
                    execution,
                    {"step": step.name, "step_index": index, "attempts": result.attempts, "error": result.error},
                )
                return await self._fail_and_compensate(execution, definition, index, result.error)

            execution.record_step_success(result.output)
            await self._backend.save(execution)
            await self._publish(
                "execution.step.succeeded",
                execution,
                {"step": step.name, "step_index": index, "attempts": result.attempts},
            )

        # The last step has been acknowledged; a cancel that arrived while it
        # was in flight is honored now, before completion.
        if await self._cancel_requested(execution):
            return await self._honor_cancel(execution, definition)

        execution.complete(definition.build_result(execution.step_outputs))
        await self._backend.save(execution)
        await self._publish("execution.completed", execution, {"step_count": len(definition.steps)})
        self._logger.info(
            f"[{execution.execution_id}] workflow_finished status=completed "
            f"duration_ms={_duration_ms(execution)}"
        )
        return execution

    # ------------------------------------------------------------------
    # Step execution
    # ------------------------------------------------------------------

    async def _invoke_with_retry(
        self,
        execution: WorkflowExecution,
        step_index: int,
        step_name: str,
        adapter_name: str,
        input_: dict[str, Any],
        policy: RetryPolicy,
        is_compensation: bool,
    ) -> StepResult:
        """Invoke one adapter under its retry policy, logging every attempt."""
        started = time.monotonic()

        try:
            adapter = self._adapters.get(adapter_name)
        except LookupError as exc:
            return StepResult(
                name=step_name, step_index=step_index, success=False, attempts=0,
                duration_ms=0, error=str(exc), fatal=True,
            )

        last_error: str | None = None
        attempt = 0

        for attempt in range(1, policy.max_attempts + 1):
            attempt_started_at = utc_now()
            outcome_kind = None

            try:
                outcome = await asyncio.wait_for(
                    adapter(execution.tenant_id, execution.execution_id, step_index, dict(input_)),
                    timeout=policy.attempt_timeout_seconds,
                )
            except asyncio.TimeoutError:
                outcome = RetryableFailure(f"Attempt timed out after {policy.attempt_timeout_seconds}s")
                outcome_kind = TIMEOUT_OUTCOME
            except RetryableActivityError as exc:
                outcome = RetryableFailure(exc.message)
            except FatalActivityError as exc:
                outcome = FatalFailure(exc.message)
            except Exception as exc:
                outcome = RetryableFailure(f"{type(exc).__name__}: {exc}")

            if not isinstance(outcome, (Success, RetryableFailure, FatalFailure)):
                outcome = FatalFailure(f"Adapter {adapter_name} returned {type(outcome).__name__}, not an Outcome")

            await self._backend.append_invocation(
                ActivityInvocation(
                    execution_id=execution.execution_id,
                    tenant_id=execution.tenant_id,
                    step_index=step_index,
                    adapter_name=adapter_name,
                    input=dict(input_),
                    attempt=attempt,
                    retry_policy=policy.to_dict(),
                    outcome=outcome_kind or outcome.kind,
                    error=None if isinstance(outcome, Success) else outcome.reason,
                    is_compensation=is_compensation,
                    started_at=attempt_started_at,
                    finished_at=utc_now(),
                )
            )

            if isinstance(outcome, Success):
                return StepResult(
                    name=step_name, step_index=step_index, success=True, attempts=attempt,
                    duration_ms=_elapsed_ms(started), output=outcome.value,
                )

            last_error = outcome.reason
            self._logger.warning(
                f"[{execution.execution_id}] step_attempt_failed adapter={adapter_name} "
                f"attempt={attempt}/{policy.max_attempts} error={last_error}"
            )

            if isinstance(outcome, FatalFailure):
                return StepResult(
                    name=step_name, step_index=step_index, success=False, attempts=attempt,
                    duration_ms=_elapsed_ms(started), error=last_error, fatal=True,
                )

            if attempt < policy.max_attempts:
                delay = policy.delay_for(attempt)
                if delay > 0:
                    await self._sleep(delay)

        return StepResult(
            name=step_name, step_index=step_index, success=False, attempts=attempt,
            duration_ms=_elapsed_ms(started), error=last_error or "Unknown error",
        )

    async def _check_context(self, execution: WorkflowExecution, definition: WorkflowDefinition) -> None:
        """
        Re-resolve the tenant context before a step.

        High-privilege operations are re-authorized against the store on every
        step; others use the cached decision.

        Raises:
            AuthorizationError: If the context is gone or no longer authorized
        """
        context = await self._permissions.resolve(
            execution.actor_id, execution.tenant_id, fresh=definition.high_privilege
        )
        if context.tenant_id != execution.tenant_id:
            raise AuthorizationError("Resolved context belongs to another tenant", AuthorizationError.UNAUTHORIZED)

        allowed = await self._permissions.authorize(
            context, definition.resource, definition.action, high_privilege=definition.high_privilege
        )
        if not allowed:
            raise AuthorizationError(
                f"Actor {execution.actor_id} may no longer {definition.action} {definition.resource}"
            )

    # ------------------------------------------------------------------
    # Compensation
    # ------------------------------------------------------------------

    async def _fail_and_compensate(
        self,
        execution: WorkflowExecution,
        definition: WorkflowDefinition,
        failed_index: int,
        error: str | None,
    ) -> WorkflowExecution:
        execution.begin_compensation(error, failed_index)
        await self._backend.save(execution)
        await self._publish(
            "execution.compensating", execution, {"failed_step": failed_index, "error": error}
        )
        return await self._compensate(execution, definition)

    async def _honor_cancel(self, execution: WorkflowExecution, definition: WorkflowDefinition) -> WorkflowExecution:
        """Cancel at a step boundary, rolling back steps that already succeeded."""
        self._logger.info(f"[{execution.execution_id}] cancellation honored at step {execution.step_cursor}")

        if not _compensable_indices(definition, execution.step_cursor):
            execution.cancel()
            await self._backend.save(execution)
            await self._publish("execution.cancelled", execution, {"step_cursor": execution.step_cursor})
            return execution

        execution.begin_compensation(None, None)
        await self._backend.save(execution)
        await self._publish("execution.compensating", execution, {"reason": "cancelled"})
        return await self._compensate(execution, definition)

    async def _compensate(self, execution: WorkflowExecution, definition: WorkflowDefinition) -> WorkflowExecution:
        """
        Run compensations for every succeeded step in strict reverse order.

        Stops at the first compensation that exhausts its retries; the
        remaining records are marked SKIPPED for manual repair.
        """
        existing = {r.step_index: r for r in await self._backend.list_compensations(execution.execution_id)}
        pending = _compensable_indices(definition, execution.step_cursor)

        for position, index in enumerate(pending):
            step = definition.steps[index]
            record = existing.get(index) or CompensationRecord(
                execution_id=execution.execution_id,
                tenant_id=execution.tenant_id,
                step_index=index,
                adapter_name=step.compensation,
            )
            if record.status == CompensationStatus.COMPLETED:
                continue

            await self._backend.save_compensation(record)
            result = await self._invoke_with_retry(
                execution,
                index,
                step.name,
                step.compensation,
                _compensation_input(execution, step, index),
                step.compensation_retry_policy,
                is_compensation=True,
            )

            record.attempts += result.attempts
            record.updated_at = utc_now()

            if result.success:
                record.status = CompensationStatus.COMPLETED
                await self._backend.save_compensation(record)
                await self._publish(
                    "execution.compensation.succeeded", execution, {"step": step.name, "step_index": index}
                )
                continue

            record.status = CompensationStatus.FAILED
            record.error = result.error
            await self._backend.save_compensation(record)
            await self._skip_remaining(execution, definition, pending[position + 1:], existing)

            failure = CompensationError(
                f"Compensation {step.compensation} for step {index} ({step.name}) failed "
                f"after {result.attempts} attempt(s): {result.error}",
                step_index=index,
                adapter_name=step.compensation,
            )
            execution.fail(
                error=None,
                compensation_status=CompensationStatus.FAILED,
                compensation_error=failure.message,
            )
            await self._backend.save(execution)
            await self._publish(
                "execution.compensation.failed",
                execution,
                {"step": step.name, "step_index": index, "error": failure.message},
            )
            self._logger.error(f"[{execution.execution_id}] rollback_failed {failure.message}")
            if self._alerts is not None:
                await self._alerts.send_compensation_failure(execution, index, step.compensation, failure.message)
            return execution

        if execution.error is None and execution.cancel_requested:
            execution.cancel(compensation_status=CompensationStatus.COMPLETED)
            await self._backend.save(execution)
            await self._publish("execution.cancelled", execution, {"compensation_status": "completed"})
        else:
            execution.fail(error=None, compensation_status=CompensationStatus.COMPLETED)
            await self._backend.save(execution)
            await self._publish(
                "execution.failed",
                execution,
                {"error": execution.error, "compensation_status": "completed"},
            )

        self._logger.info(
            f"[{execution.execution_id}] workflow_finished status={execution.status.value} "
            f"compensation=completed duration_ms={_duration_ms(execution)}"
        )
        return execution

    async def _skip_remaining(
        self,
        execution: WorkflowExecution,
        definition: WorkflowDefinition,
        indices: list[int],
        existing: dict[int, CompensationRecord],
    ) -> None:
        for index in indices:
            record = existing.get(index)
            if record is not None and record.status == CompensationStatus.COMPLETED:
                continue
            await self._backend.save_compensation(
                CompensationRecord(
                    execution_id=execution.execution_id,
                    tenant_id=execution.tenant_id,
                    step_index=index,
                    adapter_name=definition.steps[index].compensation,
                    status=CompensationStatus.SKIPPED,
                )
            )

    # ------------------------------------------------------------------

    async def _cancel_requested(self, execution: WorkflowExecution) -> bool:
        """Read the cancel flag from the last persisted state."""
        if execution.cancel_requested:
            return True
        stored = await self._backend.get(execution.execution_id)
        if stored is not None and stored.cancel_requested:
            execution.cancel_requested = True
        return execution.cancel_requested

    async def _publish(self, name: str, execution: WorkflowExecution, payload: dict[str, object]) -> None:
        metadata = EventMetadata(
            execution_id=str(execution.execution_id),
            tenant_id=execution.tenant_id,
            operation_type=execution.operation_type,
            timestamp=utc_now(),
            idempotency_key=execution.idempotency_key,
        )
        await self._event_bus.publish(Event(name=name, payload=payload, metadata=metadata))


def _compensable_indices(definition: WorkflowDefinition, succeeded: int) -> list[int]:
    """Indices of succeeded steps that declare a compensation, last first."""
    return [i for i in reversed(range(succeeded)) if definition.steps[i].compensation]


def _compensation_input(execution: WorkflowExecution, step: WorkflowStep, index: int) -> dict[str, Any]:
    return {
        "step_input": step.input_transform(dict(execution.payload), list(execution.step_outputs[:index])),
        "step_output": execution.step_outputs[index],
    }


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _duration_ms(execution: WorkflowExecution) -> int:
    end = execution.finished_at or utc_now()
    return int((end - execution.started_at).total_seconds() * 1000)
