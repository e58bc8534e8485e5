"""
Execution Status Service.

Read side of the orchestration core: status, history, cancellation and
operator listings. Every read returns the last persisted state and never
waits on a running execution.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Iterable, List, Optional, Tuple

from core.application.dtos.execution_dto import (
    CancelResultDTO,
    CompensationDTO,
    ExecutionHistoryDTO,
    ExecutionStatusDTO,
    InvocationDTO,
)
from core.application.interfaces import IAlertService, IExecutionBackend
from core.application.services.permission_service import PermissionContextService
from core.domain.entities import TenantContext, WorkflowExecution
from core.domain.enums import ExecutionStatus
from core.domain.exceptions import AuthorizationError, ExecutionNotFoundError
from core.domain.value_objects import ExecutionID
from tenantflow_sdk.utils.datetime import utc_now

if TYPE_CHECKING:
    from orchestration.workflow import WorkflowRegistry

logger = logging.getLogger(__name__)

# Required to cancel an execution whose workflow is no longer registered.
CANCEL_FALLBACK_PERMISSION = ("executions", "cancel")


@dataclass(frozen=True)
class OverdueExecution:
    """A non-terminal execution past the advisory maximum age."""

    execution: WorkflowExecution
    age_seconds: float


class ExecutionStatusService:
    """Status & observability API over the execution backend."""

    def __init__(
        self,
        backend: IExecutionBackend,
        permission_service: PermissionContextService,
        workflows: "WorkflowRegistry",
        alert_service: Optional[IAlertService] = None,
        max_execution_age_seconds: float = 3600.0,
    ) -> None:
        """Initialize status service.

        Args:
            backend: Durable execution backend
            permission_service: Resolves and checks the caller's tenant context
            workflows: Registered workflows; cancelling needs the same
                permission as submitting
            alert_service: Receives over-age alerts
            max_execution_age_seconds: Advisory maximum age of an execution
        """
        self._backend = backend
        self._permissions = permission_service
        self._workflows = workflows
        self._alerts = alert_service
        self._max_age = timedelta(seconds=max_execution_age_seconds)

    async def get_status(self, execution_id: str, tenant_id: str, actor_id: str) -> ExecutionStatusDTO:
        """Get the status of an execution.

        Args:
            execution_id: Execution id string
            tenant_id: Caller's tenant; executions of other tenants are
                reported as not found
            actor_id: Caller; must be a member of ``tenant_id``

        Returns:
            ExecutionStatusDTO

        Raises:
            AuthorizationError: The caller's context could not be resolved
            ExecutionNotFoundError: Unknown, malformed or foreign id
        """
        _, execution = await self._load(execution_id, tenant_id, actor_id)
        return ExecutionStatusDTO.from_execution(execution)

    async def get_history(self, execution_id: str, tenant_id: str, actor_id: str) -> ExecutionHistoryDTO:
        """Get status plus invocation log and compensation records."""
        _, execution = await self._load(execution_id, tenant_id, actor_id)
        invocations = await self._backend.list_invocations(execution.execution_id)
        compensations = await self._backend.list_compensations(execution.execution_id)
        return ExecutionHistoryDTO(
            status=ExecutionStatusDTO.from_execution(execution),
            invocations=[InvocationDTO.from_invocation(i) for i in invocations],
            compensations=[CompensationDTO.from_record(c) for c in compensations],
        )

    async def cancel(self, execution_id: str, tenant_id: str, actor_id: str) -> CancelResultDTO:
        """Request cancellation.

        The caller needs the permission that submitting the workflow
        requires. Rejected for terminal executions. A PENDING execution that
        no worker holds is cancelled at once; otherwise the flag is honored
        at the next step boundary.

        Raises:
            AuthorizationError: Context unresolvable (unauthorized) or the
                caller may not run this workflow (forbidden)
            ExecutionNotFoundError: Unknown, malformed or foreign id
        """
        context, execution = await self._load(execution_id, tenant_id, actor_id)
        await self._authorize_cancel(context, execution)

        if execution.is_terminal:
            return CancelResultDTO(
                execution_id=str(execution.execution_id),
                accepted=False,
                status=execution.status.value,
                reason=f"Execution already {execution.status.value}",
            )

        updated = await self._backend.request_cancel(execution.execution_id)
        if updated is None:
            raise ExecutionNotFoundError(execution_id)

        if updated.is_terminal and updated.status != ExecutionStatus.CANCELLED:
            return CancelResultDTO(
                execution_id=str(updated.execution_id),
                accepted=False,
                status=updated.status.value,
                reason=f"Execution already {updated.status.value}",
            )

        logger.info(f"Cancellation of {execution_id} accepted from {actor_id} (status={updated.status.value})")
        return CancelResultDTO(
            execution_id=str(updated.execution_id),
            accepted=True,
            status=updated.status.value,
        )

    async def list_executions(
        self,
        tenant_id: Optional[str] = None,
        statuses: Optional[Iterable[ExecutionStatus]] = None,
        limit: int = 100,
    ) -> List[ExecutionStatusDTO]:
        executions = await self._backend.list_executions(tenant_id=tenant_id, statuses=statuses, limit=limit)
        return [ExecutionStatusDTO.from_execution(e) for e in executions]

    async def find_overdue(self, max_age_seconds: Optional[float] = None) -> List[OverdueExecution]:
        """Non-terminal executions older than the advisory maximum age. Read-only."""
        max_age = timedelta(seconds=max_age_seconds) if max_age_seconds is not None else self._max_age
        now = utc_now()
        active = [s for s in ExecutionStatus if not s.is_terminal]
        executions = await self._backend.list_executions(statuses=active, limit=10_000)
        return [
            OverdueExecution(execution=e, age_seconds=(now - e.started_at).total_seconds())
            for e in executions
            if now - e.started_at > max_age
        ]

    async def check_overdue(self, max_age_seconds: Optional[float] = None) -> List[OverdueExecution]:
        """Alert on every over-age execution. Executions are never terminated.

        Returns:
            The over-age executions that were alerted
        """
        overdue = await self.find_overdue(max_age_seconds)
        for item in overdue:
            logger.warning(f"Execution {item.execution.execution_id} is over age ({item.age_seconds:.0f}s)")
            if self._alerts is not None:
                await self._alerts.send_overdue_execution(item.execution, item.age_seconds)
        return overdue

    async def _load(
        self, execution_id: str, tenant_id: str, actor_id: str
    ) -> Tuple[TenantContext, WorkflowExecution]:
        if not tenant_id or not actor_id:
            raise AuthorizationError("Tenant and actor are required", AuthorizationError.UNAUTHORIZED)
        context = await self._permissions.resolve(actor_id, tenant_id)

        try:
            parsed = ExecutionID.parse(execution_id)
        except ValueError:
            raise ExecutionNotFoundError(execution_id, f"Malformed execution id: {execution_id}") from None

        execution = await self._backend.get(parsed)
        if execution is None or execution.tenant_id != context.tenant_id:
            raise ExecutionNotFoundError(execution_id)
        return context, execution

    async def _authorize_cancel(self, context: TenantContext, execution: WorkflowExecution) -> None:
        if execution.operation_type in self._workflows:
            definition = self._workflows.get(execution.operation_type)
            resource, action, high = definition.resource, definition.action, definition.high_privilege
        else:
            (resource, action), high = CANCEL_FALLBACK_PERMISSION, False

        if not await self._permissions.authorize(context, resource, action, high_privilege=high):
            logger.warning(
                f"Denied cancel of {execution.execution_id}: actor {context.actor_id} "
                f"lacks {resource}:{action} in tenant {context.tenant_id}"
            )
            raise AuthorizationError(f"Actor {context.actor_id} may not cancel {execution.operation_type}")
