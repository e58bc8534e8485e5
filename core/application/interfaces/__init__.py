"""Application layer interfaces."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, FrozenSet, Iterable, List, Optional, Tuple

from core.domain.entities import (
    ActivityInvocation,
    CacheEntry,
    CompensationRecord,
    OperationRequest,
    TenantContext,
    WorkflowExecution,
)
from core.domain.enums import ExecutionStatus
from core.domain.value_objects import ExecutionID, Permission


class IExecutionBackend(ABC):
    """
    Contract the orchestration core requires from the durable execution
    substrate.

    The backend owns the authoritative history of every execution, the
    task queue that feeds workers, and the lease that guarantees a single
    worker per execution.
    """

    @abstractmethod
    async def create_if_absent(
        self, execution: WorkflowExecution
    ) -> Tuple[WorkflowExecution, bool]:
        """
        Atomically persist a new execution unless one with the same id exists.

        Args:
            execution: Freshly built PENDING execution

        Returns:
            (stored execution, created flag)
        """
        pass

    @abstractmethod
    async def get(self, execution_id: ExecutionID) -> Optional[WorkflowExecution]:
        """Load the last persisted state of an execution."""
        pass

    @abstractmethod
    async def find_by_idempotency_key(
        self, tenant_id: str, idempotency_key: str
    ) -> Optional[WorkflowExecution]:
        """Look up an execution by the caller's idempotency key."""
        pass

    @abstractmethod
    async def save(self, execution: WorkflowExecution) -> None:
        """
        Persist state, cursor and outputs.

        The lease stays with the backend: a non-terminal save keeps the
        stored lease and a terminal save releases it. A copy carrying a
        lease owner other than the stored one is rejected.

        Raises:
            TerminalExecutionError: If the stored execution is already terminal
            LeaseLostError: If another worker has taken over the lease
        """
        pass

    @abstractmethod
    async def append_invocation(self, invocation: ActivityInvocation) -> None:
        """Append one attempt to the invocation log."""
        pass

    @abstractmethod
    async def list_invocations(self, execution_id: ExecutionID) -> List[ActivityInvocation]:
        """Return the invocation log in append order."""
        pass

    @abstractmethod
    async def save_compensation(self, record: CompensationRecord) -> None:
        """Insert or update the compensation record of one step."""
        pass

    @abstractmethod
    async def list_compensations(self, execution_id: ExecutionID) -> List[CompensationRecord]:
        """Return compensation records in the order they were created."""
        pass

    @abstractmethod
    async def request_cancel(self, execution_id: ExecutionID) -> Optional[WorkflowExecution]:
        """
        Flag an execution for cancellation.

        A PENDING execution that no worker holds is moved to CANCELLED
        immediately. Terminal executions are returned unchanged.

        Returns:
            The execution after the update, or None if it does not exist
        """
        pass

    @abstractmethod
    async def enqueue(self, execution_id: ExecutionID) -> None:
        """Make an execution available to workers."""
        pass

    @abstractmethod
    async def claim(self, worker_id: str, lease: timedelta) -> Optional[WorkflowExecution]:
        """
        Take the next runnable execution under an exclusive lease.

        Returns:
            The claimed execution, or None when nothing is runnable
        """
        pass

    @abstractmethod
    async def renew_lease(self, execution_id: ExecutionID, worker_id: str, lease: timedelta) -> bool:
        """Extend a held lease. Returns False if the lease was lost."""
        pass

    @abstractmethod
    async def release(self, execution_id: ExecutionID, worker_id: str, requeue: bool = False) -> None:
        """Drop the lease; optionally hand the execution back to the queue."""
        pass

    @abstractmethod
    async def list_executions(
        self,
        tenant_id: Optional[str] = None,
        statuses: Optional[Iterable[ExecutionStatus]] = None,
        limit: int = 100,
    ) -> List[WorkflowExecution]:
        """List executions, newest first."""
        pass


@dataclass(frozen=True)
class ActorGrants:
    """Roles and effective permissions of one actor in one tenant."""

    roles: FrozenSet[str]
    permissions: FrozenSet[Permission]


class IAuthorizationStore(ABC):
    """Source of truth for tenant membership, roles and permissions."""

    @abstractmethod
    async def get_grants(self, tenant_id: str, actor_id: str) -> Optional[ActorGrants]:
        """
        Load the actor's roles and permissions in a tenant in one lookup.

        Returns:
            ActorGrants, or None if the actor is not a member of the tenant
        """
        pass


class IAlertService(ABC):
    """
    Operator alerting.

    Compensation failures always alert: they imply inconsistent state.
    """

    @abstractmethod
    async def send_compensation_failure(
        self,
        execution: WorkflowExecution,
        step_index: int,
        adapter_name: str,
        error: str,
    ) -> None:
        """Alert that a rollback could not complete."""
        pass

    @abstractmethod
    async def send_overdue_execution(self, execution: WorkflowExecution, age_seconds: float) -> None:
        """Alert that an execution passed its advisory maximum age."""
        pass

    @abstractmethod
    async def notify(self, message: str, severity: int = 50) -> None:
        """Send a generic operator message."""
        pass


class ICacheBackend(ABC):
    """Storage for aggregation cache entries."""

    @abstractmethod
    async def get(self, key: str) -> Optional[CacheEntry]:
        """Return a live entry or None."""
        pass

    @abstractmethod
    async def set(self, entry: CacheEntry, ttl_seconds: float) -> None:
        """Store an entry for ``ttl_seconds``."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete one entry. Returns True if it existed."""
        pass

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        """Delete every entry whose key starts with ``prefix``."""
        pass


@dataclass(frozen=True)
class IdempotencyRecord:
    """The recorded output of one applied activity."""

    tenant_id: str
    execution_id: ExecutionID
    step_index: int
    adapter_name: str
    output: Any


class IIdempotencyStore(ABC):
    """Lookup-then-act records backing adapter idempotency."""

    @abstractmethod
    async def get(
        self, tenant_id: str, execution_id: ExecutionID, step_index: int, adapter_name: str
    ) -> Optional[IdempotencyRecord]:
        """Return the record of a previously applied activity, if any."""
        pass

    @abstractmethod
    async def put(self, record: IdempotencyRecord) -> None:
        """Record an applied activity. A second put for the same key is ignored."""
        pass


class IDirectServiceClient(ABC):
    """Forwards a simple operation to the single domain service that owns it."""

    @abstractmethod
    async def call(self, service: str, request: OperationRequest, context: TenantContext) -> Any:
        """
        Execute a simple operation.

        Args:
            service: Owning domain service name
            request: Original request
            context: Resolved tenant context

        Returns:
            JSON-serializable result
        """
        pass
