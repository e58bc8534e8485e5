"""Workflow dispatcher - starts durable executions with a stable identity."""

import asyncio
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from core.application.interfaces import IExecutionBackend
from core.domain.entities import TenantContext, WorkflowExecution
from core.domain.enums import ExecutionStatus
from core.domain.exceptions import ClassificationError, DispatcherError
from core.domain.value_objects import ExecutionID
from tenantflow_sdk.logging import get_logger

from .bus import EventBusProtocol
from .events import Event
from .workflow import WorkflowRegistry

IndexKey = tuple[str, str]

TERMINAL_EVENTS = ("execution.completed", "execution.failed", "execution.cancelled")


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    waiters: int = 0


class WorkflowDispatcher:
    """
    Starts executions, at most one per (tenant, idempotency key).

    The dispatcher's only state is the idempotency-key index, which is a
    cache of the backend and can be rebuilt from it at any time. Entries
    are dropped when their execution finishes and the oldest ones are
    evicted past ``max_index_entries``; the backend's deterministic ids
    answer resubmissions of anything no longer indexed.
    """

    def __init__(
        self,
        backend: IExecutionBackend,
        workflows: WorkflowRegistry,
        max_index_entries: int = 10_000,
    ) -> None:
        """Initialize dispatcher.

        Args:
            backend: Durable execution backend
            workflows: Registered workflow definitions
            max_index_entries: Upper bound on the idempotency-key index
        """
        self._backend = backend
        self._workflows = workflows
        self._max_index_entries = max_index_entries
        self._index: OrderedDict[IndexKey, tuple[ExecutionID, str]] = OrderedDict()
        self._locks: dict[IndexKey, _KeyLock] = {}
        self._logger = get_logger("orchestration.dispatcher")

    async def start(
        self,
        context: TenantContext,
        operation_type: str,
        payload: dict[str, Any],
        idempotency_key: str | None,
    ) -> ExecutionID:
        """Start (or find) the execution for an idempotency key.

        Args:
            context: Resolved tenant context of the submitter
            operation_type: Declared workflow name
            payload: Operation input
            idempotency_key: Caller-supplied key

        Returns:
            ExecutionID of the new or existing execution

        Raises:
            ClassificationError: Unknown operation type, missing key, or key
                reused for a different operation
            DispatcherError: The backend could not persist the execution
        """
        if operation_type not in self._workflows:
            raise ClassificationError(f"Unknown operation type: {operation_type}")
        if not idempotency_key:
            raise ClassificationError("Complex operations require an idempotency key")

        key = (context.tenant_id, idempotency_key)
        async with self._serialized(key):
            known = self._index.get(key)
            if known is not None:
                known_id, known_type = known
                if known_type != operation_type:
                    raise ClassificationError(
                        f"Idempotency key {idempotency_key} already used for {known_type}"
                    )
                self._logger.info(
                    f"duplicate_submission tenant={context.tenant_id} key={idempotency_key} "
                    f"execution_id={known_id}"
                )
                return known_id

            execution = WorkflowExecution(
                execution_id=ExecutionID.from_idempotency_key(context.tenant_id, idempotency_key),
                tenant_id=context.tenant_id,
                actor_id=context.actor_id,
                operation_type=operation_type,
                idempotency_key=idempotency_key,
                payload=dict(payload),
            )

            try:
                stored, created = await self._backend.create_if_absent(execution)
                if stored.operation_type != operation_type:
                    raise ClassificationError(
                        f"Idempotency key {idempotency_key} already used for {stored.operation_type}"
                    )
                # Enqueue is idempotent; re-enqueueing an existing PENDING
                # execution repairs a crash between create and enqueue.
                if stored.status == ExecutionStatus.PENDING:
                    await self._backend.enqueue(stored.execution_id)
            except ClassificationError:
                raise
            except Exception as exc:
                self._logger.error(f"dispatch_failed tenant={context.tenant_id} key={idempotency_key} error={exc}")
                raise DispatcherError(f"Could not start {operation_type}: {exc}") from exc

            if not stored.is_terminal:
                self._remember(key, stored.execution_id, stored.operation_type)
            self._logger.info(
                f"execution_{'created' if created else 'reused'} execution_id={stored.execution_id} "
                f"operation={operation_type} tenant={context.tenant_id}"
            )
            return stored.execution_id

    async def rebuild_index(self) -> int:
        """Reload the key index from the backend's non-terminal executions.

        Returns:
            Number of indexed executions
        """
        active = [s for s in ExecutionStatus if not s.is_terminal]
        executions = await self._backend.list_executions(statuses=active, limit=self._max_index_entries)
        self._index = OrderedDict()
        for e in executions:
            self._remember((e.tenant_id, e.idempotency_key), e.execution_id, e.operation_type)
        self._logger.info(f"index_rebuilt entries={len(self._index)}")
        return len(self._index)

    def subscribe_to(self, event_bus: EventBusProtocol) -> None:
        """Forget index entries as their executions reach a terminal state."""
        for name in TERMINAL_EVENTS:
            event_bus.subscribe(name, self._on_execution_finished)

    def indexed(self, tenant_id: str, idempotency_key: str) -> ExecutionID | None:
        entry = self._index.get((tenant_id, idempotency_key))
        return entry[0] if entry is not None else None

    def forget(self, tenant_id: str, idempotency_key: str) -> bool:
        return self._index.pop((tenant_id, idempotency_key), None) is not None

    def index_size(self) -> int:
        return len(self._index)

    def pending_submissions(self) -> int:
        """Number of idempotency keys with a submission in progress."""
        return len(self._locks)

    async def _on_execution_finished(self, event: Event) -> None:
        if event.metadata.idempotency_key:
            self.forget(event.metadata.tenant_id, event.metadata.idempotency_key)

    def _remember(self, key: IndexKey, execution_id: ExecutionID, operation_type: str) -> None:
        self._index[key] = (execution_id, operation_type)
        self._index.move_to_end(key)
        while len(self._index) > self._max_index_entries:
            self._index.popitem(last=False)

    @asynccontextmanager
    async def _serialized(self, key: IndexKey) -> AsyncIterator[None]:
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.waiters += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.waiters -= 1
            if entry.waiters == 0 and self._locks.get(key) is entry:
                del self._locks[key]
