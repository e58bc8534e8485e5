"""
In-Memory Execution Backend.

Process-local implementation of the durable execution contract for tests
and demos. Stored objects are deep-copied on the way in and out so callers
never share state with the backend.
"""
import asyncio
import logging
from collections import deque
from copy import deepcopy
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, Iterable, List, Optional, Set, Tuple

from core.application.interfaces import IExecutionBackend
from core.domain.entities import (
    ActivityInvocation,
    CompensationRecord,
    TerminalExecutionError,
    WorkflowExecution,
)
from core.domain.enums import ExecutionStatus
from core.domain.exceptions import LeaseLostError
from core.domain.value_objects import ExecutionID
from tenantflow_sdk.utils.datetime import utc_now


logger = logging.getLogger(__name__)


class InMemoryExecutionBackend(IExecutionBackend):
    """
    In-memory implementation of IExecutionBackend.

    A single asyncio lock makes every operation atomic, which is what
    create-if-absent and claim rely on.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        """Initialize empty storage."""
        self._executions: Dict[str, WorkflowExecution] = {}
        self._by_key: Dict[Tuple[str, str], str] = {}
        self._invocations: Dict[str, List[ActivityInvocation]] = {}
        self._compensations: Dict[str, Dict[int, CompensationRecord]] = {}
        self._queue: Deque[str] = deque()
        self._queued: Set[str] = set()
        self._lock = asyncio.Lock()
        self._clock = clock
        self.fail_creates = False
        logger.info("InMemoryExecutionBackend initialized (in-memory storage)")

    async def create_if_absent(self, execution: WorkflowExecution) -> Tuple[WorkflowExecution, bool]:
        async with self._lock:
            if self.fail_creates:
                raise ConnectionError("execution backend unavailable")
            key = str(execution.execution_id)
            existing = self._executions.get(key)
            if existing is not None:
                return deepcopy(existing), False

            self._executions[key] = deepcopy(execution)
            self._by_key[(execution.tenant_id, execution.idempotency_key)] = key
            self._invocations[key] = []
            self._compensations[key] = {}
            logger.info(f"Execution created: {key} ({execution.operation_type}, tenant={execution.tenant_id})")
            return deepcopy(execution), True

    async def get(self, execution_id: ExecutionID) -> Optional[WorkflowExecution]:
        async with self._lock:
            stored = self._executions.get(str(execution_id))
            return deepcopy(stored) if stored is not None else None

    async def find_by_idempotency_key(self, tenant_id: str, idempotency_key: str) -> Optional[WorkflowExecution]:
        async with self._lock:
            key = self._by_key.get((tenant_id, idempotency_key))
            return deepcopy(self._executions[key]) if key is not None else None

    async def save(self, execution: WorkflowExecution) -> None:
        async with self._lock:
            key = str(execution.execution_id)
            stored = self._executions.get(key)
            if stored is None:
                raise KeyError(f"Execution {key} does not exist")
            if stored.is_terminal:
                raise TerminalExecutionError(f"Execution {key} is {stored.status.value} and can no longer change")

            if execution.lease_owner is not None and execution.lease_owner != stored.lease_owner:
                raise LeaseLostError(key, execution.lease_owner, stored.lease_owner)

            updated = deepcopy(execution)
            # The cancel flag is only ever set, never cleared, and the lease
            # belongs to the backend.
            updated.cancel_requested = stored.cancel_requested or execution.cancel_requested
            if updated.is_terminal:
                updated.lease_owner = None
                updated.lease_expires_at = None
            else:
                updated.lease_owner = stored.lease_owner
                updated.lease_expires_at = stored.lease_expires_at
            self._executions[key] = updated

    async def append_invocation(self, invocation: ActivityInvocation) -> None:
        async with self._lock:
            self._invocations.setdefault(str(invocation.execution_id), []).append(invocation)

    async def list_invocations(self, execution_id: ExecutionID) -> List[ActivityInvocation]:
        async with self._lock:
            return list(self._invocations.get(str(execution_id), []))

    async def save_compensation(self, record: CompensationRecord) -> None:
        async with self._lock:
            self._compensations.setdefault(str(record.execution_id), {})[record.step_index] = deepcopy(record)

    async def list_compensations(self, execution_id: ExecutionID) -> List[CompensationRecord]:
        async with self._lock:
            return [deepcopy(r) for r in self._compensations.get(str(execution_id), {}).values()]

    async def request_cancel(self, execution_id: ExecutionID) -> Optional[WorkflowExecution]:
        async with self._lock:
            key = str(execution_id)
            stored = self._executions.get(key)
            if stored is None:
                return None
            if stored.is_terminal:
                return deepcopy(stored)

            if stored.status == ExecutionStatus.PENDING and not self._leased(stored):
                stored.request_cancel()
                stored.cancel()
                stored.lease_owner = None
                stored.lease_expires_at = None
                self._dequeue(key)
                logger.info(f"Execution {key} cancelled before any worker claimed it")
            else:
                stored.request_cancel()
                logger.info(f"Cancellation requested for {key} (status={stored.status.value})")
            return deepcopy(stored)

    async def enqueue(self, execution_id: ExecutionID) -> None:
        async with self._lock:
            key = str(execution_id)
            stored = self._executions.get(key)
            if stored is None or stored.is_terminal or key in self._queued:
                return
            self._queue.append(key)
            self._queued.add(key)

    async def claim(self, worker_id: str, lease: timedelta) -> Optional[WorkflowExecution]:
        async with self._lock:
            now = self._clock()
            key = self._next_claimable(now)
            if key is None:
                return None
            stored = self._executions[key]
            stored.lease_owner = worker_id
            stored.lease_expires_at = now + lease
            return deepcopy(stored)

    async def renew_lease(self, execution_id: ExecutionID, worker_id: str, lease: timedelta) -> bool:
        async with self._lock:
            stored = self._executions.get(str(execution_id))
            if stored is None or stored.is_terminal or stored.lease_owner != worker_id:
                return False
            stored.lease_expires_at = self._clock() + lease
            return True

    async def release(self, execution_id: ExecutionID, worker_id: str, requeue: bool = False) -> None:
        async with self._lock:
            key = str(execution_id)
            stored = self._executions.get(key)
            if stored is None:
                return
            if stored.lease_owner not in (None, worker_id):
                logger.warning(f"{worker_id} released {key} but the lease belongs to {stored.lease_owner}")
                return
            stored.lease_owner = None
            stored.lease_expires_at = None
            if requeue and not stored.is_terminal and key not in self._queued:
                self._queue.append(key)
                self._queued.add(key)

    async def list_executions(
        self,
        tenant_id: Optional[str] = None,
        statuses: Optional[Iterable[ExecutionStatus]] = None,
        limit: int = 100,
    ) -> List[WorkflowExecution]:
        async with self._lock:
            wanted = set(statuses) if statuses is not None else None
            matches = [
                e for e in self._executions.values()
                if (tenant_id is None or e.tenant_id == tenant_id)
                and (wanted is None or e.status in wanted)
            ]
            matches.sort(key=lambda e: e.started_at, reverse=True)
            return [deepcopy(e) for e in matches[:limit]]

    # ------------------------------------------------------------------

    def _leased(self, execution: WorkflowExecution) -> bool:
        return (
            execution.lease_owner is not None
            and execution.lease_expires_at is not None
            and execution.lease_expires_at > self._clock()
        )

    def _next_claimable(self, now: datetime) -> Optional[str]:
        while self._queue:
            key = self._queue.popleft()
            self._queued.discard(key)
            stored = self._executions.get(key)
            if stored is None or stored.is_terminal:
                continue
            if self._leased(stored):
                continue
            return key

        # Executions abandoned by a crashed worker come back once the lease expires.
        for key, stored in self._executions.items():
            if (
                not stored.is_terminal
                and stored.lease_owner is not None
                and stored.lease_expires_at is not None
                and stored.lease_expires_at <= now
            ):
                logger.warning(f"Reclaiming {key}: lease of {stored.lease_owner} expired")
                return key
        return None

    def _dequeue(self, key: str) -> None:
        if key in self._queued:
            self._queued.discard(key)
            self._queue.remove(key)
