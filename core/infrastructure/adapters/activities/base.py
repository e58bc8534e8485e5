"""
Idempotent activity base.

Every built-in adapter follows lookup-then-act: the idempotency store is
consulted for (tenant, execution, step, adapter) before the domain service
is called, and the output is recorded afterwards. The domain services also
key their side effects on the same idempotency key, which covers a crash
between acting and recording.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

from core.application.interfaces import IdempotencyRecord, IIdempotencyStore
from core.domain.exceptions import FatalActivityError, TenantIsolationError
from core.domain.value_objects import ExecutionID, Outcome, Success

logger = logging.getLogger(__name__)

RecordKey = Tuple[str, str, int, str]


class InMemoryIdempotencyStore(IIdempotencyStore):
    """Process-local idempotency records."""

    def __init__(self):
        self._records: Dict[RecordKey, IdempotencyRecord] = {}
        self._lock = asyncio.Lock()

    async def get(
        self, tenant_id: str, execution_id: ExecutionID, step_index: int, adapter_name: str
    ) -> Optional[IdempotencyRecord]:
        async with self._lock:
            return self._records.get((tenant_id, str(execution_id), step_index, adapter_name))

    async def put(self, record: IdempotencyRecord) -> None:
        key = (record.tenant_id, str(record.execution_id), record.step_index, record.adapter_name)
        async with self._lock:
            self._records.setdefault(key, record)

    def __len__(self) -> int:
        return len(self._records)


class IdempotentActivity(ABC):
    """
    Base class of the built-in activity adapters.

    Subclasses set ``name`` and implement ``perform``. They may raise
    ``RetryableActivityError`` or ``FatalActivityError``; the coordinator
    maps both to outcomes.
    """

    name: str = ""

    def __init__(self, store: IIdempotencyStore):
        self._store = store

    async def invoke(
        self, tenant_id: str, execution_id: ExecutionID, step_index: int, input_: Dict[str, Any]
    ) -> Outcome:
        """
        Run the activity at most once per (tenant, execution, step).

        Args:
            tenant_id: Tenant of the execution (mandatory)
            execution_id: Execution being driven
            step_index: Position of the step in the workflow
            input_: Step input

        Returns:
            Success with the (possibly replayed) output

        Raises:
            TenantIsolationError: If the input targets another tenant
        """
        if not tenant_id:
            raise TenantIsolationError(f"{self.name} invoked without a tenant id")
        scoped = input_.get("tenant_id")
        if scoped and scoped != tenant_id:
            raise TenantIsolationError(
                f"{self.name} invoked for tenant {tenant_id} with data of tenant {scoped}"
            )

        existing = await self._store.get(tenant_id, execution_id, step_index, self.name)
        if existing is not None:
            logger.info(f"{self.name} already applied for {execution_id} step {step_index}, replaying output")
            return Success(existing.output)

        key = self.idempotency_key(execution_id, step_index)
        output = await self.perform(tenant_id, key, input_)

        await self._store.put(
            IdempotencyRecord(
                tenant_id=tenant_id,
                execution_id=execution_id,
                step_index=step_index,
                adapter_name=self.name,
                output=output,
            )
        )
        return Success(output)

    def idempotency_key(self, execution_id: ExecutionID, step_index: int) -> str:
        return f"{execution_id}:{step_index}:{self.name}"

    @abstractmethod
    async def perform(self, tenant_id: str, idempotency_key: str, input_: Dict[str, Any]) -> Any:
        """Apply the side effect through the domain service."""
        pass


def require(input_: Dict[str, Any], field: str) -> Any:
    """Read a mandatory input field; a missing one is a business-rule violation."""
    value = input_.get(field)
    if value in (None, ""):
        raise FatalActivityError(f"Missing required input: {field}")
    return value


def step_output(input_: Dict[str, Any]) -> Dict[str, Any]:
    """The forward step's output inside a compensation input."""
    output = input_.get("step_output")
    if not isinstance(output, dict):
        raise FatalActivityError("Compensation input carries no step output")
    return output
