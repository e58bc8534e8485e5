"""
SQLAlchemy Execution Backend.

Durable implementation of the execution contract on PostgreSQL (asyncpg)
or SQLite (aiosqlite). Claims use a conditional UPDATE so two workers can
never hold the same execution, whatever the isolation level. Saves and
cancel requests lock the row (SELECT ... FOR UPDATE on PostgreSQL) so a
concurrent cancel flag or lease takeover is never overwritten.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Tuple

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.application.interfaces import IExecutionBackend
from core.domain.entities import (
    ActivityInvocation,
    CompensationRecord,
    TerminalExecutionError,
    WorkflowExecution,
)
from core.domain.enums import TERMINAL_STATUSES, CompensationStatus, ExecutionStatus
from core.domain.exceptions import LeaseLostError
from core.domain.value_objects import ExecutionID
from core.infrastructure.database.models import (
    ActivityInvocationModel,
    CompensationModel,
    ExecutionModel,
)
from tenantflow_sdk.utils.datetime import ensure_utc, utc_now


logger = logging.getLogger(__name__)

_TERMINAL_VALUES = [s.value for s in TERMINAL_STATUSES]


class SqlAlchemyExecutionBackend(IExecutionBackend):
    """
    SQLAlchemy implementation of IExecutionBackend.

    Usage:
        engine = create_engine(settings.database)
        await init_database(engine)
        backend = SqlAlchemyExecutionBackend(get_session_factory(engine))
    """

    def __init__(self, session_factory: async_sessionmaker, clock: Callable[[], datetime] = utc_now):
        """
        Initialize execution backend.

        Args:
            session_factory: SQLAlchemy async session factory
            clock: Source of lease timestamps
        """
        self._session_factory = session_factory
        self._clock = clock

    # =========================================================================
    # EXECUTIONS
    # =========================================================================

    async def create_if_absent(self, execution: WorkflowExecution) -> Tuple[WorkflowExecution, bool]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = ExecutionModel(execution_id=str(execution.execution_id))
                    _apply(row, execution)
                    session.add(row)
            logger.info(f"Execution created: {execution.execution_id} ({execution.operation_type})")
            return execution, True
        except IntegrityError:
            existing = await self.get(execution.execution_id)
            if existing is None:
                raise
            return existing, False

    async def get(self, execution_id: ExecutionID) -> Optional[WorkflowExecution]:
        async with self._session_factory() as session:
            row = await session.get(ExecutionModel, str(execution_id))
            return _to_execution(row) if row is not None else None

    async def find_by_idempotency_key(self, tenant_id: str, idempotency_key: str) -> Optional[WorkflowExecution]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ExecutionModel).where(
                    ExecutionModel.tenant_id == tenant_id,
                    ExecutionModel.idempotency_key == idempotency_key,
                )
            )
            row = result.scalar_one_or_none()
            return _to_execution(row) if row is not None else None

    async def save(self, execution: WorkflowExecution) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await self._locked_row(session, execution.execution_id)
                if row is None:
                    raise KeyError(f"Execution {execution.execution_id} does not exist")
                if row.status in _TERMINAL_VALUES:
                    raise TerminalExecutionError(
                        f"Execution {execution.execution_id} is {row.status} and can no longer change"
                    )
                if execution.lease_owner is not None and execution.lease_owner != row.lease_owner:
                    raise LeaseLostError(str(execution.execution_id), execution.lease_owner, row.lease_owner)
                cancel_requested = row.cancel_requested or execution.cancel_requested
                lease = (row.lease_owner, row.lease_expires_at)
                _apply(row, execution)
                row.cancel_requested = cancel_requested
                if execution.is_terminal:
                    row.lease_owner = None
                    row.lease_expires_at = None
                    row.queued = False
                else:
                    row.lease_owner, row.lease_expires_at = lease

    async def request_cancel(self, execution_id: ExecutionID) -> Optional[WorkflowExecution]:
        now = self._clock()
        async with self._session_factory() as session:
            async with session.begin():
                row = await self._locked_row(session, execution_id)
                if row is None:
                    return None
                if row.status in _TERMINAL_VALUES:
                    return _to_execution(row)

                leased = row.lease_owner is not None and row.lease_expires_at is not None and (
                    ensure_utc(row.lease_expires_at) > now
                )
                row.cancel_requested = True
                row.updated_at = now
                if row.status == ExecutionStatus.PENDING.value and not leased:
                    row.status = ExecutionStatus.CANCELLED.value
                    row.finished_at = now
                    row.queued = False
                    row.lease_owner = None
                    row.lease_expires_at = None
                    logger.info(f"Execution {execution_id} cancelled before any worker claimed it")
                else:
                    logger.info(f"Cancellation requested for {execution_id} (status={row.status})")
                return _to_execution(row)

    async def list_executions(
        self,
        tenant_id: Optional[str] = None,
        statuses: Optional[Iterable[ExecutionStatus]] = None,
        limit: int = 100,
    ) -> List[WorkflowExecution]:
        query = select(ExecutionModel)
        if tenant_id is not None:
            query = query.where(ExecutionModel.tenant_id == tenant_id)
        if statuses is not None:
            query = query.where(ExecutionModel.status.in_([s.value for s in statuses]))
        query = query.order_by(ExecutionModel.started_at.desc()).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_to_execution(row) for row in result.scalars().all()]

    async def _locked_row(self, session, execution_id: ExecutionID) -> Optional[ExecutionModel]:
        result = await session.execute(
            select(ExecutionModel)
            .where(ExecutionModel.execution_id == str(execution_id))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # INVOCATIONS & COMPENSATIONS
    # =========================================================================

    async def append_invocation(self, invocation: ActivityInvocation) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    ActivityInvocationModel(
                        execution_id=str(invocation.execution_id),
                        tenant_id=invocation.tenant_id,
                        step_index=invocation.step_index,
                        adapter_name=invocation.adapter_name,
                        input=invocation.input,
                        attempt=invocation.attempt,
                        retry_policy=invocation.retry_policy,
                        outcome=invocation.outcome,
                        error=invocation.error,
                        is_compensation=invocation.is_compensation,
                        started_at=invocation.started_at,
                        finished_at=invocation.finished_at,
                    )
                )

    async def list_invocations(self, execution_id: ExecutionID) -> List[ActivityInvocation]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ActivityInvocationModel)
                .where(ActivityInvocationModel.execution_id == str(execution_id))
                .order_by(ActivityInvocationModel.id)
            )
            return [
                ActivityInvocation(
                    execution_id=ExecutionID.parse(row.execution_id),
                    tenant_id=row.tenant_id,
                    step_index=row.step_index,
                    adapter_name=row.adapter_name,
                    input=row.input or {},
                    attempt=row.attempt,
                    retry_policy=row.retry_policy or {},
                    outcome=row.outcome,
                    error=row.error,
                    is_compensation=row.is_compensation,
                    started_at=ensure_utc(row.started_at),
                    finished_at=ensure_utc(row.finished_at) if row.finished_at else None,
                )
                for row in result.scalars().all()
            ]

    async def save_compensation(self, record: CompensationRecord) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(CompensationModel, (str(record.execution_id), record.step_index))
                if row is None:
                    row = CompensationModel(execution_id=str(record.execution_id), step_index=record.step_index)
                    session.add(row)
                row.tenant_id = record.tenant_id
                row.adapter_name = record.adapter_name
                row.status = record.status.value
                row.attempts = record.attempts
                row.error = record.error
                row.updated_at = record.updated_at

    async def list_compensations(self, execution_id: ExecutionID) -> List[CompensationRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CompensationModel)
                .where(CompensationModel.execution_id == str(execution_id))
                .order_by(CompensationModel.created_at, CompensationModel.step_index.desc())
            )
            return [
                CompensationRecord(
                    execution_id=ExecutionID.parse(row.execution_id),
                    tenant_id=row.tenant_id,
                    step_index=row.step_index,
                    adapter_name=row.adapter_name,
                    status=CompensationStatus(row.status),
                    attempts=row.attempts,
                    error=row.error,
                    updated_at=ensure_utc(row.updated_at),
                )
                for row in result.scalars().all()
            ]

    # =========================================================================
    # TASK DISTRIBUTION
    # =========================================================================

    async def enqueue(self, execution_id: ExecutionID) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(ExecutionModel)
                    .where(
                        ExecutionModel.execution_id == str(execution_id),
                        ExecutionModel.status.not_in(_TERMINAL_VALUES),
                        ExecutionModel.queued.is_(False),
                    )
                    .values(queued=True, queued_at=self._clock())
                )

    async def claim(self, worker_id: str, lease: timedelta) -> Optional[WorkflowExecution]:
        now = self._clock()
        claimable = and_(
            ExecutionModel.status.not_in(_TERMINAL_VALUES),
            or_(
                and_(ExecutionModel.queued.is_(True), ExecutionModel.lease_owner.is_(None)),
                and_(ExecutionModel.lease_owner.is_not(None), ExecutionModel.lease_expires_at <= now),
            ),
        )

        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(ExecutionModel.execution_id)
                    .where(claimable)
                    .order_by(ExecutionModel.queued_at)
                    .limit(5)
                )
                candidates = list(result.scalars().all())

                for candidate in candidates:
                    # Conditional update: loses cleanly if another worker got there first.
                    claimed = await session.execute(
                        update(ExecutionModel)
                        .where(ExecutionModel.execution_id == candidate, claimable)
                        .values(lease_owner=worker_id, lease_expires_at=now + lease, queued=False)
                    )
                    if claimed.rowcount == 1:
                        row = await session.get(ExecutionModel, candidate, populate_existing=True)
                        return _to_execution(row)
        return None

    async def renew_lease(self, execution_id: ExecutionID, worker_id: str, lease: timedelta) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(ExecutionModel)
                    .where(
                        ExecutionModel.execution_id == str(execution_id),
                        ExecutionModel.lease_owner == worker_id,
                        ExecutionModel.status.not_in(_TERMINAL_VALUES),
                    )
                    .values(lease_expires_at=self._clock() + lease)
                )
                return result.rowcount == 1

    async def release(self, execution_id: ExecutionID, worker_id: str, requeue: bool = False) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(ExecutionModel, str(execution_id))
                if row is None:
                    return
                if row.lease_owner not in (None, worker_id):
                    logger.warning(f"{worker_id} released {execution_id} but the lease belongs to {row.lease_owner}")
                    return
                row.lease_owner = None
                row.lease_expires_at = None
                if requeue and row.status not in _TERMINAL_VALUES:
                    row.queued = True
                    row.queued_at = self._clock()


def _apply(row: ExecutionModel, execution: WorkflowExecution) -> None:
    """Copy entity state onto a row."""
    row.tenant_id = execution.tenant_id
    row.actor_id = execution.actor_id
    row.operation_type = execution.operation_type
    row.idempotency_key = execution.idempotency_key
    row.payload = dict(execution.payload)
    row.status = execution.status.value
    row.step_cursor = execution.step_cursor
    row.step_outputs = list(execution.step_outputs)
    row.result = execution.result
    row.error = execution.error
    row.failed_step = execution.failed_step
    row.compensation_status = execution.compensation_status.value if execution.compensation_status else None
    row.compensation_error = execution.compensation_error
    row.cancel_requested = execution.cancel_requested
    row.started_at = execution.started_at
    row.updated_at = execution.updated_at
    row.finished_at = execution.finished_at


def _to_execution(row: ExecutionModel) -> WorkflowExecution:
    """Build an entity from a row."""
    return WorkflowExecution(
        execution_id=ExecutionID.parse(row.execution_id),
        tenant_id=row.tenant_id,
        actor_id=row.actor_id,
        operation_type=row.operation_type,
        idempotency_key=row.idempotency_key,
        payload=dict(row.payload or {}),
        status=ExecutionStatus(row.status),
        step_cursor=row.step_cursor,
        step_outputs=list(row.step_outputs or []),
        started_at=ensure_utc(row.started_at),
        updated_at=ensure_utc(row.updated_at),
        finished_at=ensure_utc(row.finished_at) if row.finished_at else None,
        result=row.result,
        error=row.error,
        failed_step=row.failed_step,
        compensation_status=CompensationStatus(row.compensation_status) if row.compensation_status else None,
        compensation_error=row.compensation_error,
        cancel_requested=bool(row.cancel_requested),
        lease_owner=row.lease_owner,
        lease_expires_at=ensure_utc(row.lease_expires_at) if row.lease_expires_at else None,
    )
