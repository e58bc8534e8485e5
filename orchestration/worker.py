"""Worker pool - claims executions under a lease and runs the saga coordinator."""

import asyncio
import contextlib
from datetime import timedelta

from core.application.interfaces import IExecutionBackend
from core.domain.entities import WorkflowExecution
from core.domain.exceptions import LeaseLostError
from tenantflow_sdk.logging import get_logger

from .saga import SagaCoordinator


class WorkerPool:
    """
    A fixed number of asyncio workers fed by the backend's task queue.

    Each claimed execution is held under an exclusive lease that a heartbeat
    renews while the coordinator runs. A worker that loses its lease stops
    working on the execution; the backend hands it to another worker after
    the lease expires.
    """

    def __init__(
        self,
        backend: IExecutionBackend,
        coordinator: SagaCoordinator,
        worker_count: int = 4,
        lease_seconds: float = 30.0,
        poll_interval_seconds: float = 0.5,
        name_prefix: str = "worker",
    ) -> None:
        """Initialize worker pool.

        Args:
            backend: Durable execution backend
            coordinator: Saga coordinator shared by all workers
            worker_count: Number of concurrent workers
            lease_seconds: Lease length; renewed every third of it
            poll_interval_seconds: Idle sleep when nothing is runnable
            name_prefix: Prefix of worker ids (lease owners)
        """
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self._backend = backend
        self._coordinator = coordinator
        self._worker_count = worker_count
        self._lease = timedelta(seconds=lease_seconds)
        self._poll_interval = poll_interval_seconds
        self._name_prefix = name_prefix
        self._tasks: list[asyncio.Task] = []
        self._stopping = asyncio.Event()
        self._logger = get_logger("orchestration.worker")

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._work(f"{self._name_prefix}-{n}"), name=f"{self._name_prefix}-{n}")
            for n in range(self._worker_count)
        ]
        self._logger.info(f"Worker pool started with {self._worker_count} workers")

    async def stop(self) -> None:
        """Stop all workers; executions in flight are released back to the queue."""
        self._stopping.set()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        self._logger.info("Worker pool stopped")

    async def run_once(self, worker_id: str = "worker-inline") -> WorkflowExecution | None:
        """Claim and process at most one execution.

        Returns:
            The processed execution, or None when the queue was empty
        """
        execution = await self._backend.claim(worker_id, self._lease)
        if execution is None:
            return None
        return await self._process(worker_id, execution)

    async def drain(self, worker_id: str = "worker-inline", max_rounds: int = 1000) -> int:
        """Process executions until the queue is empty. Returns the number processed."""
        processed = 0
        for _ in range(max_rounds):
            if await self.run_once(worker_id) is None:
                break
            processed += 1
        return processed

    async def _work(self, worker_id: str) -> None:
        self._logger.debug(f"{worker_id} started")
        while not self._stopping.is_set():
            try:
                execution = await self.run_once(worker_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._logger.error(f"{worker_id} claim failed: {exc}", exc_info=True)
                execution = None
            if execution is None:
                await asyncio.sleep(self._poll_interval)

    async def _process(self, worker_id: str, execution: WorkflowExecution) -> WorkflowExecution:
        execution_id = execution.execution_id
        self._logger.info(f"{worker_id} claimed {execution_id} ({execution.operation_type}, {execution.status.value})")

        run = asyncio.create_task(self._coordinator.run(execution))
        heartbeat = asyncio.create_task(self._heartbeat(worker_id, execution, run))
        requeue = True
        try:
            result = await run
            requeue = not result.is_terminal
            return result
        except asyncio.CancelledError:
            if not run.cancelled() or self._stopping.is_set():
                raise
            self._logger.warning(f"{worker_id} lost lease on {execution_id}; abandoning run")
            return execution
        except LeaseLostError as exc:
            self._logger.warning(f"{worker_id} lost lease on {execution_id} to {exc.holder}; dropping its state")
            return execution
        except Exception as exc:
            self._logger.error(f"{worker_id} failed processing {execution_id}: {exc}", exc_info=True)
            return execution
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat
            if not run.done():
                run.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await run
            await self._backend.release(execution_id, worker_id, requeue=requeue)

    async def _heartbeat(self, worker_id: str, execution: WorkflowExecution, run: asyncio.Task) -> None:
        interval = max(self._lease.total_seconds() / 3, 0.01)
        while not run.done():
            await asyncio.sleep(interval)
            if run.done():
                return
            renewed = await self._backend.renew_lease(execution.execution_id, worker_id, self._lease)
            if not renewed:
                run.cancel()
                return
