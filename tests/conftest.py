"""Shared fixtures: a fully wired in-memory orchestration core."""

from dataclasses import dataclass

import pytest

from core.application.services import (
    AggregationCache,
    ExecutionStatusService,
    Gateway,
    PermissionCache,
    PermissionContextService,
    RequestClassifier,
)
from core.domain.entities import OperationRequest
from core.infrastructure.adapters.activities import InMemoryIdempotencyStore, build_builtin_adapters
from core.infrastructure.adapters.alerts.mock_alert_service import MockAlertService
from core.infrastructure.adapters.authorization import InMemoryAuthorizationStore
from core.infrastructure.adapters.direct import LocalDirectServiceClient, build_local_handlers
from core.infrastructure.adapters.domain import DomainServices
from core.infrastructure.adapters.persistence.memory_execution_backend import InMemoryExecutionBackend
from core.infrastructure.cache import InMemoryCacheBackend
from orchestration import (
    AdapterRegistry,
    InMemoryEventBus,
    RetryPolicy,
    SagaCoordinator,
    WorkerPool,
    WorkflowDispatcher,
    WorkflowRegistry,
    build_default_registry,
)

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"
ADMIN = "alice"
MEMBER = "bob"
VIEWER = "carol"

# Zero backoff keeps retry tests instant.
FAST_POLICY = RetryPolicy(max_attempts=3, initial_interval_seconds=0.0, attempt_timeout_seconds=5.0)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Replaces asyncio.sleep in the coordinator and records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@dataclass
class Core:
    """Every component of the orchestration core, wired in memory."""

    clock: FakeClock
    sleep: RecordingSleep
    authz: InMemoryAuthorizationStore
    permission_cache: PermissionCache
    permissions: PermissionContextService
    services: DomainServices
    idempotency: InMemoryIdempotencyStore
    adapters: AdapterRegistry
    workflows: WorkflowRegistry
    backend: InMemoryExecutionBackend
    event_bus: InMemoryEventBus
    alerts: MockAlertService
    coordinator: SagaCoordinator
    dispatcher: WorkflowDispatcher
    workers: WorkerPool
    gateway: Gateway
    status: ExecutionStatusService
    aggregation: AggregationCache

    def request(self, method, path, payload=None, key=None, tenant_id=TENANT, actor_id=ADMIN):
        return OperationRequest(
            method=method,
            path=path,
            tenant_id=tenant_id,
            actor_id=actor_id,
            payload=payload or {},
            idempotency_key=key,
        )

    async def context(self, actor_id=ADMIN, tenant_id=TENANT):
        return await self.permissions.resolve(actor_id, tenant_id)


def build_core(workflows: WorkflowRegistry | None = None, adapters: AdapterRegistry | None = None) -> Core:
    clock = FakeClock()
    sleep = RecordingSleep()

    authz = InMemoryAuthorizationStore()
    authz.add_member(TENANT, ADMIN, roles=["admin"])
    authz.add_member(TENANT, MEMBER, roles=["member"])
    authz.add_member(TENANT, VIEWER, roles=["viewer"])
    authz.add_member(OTHER_TENANT, ADMIN, roles=["admin"])

    permission_cache = PermissionCache(ttl_seconds=30.0, clock=clock)
    permissions = PermissionContextService(authz, permission_cache)

    services = DomainServices()
    idempotency = InMemoryIdempotencyStore()
    if adapters is None:
        adapters = AdapterRegistry()
        adapters.register_all(build_builtin_adapters(services, idempotency))
    if workflows is None:
        workflows = build_default_registry(FAST_POLICY)

    backend = InMemoryExecutionBackend()
    event_bus = InMemoryEventBus()
    alerts = MockAlertService()
    coordinator = SagaCoordinator(
        backend=backend,
        workflows=workflows,
        adapters=adapters,
        permission_service=permissions,
        event_bus=event_bus,
        alert_service=alerts,
        sleep=sleep,
    )
    dispatcher = WorkflowDispatcher(backend, workflows)
    dispatcher.subscribe_to(event_bus)
    workers = WorkerPool(backend, coordinator, worker_count=2, lease_seconds=30, poll_interval_seconds=0.01)
    gateway = Gateway(
        classifier=RequestClassifier(),
        permission_service=permissions,
        dispatcher=dispatcher,
        workflows=workflows,
        direct_client=LocalDirectServiceClient(build_local_handlers(services)),
    )
    status = ExecutionStatusService(
        backend, permissions, workflows, alert_service=alerts, max_execution_age_seconds=3600
    )
    aggregation = AggregationCache(InMemoryCacheBackend(clock=clock), default_ttl_seconds=60, clock=clock)

    return Core(
        clock=clock,
        sleep=sleep,
        authz=authz,
        permission_cache=permission_cache,
        permissions=permissions,
        services=services,
        idempotency=idempotency,
        adapters=adapters,
        workflows=workflows,
        backend=backend,
        event_bus=event_bus,
        alerts=alerts,
        coordinator=coordinator,
        dispatcher=dispatcher,
        workers=workers,
        gateway=gateway,
        status=status,
        aggregation=aggregation,
    )


@pytest.fixture
def core() -> Core:
    """Fresh in-memory orchestration core with the built-in workflows."""
    return build_core()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_core():
    """Factory for a core with custom workflows or adapters."""
    return build_core
