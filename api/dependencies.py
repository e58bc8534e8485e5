"""
FastAPI Dependencies.

Wires the orchestration core together and provides it to the routes.
Every component is a lazily-created process singleton; tests call
``reset_dependencies()`` to start from a clean slate.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional
from dotenv import load_dotenv

# Load environment variables ONCE before any settings objects are created
_PROJECT_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(dotenv_path=_PROJECT_ROOT / ".env")

from core.settings import get_app_settings

from core.application.interfaces import (
    IAlertService,
    ICacheBackend,
    IDirectServiceClient,
    IExecutionBackend,
    IIdempotencyStore,
)
from core.application.services import (
    AggregationCache,
    ExecutionStatusService,
    Gateway,
    PermissionCache,
    PermissionContextService,
    RequestClassifier,
)
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

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine
    from core.infrastructure.bus import InvalidationEventConsumer

logger = logging.getLogger(__name__)


# =============================================================================
# SINGLETON INSTANCES
# =============================================================================

_database_engine = None
_execution_backend = None
_event_bus = None
_alert_service = None
_domain_services = None
_idempotency_store = None
_adapter_registry = None
_workflow_registry = None
_authorization_store = None
_permission_cache = None
_permission_service = None
_classifier = None
_direct_client = None
_dispatcher = None
_saga_coordinator = None
_worker_pool = None
_gateway = None
_status_service = None
_cache_backend = None
_aggregation_cache = None
_invalidation_consumer = None


# =============================================================================
# EXECUTION BACKEND
# =============================================================================

def uses_database_backend() -> bool:
    return get_app_settings().orchestrator.backend.lower() in ("database", "sqlalchemy")


def get_database_engine() -> AsyncEngine:
    global _database_engine
    if _database_engine is None:
        from core.infrastructure.database.config import create_engine
        _database_engine = create_engine(get_app_settings().database)
    return _database_engine


def get_execution_backend() -> IExecutionBackend:
    global _execution_backend
    if _execution_backend is None:
        if uses_database_backend():
            from core.infrastructure.database.config import get_session_factory
            from core.infrastructure.database.execution_store import SqlAlchemyExecutionBackend

            _execution_backend = SqlAlchemyExecutionBackend(get_session_factory(get_database_engine()))
            logger.info("Created SqlAlchemyExecutionBackend instance")
        else:
            _execution_backend = InMemoryExecutionBackend()
            logger.info("Using InMemoryExecutionBackend (executions are not durable)")
    return _execution_backend


# =============================================================================
# ORCHESTRATION SUPPORT
# =============================================================================

def get_event_bus() -> InMemoryEventBus:
    global _event_bus
    if _event_bus is None:
        _event_bus = InMemoryEventBus()
    return _event_bus


def get_alert_service() -> IAlertService:
    global _alert_service

    if _alert_service is None:
        settings = get_app_settings()

        if settings.slack.enabled:
            try:
                from core.infrastructure.adapters.alerts.slack_alert_service import SlackAlertService
                _alert_service = SlackAlertService(settings.slack)
                logger.info("Created SlackAlertService instance")
            except Exception as e:
                logger.warning(f"Failed SlackAlertService: {e}, fallback to mock")
                _alert_service = MockAlertService()
        else:
            _alert_service = MockAlertService()
            logger.info("Using MockAlertService (Slack alerts disabled)")

    return _alert_service


def get_domain_services() -> DomainServices:
    global _domain_services
    if _domain_services is None:
        _domain_services = DomainServices()
    return _domain_services


def get_idempotency_store() -> IIdempotencyStore:
    global _idempotency_store
    if _idempotency_store is None:
        _idempotency_store = InMemoryIdempotencyStore()
    return _idempotency_store


def get_adapter_registry() -> AdapterRegistry:
    global _adapter_registry
    if _adapter_registry is None:
        _adapter_registry = AdapterRegistry()
        _adapter_registry.register_all(build_builtin_adapters(get_domain_services(), get_idempotency_store()))
        logger.info(f"Registered {len(_adapter_registry.names())} activity adapters")
    return _adapter_registry


def get_workflow_registry() -> WorkflowRegistry:
    global _workflow_registry
    if _workflow_registry is None:
        orchestrator = get_app_settings().orchestrator
        default_policy = RetryPolicy(
            max_attempts=orchestrator.default_max_attempts,
            initial_interval_seconds=orchestrator.default_initial_interval_seconds,
            backoff_coefficient=orchestrator.default_backoff_coefficient,
            max_interval_seconds=orchestrator.default_max_interval_seconds,
            attempt_timeout_seconds=orchestrator.default_attempt_timeout_seconds,
        )
        _workflow_registry = build_default_registry(default_policy)
        # Fail at startup rather than at the first step that needs a missing adapter.
        for definition in _workflow_registry.all():
            get_adapter_registry().ensure_registered(definition.adapter_names())
    return _workflow_registry


# =============================================================================
# PERMISSIONS
# =============================================================================

def get_authorization_store() -> InMemoryAuthorizationStore:
    global _authorization_store
    if _authorization_store is None:
        _authorization_store = InMemoryAuthorizationStore()
        logger.info("Created InMemoryAuthorizationStore instance")
    return _authorization_store


def get_permission_cache() -> PermissionCache:
    global _permission_cache
    if _permission_cache is None:
        settings = get_app_settings().permissions
        _permission_cache = PermissionCache(
            ttl_seconds=settings.decision_ttl_seconds,
            context_ttl_seconds=settings.context_ttl_seconds,
        )
    return _permission_cache


def get_permission_service() -> PermissionContextService:
    global _permission_service
    if _permission_service is None:
        settings = get_app_settings().permissions
        _permission_service = PermissionContextService(
            store=get_authorization_store(),
            cache=get_permission_cache(),
            high_privilege_actions=settings.high_privilege_actions,
            high_privilege_max_staleness_seconds=settings.high_privilege_max_staleness_seconds,
        )
    return _permission_service


# =============================================================================
# GATEWAY & WORKFLOWS
# =============================================================================

def get_classifier() -> RequestClassifier:
    global _classifier
    if _classifier is None:
        _classifier = RequestClassifier()
    return _classifier


def get_direct_client() -> IDirectServiceClient:
    global _direct_client
    if _direct_client is None:
        service_urls = get_app_settings().orchestrator.direct_service_urls
        if service_urls:
            from core.infrastructure.adapters.direct.http_client import HttpDirectServiceClient
            _direct_client = HttpDirectServiceClient(service_urls)
            logger.info(f"Created HttpDirectServiceClient for {sorted(service_urls)}")
        else:
            _direct_client = LocalDirectServiceClient(build_local_handlers(get_domain_services()))
    return _direct_client


def get_dispatcher() -> WorkflowDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = WorkflowDispatcher(get_execution_backend(), get_workflow_registry())
        _dispatcher.subscribe_to(get_event_bus())
    return _dispatcher


def get_saga_coordinator() -> SagaCoordinator:
    global _saga_coordinator
    if _saga_coordinator is None:
        _saga_coordinator = SagaCoordinator(
            backend=get_execution_backend(),
            workflows=get_workflow_registry(),
            adapters=get_adapter_registry(),
            permission_service=get_permission_service(),
            event_bus=get_event_bus(),
            alert_service=get_alert_service(),
        )
    return _saga_coordinator


def get_worker_pool() -> WorkerPool:
    global _worker_pool
    if _worker_pool is None:
        settings = get_app_settings().orchestrator
        _worker_pool = WorkerPool(
            backend=get_execution_backend(),
            coordinator=get_saga_coordinator(),
            worker_count=settings.worker_count,
            lease_seconds=settings.lease_seconds,
            poll_interval_seconds=settings.poll_interval_seconds,
        )
    return _worker_pool


def get_gateway() -> Gateway:
    global _gateway
    if _gateway is None:
        _gateway = Gateway(
            classifier=get_classifier(),
            permission_service=get_permission_service(),
            dispatcher=get_dispatcher(),
            workflows=get_workflow_registry(),
            direct_client=get_direct_client(),
        )
        logger.info("Created Gateway instance")
    return _gateway


def get_status_service() -> ExecutionStatusService:
    global _status_service
    if _status_service is None:
        _status_service = ExecutionStatusService(
            backend=get_execution_backend(),
            permission_service=get_permission_service(),
            workflows=get_workflow_registry(),
            alert_service=get_alert_service(),
            max_execution_age_seconds=get_app_settings().orchestrator.max_execution_age_seconds,
        )
    return _status_service


# =============================================================================
# AGGREGATION CACHE
# =============================================================================

def get_cache_backend() -> ICacheBackend:
    global _cache_backend
    if _cache_backend is None:
        settings = get_app_settings()
        if settings.cache.backend.lower() == "redis":
            from core.infrastructure.cache.redis_cache import RedisCacheBackend
            _cache_backend = RedisCacheBackend(redis_url=settings.redis.url)
            logger.info("Created RedisCacheBackend instance")
        else:
            _cache_backend = InMemoryCacheBackend()
    return _cache_backend


def get_aggregation_cache() -> AggregationCache:
    global _aggregation_cache
    if _aggregation_cache is None:
        settings = get_app_settings().cache
        _aggregation_cache = AggregationCache(
            backend=get_cache_backend(),
            default_ttl_seconds=settings.default_ttl_seconds,
            key_prefix=settings.key_prefix,
        )
    return _aggregation_cache


# =============================================================================
# INVALIDATION EVENTS
# =============================================================================

def get_invalidation_consumer() -> Optional[InvalidationEventConsumer]:
    """Redis Streams consumer, or None when Redis is disabled."""
    global _invalidation_consumer

    settings = get_app_settings().redis
    if not settings.enabled:
        return None

    if _invalidation_consumer is None:
        from core.infrastructure.bus import InvalidationEventConsumer, RedisStreamConsumer

        consumer = RedisStreamConsumer(
            streams=[settings.permission_stream, settings.cache_stream],
            redis_url=settings.url,
            consumer_group=settings.consumer_group,
            consumer_name=settings.consumer_name,
        )
        _invalidation_consumer = InvalidationEventConsumer(
            consumer=consumer,
            permission_stream=settings.permission_stream,
            cache_stream=settings.cache_stream,
            on_permission_event=get_permission_service().handle_invalidation,
            on_cache_event=get_aggregation_cache().handle_invalidation,
        )
        logger.info("Created InvalidationEventConsumer instance")

    return _invalidation_consumer


# =============================================================================
# RESET (for testing)
# =============================================================================

def reset_dependencies():
    global _database_engine, _execution_backend, _event_bus, _alert_service
    global _domain_services, _idempotency_store, _adapter_registry, _workflow_registry
    global _authorization_store, _permission_cache, _permission_service, _classifier
    global _direct_client, _dispatcher, _saga_coordinator, _worker_pool, _gateway
    global _status_service, _cache_backend, _aggregation_cache, _invalidation_consumer

    _database_engine = None
    _execution_backend = None
    _event_bus = None
    _alert_service = None
    _domain_services = None
    _idempotency_store = None
    _adapter_registry = None
    _workflow_registry = None
    _authorization_store = None
    _permission_cache = None
    _permission_service = None
    _classifier = None
    _direct_client = None
    _dispatcher = None
    _saga_coordinator = None
    _worker_pool = None
    _gateway = None
    _status_service = None
    _cache_backend = None
    _aggregation_cache = None
    _invalidation_consumer = None

    logger.info("Dependencies reset")
