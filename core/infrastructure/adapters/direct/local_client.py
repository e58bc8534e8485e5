"""
In-process direct service client.

Dispatches simple operations to handler coroutines registered per service.
Handlers only ever see the tenant of the resolved context.
"""
import logging
from typing import Any, Awaitable, Callable, Dict

from core.application.interfaces import IDirectServiceClient
from core.domain.entities import OperationRequest, TenantContext
from core.domain.exceptions import ClassificationError
from core.infrastructure.adapters.domain import DomainServices

logger = logging.getLogger(__name__)

DirectHandler = Callable[[OperationRequest, TenantContext], Awaitable[Any]]


class LocalDirectServiceClient(IDirectServiceClient):
    """Service name -> handler."""

    def __init__(self, handlers: Dict[str, DirectHandler] = None):
        self._handlers: Dict[str, DirectHandler] = dict(handlers or {})

    def register(self, service: str, handler: DirectHandler) -> None:
        self._handlers[service] = handler

    async def call(self, service: str, request: OperationRequest, context: TenantContext) -> Any:
        handler = self._handlers.get(service)
        if handler is None:
            raise ClassificationError(f"No service handles {request.method} {request.path}")
        logger.debug(f"Direct call {service}: {request.method} {request.path} tenant={context.tenant_id}")
        return await handler(request, context)


def build_local_handlers(services: DomainServices) -> Dict[str, DirectHandler]:
    """Read-side handlers over the in-memory domain services."""

    async def health(request: OperationRequest, context: TenantContext) -> Any:
        return {"status": "ok"}

    async def tenants(request: OperationRequest, context: TenantContext) -> Any:
        records = services.tenants.tenant_records(context.tenant_id)
        return {"tenants": sorted(records.values(), key=lambda r: r["tenant_id"])}

    async def users(request: OperationRequest, context: TenantContext) -> Any:
        records = services.users.tenant_records(context.tenant_id)
        active = [r for r in records.values() if not r.get("deleted")]
        return {"users": sorted(active, key=lambda r: r["user_id"])}

    async def files(request: OperationRequest, context: TenantContext) -> Any:
        return {"files": await services.storage.list_files(context.tenant_id)}

    return {"health": health, "tenants": tenants, "users": users, "files": files}
