"""Tenant lifecycle activities."""
from typing import Any, Dict

from core.application.interfaces import IIdempotencyStore
from core.infrastructure.adapters.domain import InMemoryTenantService

from .base import IdempotentActivity, require, step_output


class _TenantActivity(IdempotentActivity):
    def __init__(self, store: IIdempotencyStore, tenants: InMemoryTenantService):
        super().__init__(store)
        self._tenants = tenants


class ProvisionTenant(_TenantActivity):
    name = "tenant.provision"

    async def perform(self, tenant_id: str, idempotency_key: str, input_: Dict[str, Any]) -> Any:
        return await self._tenants.provision(
            tenant_id, idempotency_key, require(input_, "name"), input_.get("plan", "standard")
        )


class DeprovisionTenant(_TenantActivity):
    """Forward step of terminate_tenant and compensation of tenant.provision."""

    name = "tenant.deprovision"

    async def perform(self, tenant_id: str, idempotency_key: str, input_: Dict[str, Any]) -> Any:
        if "step_output" in input_:
            target = require(step_output(input_), "tenant_id")
        else:
            target = require(input_, "target_tenant_id")
        return await self._tenants.deprovision(tenant_id, idempotency_key, target)


class SuspendTenant(_TenantActivity):
    name = "tenant.suspend"

    async def perform(self, tenant_id: str, idempotency_key: str, input_: Dict[str, Any]) -> Any:
        return await self._tenants.suspend(tenant_id, idempotency_key, require(input_, "target_tenant_id"))


class ReactivateTenant(_TenantActivity):
    """Compensation of tenant.suspend: restores the status seen before suspension."""

    name = "tenant.reactivate"

    async def perform(self, tenant_id: str, idempotency_key: str, input_: Dict[str, Any]) -> Any:
        suspended = step_output(input_)
        return await self._tenants.reactivate(
            tenant_id,
            idempotency_key,
            require(suspended, "tenant_id"),
            suspended.get("previous_status", "active"),
        )


class ExportTenantData(_TenantActivity):
    name = "tenant.export_data"

    async def perform(self, tenant_id: str, idempotency_key: str, input_: Dict[str, Any]) -> Any:
        return await self._tenants.export_data(tenant_id, idempotency_key, require(input_, "target_tenant_id"))


class UpdateTenantRegion(_TenantActivity):
    name = "tenant.update_region"

    async def perform(self, tenant_id: str, idempotency_key: str, input_: Dict[str, Any]) -> Any:
        return await self._tenants.update_region(
            tenant_id, idempotency_key, require(input_, "target_tenant_id"), require(input_, "region")
        )


class RestoreTenantRegion(_TenantActivity):
    name = "tenant.restore_region"

    async def perform(self, tenant_id: str, idempotency_key: str, input_: Dict[str, Any]) -> Any:
        moved = step_output(input_)
        return await self._tenants.update_region(
            tenant_id, idempotency_key, require(moved, "tenant_id"), require(moved, "previous_region")
        )
