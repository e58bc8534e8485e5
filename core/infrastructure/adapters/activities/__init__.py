"""Built-in activity adapters."""
from typing import List

from core.application.interfaces import IIdempotencyStore
from core.infrastructure.adapters.domain import DomainServices

from .base import IdempotentActivity, InMemoryIdempotencyStore
from .emails import SendEmail
from .memberships import RestoreActiveTenant, SwitchActiveTenant, VerifyMembership
from .storage import AllocateStorage, DeleteFile, ReleaseStorage, StoreFile
from .tenants import (
    DeprovisionTenant,
    ExportTenantData,
    ProvisionTenant,
    ReactivateTenant,
    RestoreTenantRegion,
    SuspendTenant,
    UpdateTenantRegion,
)
from .users import CreateUser, DeleteUser


def build_builtin_adapters(services: DomainServices, store: IIdempotencyStore) -> List[IdempotentActivity]:
    """Instantiate every built-in adapter against the given domain services."""
    return [
        ProvisionTenant(store, services.tenants),
        DeprovisionTenant(store, services.tenants),
        SuspendTenant(store, services.tenants),
        ReactivateTenant(store, services.tenants),
        ExportTenantData(store, services.tenants),
        UpdateTenantRegion(store, services.tenants),
        RestoreTenantRegion(store, services.tenants),
        CreateUser(store, services.users),
        DeleteUser(store, services.users),
        AllocateStorage(store, services.storage),
        ReleaseStorage(store, services.storage),
        StoreFile(store, services.storage),
        DeleteFile(store, services.storage),
        VerifyMembership(store, services.memberships),
        SwitchActiveTenant(store, services.memberships),
        RestoreActiveTenant(store, services.memberships),
        SendEmail(store, services.email),
    ]


__all__ = [
    "IdempotentActivity",
    "InMemoryIdempotencyStore",
    "build_builtin_adapters",
]
