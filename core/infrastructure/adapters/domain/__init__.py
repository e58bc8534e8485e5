"""Domain service clients used by activity adapters and direct calls."""

from .memory_services import (
    InMemoryEmailService,
    InMemoryMembershipService,
    InMemoryStorageService,
    InMemoryTenantService,
    InMemoryUserService,
    DomainServices,
)

__all__ = [
    "DomainServices",
    "InMemoryEmailService",
    "InMemoryMembershipService",
    "InMemoryStorageService",
    "InMemoryTenantService",
    "InMemoryUserService",
]
