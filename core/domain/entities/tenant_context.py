"""Resolved tenant and permission context."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet, Optional

from core.domain.value_objects.permission import Permission


@dataclass(frozen=True)
class TenantContext:
    """
    The (tenant, actor, roles, permissions) tuple used by every downstream
    decision. Only the permission context service creates these.
    """

    tenant_id: str
    actor_id: str
    roles: FrozenSet[str] = field(default_factory=frozenset)
    permissions: FrozenSet[Permission] = field(default_factory=frozenset)
    resolved_at: Optional[datetime] = None

    def grants(self, resource: str, action: str) -> bool:
        """Check the resolved permission set, ignoring any cache."""
        return any(p.matches(resource, action) for p in self.permissions)
