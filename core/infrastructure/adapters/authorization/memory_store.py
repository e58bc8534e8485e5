"""
In-memory authorization store.

Role-based: an actor holds roles in a tenant, roles carry permissions, and
actors may also hold direct permissions. Every ``get_grants`` call counts
as one store lookup.
"""
import logging
from collections import defaultdict
from typing import Dict, Iterable, Optional, Set, Tuple

from core.application.interfaces import ActorGrants, IAuthorizationStore
from core.domain.value_objects import Permission

logger = logging.getLogger(__name__)

DEFAULT_ROLES = {
    "owner": ("*:*",),
    "admin": ("tenants:*", "users:*", "files:*", "workflows:*"),
    "member": ("tenants:read", "tenants:switch", "users:read", "files:read", "files:create"),
    "viewer": ("tenants:read", "users:read", "files:read"),
}


class InMemoryAuthorizationStore(IAuthorizationStore):
    """Source of truth for tenant membership, roles and permissions."""

    def __init__(self, roles: Optional[Dict[str, Iterable[str]]] = None):
        source = DEFAULT_ROLES if roles is None else roles
        self._role_permissions: Dict[str, Set[Permission]] = {
            role: {Permission.parse(p) for p in perms} for role, perms in source.items()
        }
        self._members: Dict[Tuple[str, str], Set[str]] = {}
        self._direct: Dict[Tuple[str, str], Set[Permission]] = defaultdict(set)
        self._failure: Optional[Exception] = None
        self.lookups = 0

    def add_member(self, tenant_id: str, actor_id: str, roles: Iterable[str] = ("member",)) -> None:
        self._members[(tenant_id, actor_id)] = set(roles)

    def remove_member(self, tenant_id: str, actor_id: str) -> None:
        self._members.pop((tenant_id, actor_id), None)
        self._direct.pop((tenant_id, actor_id), None)

    def assign_roles(self, tenant_id: str, actor_id: str, roles: Iterable[str]) -> None:
        self._members[(tenant_id, actor_id)] = set(roles)

    def grant(self, tenant_id: str, actor_id: str, *permissions: str) -> None:
        self._members.setdefault((tenant_id, actor_id), set())
        self._direct[(tenant_id, actor_id)].update(Permission.parse(p) for p in permissions)

    def revoke(self, tenant_id: str, actor_id: str, *permissions: str) -> None:
        self._direct[(tenant_id, actor_id)].difference_update(Permission.parse(p) for p in permissions)

    def define_role(self, role: str, *permissions: str) -> None:
        self._role_permissions[role] = {Permission.parse(p) for p in permissions}

    def fail_with(self, error: Optional[Exception]) -> None:
        """Make every lookup raise ``error`` (None restores normal lookups)."""
        self._failure = error

    async def get_grants(self, tenant_id: str, actor_id: str) -> Optional[ActorGrants]:
        self.lookups += 1
        if self._failure is not None:
            raise self._failure

        roles = self._members.get((tenant_id, actor_id))
        if roles is None:
            return None

        permissions: Set[Permission] = set(self._direct.get((tenant_id, actor_id), set()))
        for role in roles:
            permissions.update(self._role_permissions.get(role, set()))

        logger.debug(f"Grants lookup {tenant_id}/{actor_id}: roles={sorted(roles)} permissions={len(permissions)}")
        return ActorGrants(roles=frozenset(roles), permissions=frozenset(permissions))
