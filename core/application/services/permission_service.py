"""
Tenant & Permission Context Service.

Resolves the (tenant, actor, roles, permissions) tuple and answers
authorization questions, serving low-privilege decisions from the
permission cache and re-validating high-privilege ones against the store.
"""
import logging
from typing import Iterable, Optional

from core.application.interfaces import ActorGrants, IAuthorizationStore
from core.application.services.permission_cache import CacheStats, PermissionCache
from core.domain.entities import TenantContext
from core.domain.events import PermissionInvalidationEvent
from core.domain.exceptions import AuthorizationError
from core.domain.value_objects import Permission
from tenantflow_sdk.utils.datetime import utc_now

logger = logging.getLogger(__name__)

DEFAULT_HIGH_PRIVILEGE_ACTIONS = ("tenants:delete", "permissions:grant", "roles:assign")


class PermissionContextService:
    """
    Resolves tenant context and authorizes (resource, action) pairs.

    Decisions are cached per (tenant, actor, resource, action). A cold
    lookup costs exactly one call to the authorization store.
    """

    def __init__(
        self,
        store: IAuthorizationStore,
        cache: PermissionCache,
        high_privilege_actions: Iterable[str] = DEFAULT_HIGH_PRIVILEGE_ACTIONS,
        high_privilege_max_staleness_seconds: float = 0.0,
    ) -> None:
        """
        Initialize service.

        Args:
            store: Authoritative roles/permissions source
            cache: Decision cache (shared with the invalidation consumer)
            high_privilege_actions: ``"resource:action"`` patterns that are
                re-validated against the store
            high_privilege_max_staleness_seconds: Oldest cached decision a
                high-privilege check may use; 0 bypasses the cache
        """
        self._store = store
        self._cache = cache
        self._high_privilege = tuple(Permission.parse(raw) for raw in high_privilege_actions)
        self._max_staleness = high_privilege_max_staleness_seconds

    @property
    def cache(self) -> PermissionCache:
        return self._cache

    async def resolve(self, actor_id: str, tenant_id: str, fresh: bool = False) -> TenantContext:
        """
        Resolve the actor's context in a tenant.

        Args:
            actor_id: Acting user
            tenant_id: Tenant the request targets
            fresh: Skip the cache and read the store

        Returns:
            TenantContext

        Raises:
            AuthorizationError: (unauthorized) if the actor is not a member
                of the tenant or the store cannot be reached
        """
        if not fresh:
            cached = self._cache.get_context(tenant_id, actor_id)
            if cached is not None:
                return cached

        context = await self._load_context(tenant_id, actor_id)
        if context is None:
            raise AuthorizationError(
                f"Actor {actor_id} has no membership in tenant {tenant_id}",
                AuthorizationError.UNAUTHORIZED,
            )
        return context

    async def authorize(
        self,
        context: TenantContext,
        resource: str,
        action: str,
        high_privilege: bool = False,
    ) -> bool:
        """
        Decide whether the context may perform ``action`` on ``resource``.

        Args:
            context: Previously resolved context
            resource: Target resource
            action: Requested action
            high_privilege: Force high-privilege handling regardless of
                the configured action list

        Returns:
            True if allowed
        """
        tenant_id, actor_id = context.tenant_id, context.actor_id
        high = high_privilege or self.is_high_privilege(resource, action)

        if high and self._max_staleness <= 0:
            logger.debug(f"Cache bypass for high-privilege check {resource}:{action} ({tenant_id}/{actor_id})")
        else:
            max_age = self._max_staleness if high else None
            generation = self._cache.generation(tenant_id, actor_id)
            entry = self._cache.get(tenant_id, actor_id, resource, action, max_age=max_age)
            if entry is not None:
                return entry.decision

            cached = self._cache.get_context_entry(tenant_id, actor_id, max_age=max_age)
            if cached is not None:
                decision = cached.context.grants(resource, action)
                # A derived decision is as old as the context it came from.
                self._cache.put(
                    tenant_id,
                    actor_id,
                    resource,
                    action,
                    decision,
                    generation=generation,
                    cached_at=cached.cached_at,
                    expires_at=cached.expires_at,
                )
                return decision

        generation = self._cache.generation(tenant_id, actor_id)
        try:
            fresh_context = await self._load_context(tenant_id, actor_id)
        except AuthorizationError:
            logger.warning(f"Authorization store unavailable, denying {resource}:{action} for {actor_id}")
            return False

        decision = fresh_context.grants(resource, action) if fresh_context is not None else False
        self._cache.put(tenant_id, actor_id, resource, action, decision, generation=generation)
        return decision

    def is_high_privilege(self, resource: str, action: str) -> bool:
        return any(p.matches(resource, action) for p in self._high_privilege)

    async def handle_invalidation(self, event: PermissionInvalidationEvent) -> int:
        """
        Apply a permission invalidation event. Safe to receive twice.

        Returns:
            Number of evicted entries
        """
        if event.actor_id:
            evicted = self._cache.invalidate(event.tenant_id, event.actor_id)
        else:
            evicted = self._cache.invalidate_tenant(event.tenant_id)
        logger.info(
            f"Permission invalidation tenant={event.tenant_id} actor={event.actor_id or '*'} "
            f"reason={event.reason or '-'} evicted={evicted}"
        )
        return evicted

    def stats(self) -> CacheStats:
        return self._cache.stats()

    async def _load_context(self, tenant_id: str, actor_id: str) -> Optional[TenantContext]:
        """One store lookup; refreshes the context cache unless an invalidation raced it."""
        generation = self._cache.generation(tenant_id, actor_id)
        try:
            grants: Optional[ActorGrants] = await self._store.get_grants(tenant_id, actor_id)
        except Exception as exc:
            logger.error(f"Authorization store lookup failed for {tenant_id}/{actor_id}: {exc}")
            raise AuthorizationError(
                f"Could not resolve tenant context: {exc}", AuthorizationError.UNAUTHORIZED
            ) from exc

        if grants is None:
            return None

        context = TenantContext(
            tenant_id=tenant_id,
            actor_id=actor_id,
            roles=frozenset(grants.roles),
            permissions=frozenset(grants.permissions),
            resolved_at=utc_now(),
        )
        self._cache.put_context(context, generation=generation)
        return context
