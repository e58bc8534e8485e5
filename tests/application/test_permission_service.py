"""Tests for PermissionContextService and PermissionCache."""

import pytest

from core.application.services import PermissionCache, PermissionContextService
from core.domain.events import PermissionInvalidationEvent
from core.domain.exceptions import AuthorizationError


@pytest.mark.asyncio
async def test_cold_resolve_costs_one_lookup_then_serves_from_cache(core):
    context = await core.context()
    assert core.authz.lookups == 1
    assert context.roles == frozenset({"admin"})

    assert await core.permissions.authorize(context, "users", "create") is True
    assert await core.permissions.authorize(context, "users", "create") is True
    assert await core.permissions.authorize(context, "billing", "read") is False
    assert core.authz.lookups == 1

    stats = core.permissions.stats()
    assert stats.hits >= 2
    assert stats.entries == 3


@pytest.mark.asyncio
async def test_decisions_expire_after_ttl(core):
    context = await core.context()
    await core.permissions.authorize(context, "users", "read")

    core.clock.advance(31)
    assert await core.permissions.authorize(context, "users", "read") is True
    assert core.authz.lookups == 2


@pytest.mark.asyncio
async def test_revocation_without_event_is_visible_once_ttl_passes(core):
    context = await core.context(actor_id="bob")
    assert await core.permissions.authorize(context, "files", "create") is True

    core.authz.remove_member("tenant-a", "bob")
    # Stale but within the bounded window
    assert await core.permissions.authorize(context, "files", "create") is True

    core.clock.advance(31)
    assert await core.permissions.authorize(context, "files", "create") is False


@pytest.mark.asyncio
async def test_invalidation_event_evicts_actor_immediately(core):
    context = await core.context(actor_id="bob")
    await core.permissions.authorize(context, "files", "create")
    core.authz.remove_member("tenant-a", "bob")

    evicted = await core.permissions.handle_invalidation(
        PermissionInvalidationEvent(tenant_id="tenant-a", actor_id="bob", reason="membership removed")
    )

    assert evicted == 2
    assert await core.permissions.authorize(context, "files", "create") is False
    with pytest.raises(AuthorizationError):
        await core.context(actor_id="bob")


@pytest.mark.asyncio
async def test_invalidation_is_idempotent(core):
    await core.context()
    event = PermissionInvalidationEvent(tenant_id="tenant-a", actor_id="alice")

    assert await core.permissions.handle_invalidation(event) == 1
    assert await core.permissions.handle_invalidation(event) == 0


@pytest.mark.asyncio
async def test_tenant_wide_invalidation_leaves_other_tenants_alone(core):
    await core.context(actor_id="alice")
    await core.context(actor_id="bob")
    await core.context(actor_id="alice", tenant_id="tenant-b")

    evicted = await core.permissions.handle_invalidation(PermissionInvalidationEvent(tenant_id="tenant-a"))

    assert evicted == 2
    assert core.permission_cache.get_context("tenant-a", "alice") is None
    assert core.permission_cache.get_context("tenant-b", "alice") is not None


@pytest.mark.asyncio
async def test_high_privilege_checks_bypass_cache(core):
    context = await core.context()

    assert await core.permissions.authorize(context, "tenants", "delete") is True
    assert await core.permissions.authorize(context, "tenants", "delete") is True
    assert core.authz.lookups == 3

    core.authz.remove_member("tenant-a", "alice")
    assert await core.permissions.authorize(context, "tenants", "delete") is False
    # Low-privilege decisions may still be served stale
    assert await core.permissions.authorize(context, "tenants", "read") is True


@pytest.mark.asyncio
async def test_high_privilege_staleness_window(core):
    permissions = PermissionContextService(
        core.authz, core.permission_cache, high_privilege_max_staleness_seconds=5.0
    )
    context = await permissions.resolve("alice", "tenant-a")
    lookups = core.authz.lookups

    assert await permissions.authorize(context, "tenants", "delete") is True
    assert core.authz.lookups == lookups

    core.clock.advance(6)
    assert await permissions.authorize(context, "tenants", "delete") is True
    assert core.authz.lookups == lookups + 1


@pytest.mark.asyncio
async def test_explicit_high_privilege_flag(core):
    context = await core.context()

    await core.permissions.authorize(context, "users", "create", high_privilege=True)
    await core.permissions.authorize(context, "users", "create", high_privilege=True)

    assert core.authz.lookups == 3


@pytest.mark.asyncio
async def test_unknown_member_is_unauthorized(core):
    with pytest.raises(AuthorizationError) as exc_info:
        await core.context(actor_id="mallory")

    assert exc_info.value.reason == AuthorizationError.UNAUTHORIZED


@pytest.mark.asyncio
async def test_store_outage_denies_instead_of_allowing(core):
    context = await core.context()
    core.permission_cache.clear()
    core.authz.fail_with(ConnectionError("authz store down"))

    assert await core.permissions.authorize(context, "users", "read") is False
    with pytest.raises(AuthorizationError) as exc_info:
        await core.context()
    assert exc_info.value.reason == AuthorizationError.UNAUTHORIZED


@pytest.mark.asyncio
async def test_fresh_resolve_skips_cache(core):
    await core.context()
    await core.permissions.resolve("alice", "tenant-a", fresh=True)

    assert core.authz.lookups == 2


def test_fill_that_raced_an_invalidation_is_dropped(clock):
    cache = PermissionCache(ttl_seconds=30, clock=clock)
    generation = cache.generation("tenant-a", "bob")

    cache.invalidate("tenant-a", "bob")

    assert cache.put("tenant-a", "bob", "files", "read", True, generation=generation) is None
    assert cache.get("tenant-a", "bob", "files", "read") is None
    assert cache.put("tenant-a", "bob", "files", "read", True) is not None


def test_tenant_invalidation_also_bumps_generation(clock):
    cache = PermissionCache(ttl_seconds=30, clock=clock)
    generation = cache.generation("tenant-a", "bob")

    cache.invalidate_tenant("tenant-a")

    assert cache.put("tenant-a", "bob", "files", "read", True, generation=generation) is None


def test_max_age_rejects_old_entries(clock):
    cache = PermissionCache(ttl_seconds=30, clock=clock)
    cache.put("tenant-a", "bob", "files", "read", True)

    clock.advance(10)

    assert cache.get("tenant-a", "bob", "files", "read") is not None
    assert cache.get("tenant-a", "bob", "files", "read", max_age=5) is None


def test_cache_rejects_bad_stripe_count():
    with pytest.raises(ValueError):
        PermissionCache(stripes=0)


@pytest.mark.asyncio
async def test_decision_derived_from_cached_context_expires_with_it(core):
    context = await core.context(actor_id="bob")
    core.clock.advance(29)
    assert await core.permissions.authorize(context, "files", "create") is True

    core.authz.remove_member("tenant-a", "bob")
    core.clock.advance(25)

    # 54s after the only store read: the allow must not outlive the context
    assert await core.permissions.authorize(context, "files", "create") is False
    assert core.authz.lookups == 2


def test_derived_decision_keeps_the_context_read_time(clock):
    cache = PermissionCache(ttl_seconds=30, clock=clock)
    clock.advance(20)

    entry = cache.put("tenant-a", "bob", "files", "read", True, cached_at=clock.now - 20, expires_at=clock.now + 10)

    assert entry.cached_at == clock.now - 20
    assert entry.expires_at == clock.now + 10
    assert cache.get("tenant-a", "bob", "files", "read", max_age=15) is None


@pytest.mark.asyncio
async def test_invalidation_between_context_read_and_decision_fill_wins(core):
    context = await core.context(actor_id="bob")
    get_context_entry = core.permission_cache.get_context_entry

    def read_then_invalidate(tenant_id, actor_id, max_age=None):
        cached = get_context_entry(tenant_id, actor_id, max_age=max_age)
        core.permission_cache.invalidate(tenant_id, actor_id)
        return cached

    core.permission_cache.get_context_entry = read_then_invalidate
    assert await core.permissions.authorize(context, "files", "create") is True

    assert core.permission_cache.get("tenant-a", "bob", "files", "create") is None


def test_invalidating_unknown_actors_allocates_nothing(clock):
    cache = PermissionCache(ttl_seconds=30, clock=clock)
    cache.put("tenant-a", "alice", "users", "read", True)
    generation = cache.generation("tenant-a", "ghost")

    for n in range(100):
        assert cache.invalidate("tenant-a", f"ghost-{n}") == 0
    cache.invalidate_tenant("tenant-z")

    assert cache.bucket_count() == 1
    # The epoch still fences a fill that raced those invalidations.
    assert cache.put("tenant-a", "ghost", "users", "read", True, generation=generation) is None
