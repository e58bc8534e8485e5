"""Tenant membership activities."""
from typing import Any, Dict

from core.application.interfaces import IIdempotencyStore
from core.infrastructure.adapters.domain import InMemoryMembershipService

from .base import IdempotentActivity, require, step_output


class _MembershipActivity(IdempotentActivity):
    def __init__(self, store: IIdempotencyStore, memberships: InMemoryMembershipService):
        super().__init__(store)
        self._memberships = memberships


class VerifyMembership(_MembershipActivity):
    """Read-only check; a non-member is a business-rule violation."""

    name = "membership.verify"

    async def perform(self, tenant_id: str, idempotency_key: str, input_: Dict[str, Any]) -> Any:
        return await self._memberships.verify(
            tenant_id, require(input_, "user_id"), require(input_, "target_tenant_id")
        )


class SwitchActiveTenant(_MembershipActivity):
    name = "membership.switch_active"

    async def perform(self, tenant_id: str, idempotency_key: str, input_: Dict[str, Any]) -> Any:
        return await self._memberships.switch_active(
            tenant_id, idempotency_key, require(input_, "user_id"), require(input_, "target_tenant_id")
        )


class RestoreActiveTenant(_MembershipActivity):
    name = "membership.restore_active"

    async def perform(self, tenant_id: str, idempotency_key: str, input_: Dict[str, Any]) -> Any:
        switched = step_output(input_)
        return await self._memberships.restore_active(
            tenant_id,
            idempotency_key,
            require(switched, "user_id"),
            require(switched, "previous_tenant_id"),
        )
