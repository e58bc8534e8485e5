"""User activities."""
from typing import Any, Dict

from core.application.interfaces import IIdempotencyStore
from core.infrastructure.adapters.domain import InMemoryUserService

from .base import IdempotentActivity, require, step_output


class CreateUser(IdempotentActivity):
    name = "user.create"

    def __init__(self, store: IIdempotencyStore, users: InMemoryUserService):
        super().__init__(store)
        self._users = users

    async def perform(self, tenant_id: str, idempotency_key: str, input_: Dict[str, Any]) -> Any:
        return await self._users.create(
            tenant_id, idempotency_key, require(input_, "email"), input_.get("name", "")
        )


class DeleteUser(IdempotentActivity):
    """Compensation of user.create."""

    name = "user.delete"

    def __init__(self, store: IIdempotencyStore, users: InMemoryUserService):
        super().__init__(store)
        self._users = users

    async def perform(self, tenant_id: str, idempotency_key: str, input_: Dict[str, Any]) -> Any:
        created = step_output(input_)
        return await self._users.delete(tenant_id, idempotency_key, require(created, "user_id"))
