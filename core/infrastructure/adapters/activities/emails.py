"""Email activity."""
from typing import Any, Dict

from core.application.interfaces import IIdempotencyStore
from core.infrastructure.adapters.domain import InMemoryEmailService

from .base import IdempotentActivity, require


class SendEmail(IdempotentActivity):
    """Sending mail cannot be undone, so workflows place it last."""

    name = "email.send"

    def __init__(self, store: IIdempotencyStore, email: InMemoryEmailService):
        super().__init__(store)
        self._email = email

    async def perform(self, tenant_id: str, idempotency_key: str, input_: Dict[str, Any]) -> Any:
        return await self._email.send(
            tenant_id,
            idempotency_key,
            require(input_, "to"),
            input_.get("template", "generic"),
            input_.get("data"),
        )
