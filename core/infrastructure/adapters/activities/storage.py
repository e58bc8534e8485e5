"""Storage and file activities."""
from typing import Any, Dict

from core.application.interfaces import IIdempotencyStore
from core.infrastructure.adapters.domain import InMemoryStorageService

from .base import IdempotentActivity, require, step_output


class _StorageActivity(IdempotentActivity):
    def __init__(self, store: IIdempotencyStore, storage: InMemoryStorageService):
        super().__init__(store)
        self._storage = storage


class AllocateStorage(_StorageActivity):
    name = "storage.allocate"

    async def perform(self, tenant_id: str, idempotency_key: str, input_: Dict[str, Any]) -> Any:
        return await self._storage.allocate(
            tenant_id, idempotency_key, require(input_, "owner_id"), int(input_.get("quota_gb", 10))
        )


class ReleaseStorage(_StorageActivity):
    """Forward step of terminate_tenant and compensation of storage.allocate."""

    name = "storage.release"

    async def perform(self, tenant_id: str, idempotency_key: str, input_: Dict[str, Any]) -> Any:
        if "step_input" in input_:
            owner_id = require(input_["step_input"], "owner_id")
        else:
            owner_id = input_.get("owner_id") or require(input_, "target_tenant_id")
        return await self._storage.release(tenant_id, idempotency_key, owner_id)


class StoreFile(_StorageActivity):
    name = "file.store"

    async def perform(self, tenant_id: str, idempotency_key: str, input_: Dict[str, Any]) -> Any:
        return await self._storage.store_file(
            tenant_id, idempotency_key, require(input_, "filename"), int(input_.get("size_bytes", 0))
        )


class DeleteFile(_StorageActivity):
    name = "file.delete"

    async def perform(self, tenant_id: str, idempotency_key: str, input_: Dict[str, Any]) -> Any:
        stored = step_output(input_)
        return await self._storage.delete_file(tenant_id, idempotency_key, require(stored, "file_id"))
