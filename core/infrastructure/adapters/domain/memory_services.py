"""
In-memory domain services.

Stand-ins for the platform's tenant, user, storage, membership and email
services. Every record is stored under the owning tenant and every side
effect is keyed on the caller's idempotency key, so a replayed call returns
the first result instead of acting twice.
"""
import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Tuple
from uuid import NAMESPACE_URL, uuid5

from core.domain.exceptions import FatalActivityError

logger = logging.getLogger(__name__)


class InMemoryDomainService:
    """Common bookkeeping: per-tenant records, keyed effects, injected faults."""

    service_name = "domain"

    def __init__(self):
        self.records: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self.calls: List[Tuple[str, str, str]] = []
        self._effects: Dict[Tuple[str, str], Any] = {}
        self._faults: Dict[str, Deque[Exception]] = defaultdict(deque)

    def fail_next(self, operation: str, *errors: Exception) -> None:
        """Queue errors raised by the next calls to ``operation`` (for testing)."""
        self._faults[operation].extend(errors)

    def effect_count(self, operation: str) -> int:
        """Number of side effects actually applied for ``operation``."""
        return sum(1 for (op, _, _) in self.calls if op == operation)

    def tenant_records(self, tenant_id: str) -> Dict[str, Dict[str, Any]]:
        return dict(self.records.get(tenant_id, {}))

    def _inject(self, operation: str) -> None:
        faults = self._faults.get(operation)
        if faults:
            raise faults.popleft()

    def _replay(self, tenant_id: str, key: str) -> Optional[Any]:
        return self._effects.get((tenant_id, key))

    def _apply(self, operation: str, tenant_id: str, key: str, result: Any) -> Any:
        self._effects[(tenant_id, key)] = result
        self.calls.append((operation, tenant_id, key))
        logger.debug(f"{self.service_name}.{operation} tenant={tenant_id} key={key}")
        return result

    @staticmethod
    def _derive_id(prefix: str, key: str) -> str:
        return f"{prefix}_{uuid5(NAMESPACE_URL, key).hex[:12]}"


class InMemoryTenantService(InMemoryDomainService):
    """Tenant lifecycle: provisioning, suspension, region and data export."""

    service_name = "tenants"

    async def provision(self, tenant_id: str, key: str, name: str, plan: str = "standard") -> Dict[str, Any]:
        self._inject("provision")
        replay = self._replay(tenant_id, key)
        if replay is not None:
            return replay
        if not name:
            raise FatalActivityError("Tenant name is required")
        if any(r.get("name") == name and r.get("status") != "deleted" for r in self.records[tenant_id].values()):
            raise FatalActivityError(f"Tenant {name!r} already exists")

        child_id = self._derive_id("tnt", key)
        record = {"tenant_id": child_id, "name": name, "plan": plan, "status": "active", "region": "default"}
        self.records[tenant_id][child_id] = record
        return self._apply("provision", tenant_id, key, dict(record))

    async def deprovision(self, tenant_id: str, key: str, child_tenant_id: str) -> Dict[str, Any]:
        self._inject("deprovision")
        replay = self._replay(tenant_id, key)
        if replay is not None:
            return replay
        record = self.records[tenant_id].get(child_tenant_id)
        if record is not None:
            record["status"] = "deleted"
        return self._apply("deprovision", tenant_id, key, {"tenant_id": child_tenant_id, "status": "deleted"})

    async def suspend(self, tenant_id: str, key: str, target_tenant_id: str) -> Dict[str, Any]:
        self._inject("suspend")
        replay = self._replay(tenant_id, key)
        if replay is not None:
            return replay
        record = self._require(tenant_id, target_tenant_id)
        previous = record["status"]
        record["status"] = "suspended"
        return self._apply(
            "suspend", tenant_id, key, {"tenant_id": target_tenant_id, "previous_status": previous}
        )

    async def reactivate(self, tenant_id: str, key: str, target_tenant_id: str, status: str) -> Dict[str, Any]:
        self._inject("reactivate")
        replay = self._replay(tenant_id, key)
        if replay is not None:
            return replay
        record = self._require(tenant_id, target_tenant_id)
        record["status"] = status
        return self._apply("reactivate", tenant_id, key, {"tenant_id": target_tenant_id, "status": status})

    async def export_data(self, tenant_id: str, key: str, target_tenant_id: str) -> Dict[str, Any]:
        self._inject("export_data")
        replay = self._replay(tenant_id, key)
        if replay is not None:
            return replay
        self._require(tenant_id, target_tenant_id)
        return self._apply(
            "export_data", tenant_id, key,
            {"tenant_id": target_tenant_id, "export_id": self._derive_id("exp", key)},
        )

    async def update_region(self, tenant_id: str, key: str, target_tenant_id: str, region: str) -> Dict[str, Any]:
        self._inject("update_region")
        replay = self._replay(tenant_id, key)
        if replay is not None:
            return replay
        record = self._require(tenant_id, target_tenant_id)
        previous = record.get("region", "default")
        record["region"] = region
        return self._apply(
            "update_region", tenant_id, key,
            {"tenant_id": target_tenant_id, "previous_region": previous, "region": region},
        )

    def _require(self, tenant_id: str, target_tenant_id: str) -> Dict[str, Any]:
        record = self.records[tenant_id].get(target_tenant_id)
        if record is None or record.get("status") == "deleted":
            raise FatalActivityError(f"Tenant {target_tenant_id} not found")
        return record


class InMemoryUserService(InMemoryDomainService):
    service_name = "users"

    async def create(self, tenant_id: str, key: str, email: str, name: str = "") -> Dict[str, Any]:
        self._inject("create")
        replay = self._replay(tenant_id, key)
        if replay is not None:
            return replay
        if not email or "@" not in email:
            raise FatalActivityError(f"Invalid email address: {email!r}")
        if any(u.get("email") == email and not u.get("deleted") for u in self.records[tenant_id].values()):
            raise FatalActivityError(f"User {email} already exists")

        user_id = self._derive_id("usr", key)
        self.records[tenant_id][user_id] = {"user_id": user_id, "email": email, "name": name, "deleted": False}
        return self._apply("create", tenant_id, key, {"user_id": user_id, "email": email})

    async def delete(self, tenant_id: str, key: str, user_id: str) -> Dict[str, Any]:
        self._inject("delete")
        replay = self._replay(tenant_id, key)
        if replay is not None:
            return replay
        record = self.records[tenant_id].get(user_id)
        if record is not None:
            record["deleted"] = True
        return self._apply("delete", tenant_id, key, {"user_id": user_id, "deleted": True})


class InMemoryStorageService(InMemoryDomainService):
    """Tenant storage quota and file objects."""

    service_name = "files"

    async def allocate(self, tenant_id: str, key: str, owner_id: str, quota_gb: int = 10) -> Dict[str, Any]:
        self._inject("allocate")
        replay = self._replay(tenant_id, key)
        if replay is not None:
            return replay
        bucket = f"bucket-{owner_id}"
        self.records[tenant_id][bucket] = {"bucket": bucket, "quota_gb": quota_gb, "released": False}
        return self._apply("allocate", tenant_id, key, {"bucket": bucket, "quota_gb": quota_gb})

    async def release(self, tenant_id: str, key: str, owner_id: str) -> Dict[str, Any]:
        self._inject("release")
        replay = self._replay(tenant_id, key)
        if replay is not None:
            return replay
        bucket = f"bucket-{owner_id}"
        record = self.records[tenant_id].get(bucket)
        if record is not None:
            record["released"] = True
        return self._apply("release", tenant_id, key, {"bucket": bucket, "released": True})

    async def store_file(self, tenant_id: str, key: str, filename: str, size_bytes: int) -> Dict[str, Any]:
        self._inject("store_file")
        replay = self._replay(tenant_id, key)
        if replay is not None:
            return replay
        if not filename:
            raise FatalActivityError("filename is required")
        file_id = self._derive_id("file", key)
        self.records[tenant_id][file_id] = {"file_id": file_id, "filename": filename, "size_bytes": size_bytes}
        return self._apply("store_file", tenant_id, key, {"file_id": file_id, "filename": filename})

    async def delete_file(self, tenant_id: str, key: str, file_id: str) -> Dict[str, Any]:
        self._inject("delete_file")
        replay = self._replay(tenant_id, key)
        if replay is not None:
            return replay
        self.records[tenant_id].pop(file_id, None)
        return self._apply("delete_file", tenant_id, key, {"file_id": file_id, "deleted": True})

    async def list_files(self, tenant_id: str) -> List[Dict[str, Any]]:
        return [dict(r) for r in self.records.get(tenant_id, {}).values() if "file_id" in r]


class InMemoryMembershipService(InMemoryDomainService):
    """Which tenant each user is currently acting in."""

    service_name = "memberships"

    def __init__(self):
        super().__init__()
        # user id -> tenants the user belongs to
        self.memberships: Dict[str, set] = defaultdict(set)
        self.active: Dict[str, str] = {}

    def add_member(self, user_id: str, tenant_id: str) -> None:
        self.memberships[user_id].add(tenant_id)
        self.active.setdefault(user_id, tenant_id)

    async def verify(self, tenant_id: str, user_id: str, target_tenant_id: str) -> Dict[str, Any]:
        self._inject("verify")
        if target_tenant_id not in self.memberships.get(user_id, set()):
            raise FatalActivityError(f"User {user_id} is not a member of tenant {target_tenant_id}")
        return {"user_id": user_id, "target_tenant_id": target_tenant_id, "member": True}

    async def switch_active(self, tenant_id: str, key: str, user_id: str, target_tenant_id: str) -> Dict[str, Any]:
        self._inject("switch_active")
        replay = self._replay(tenant_id, key)
        if replay is not None:
            return replay
        previous = self.active.get(user_id, tenant_id)
        self.active[user_id] = target_tenant_id
        return self._apply(
            "switch_active", tenant_id, key,
            {"user_id": user_id, "previous_tenant_id": previous, "active_tenant_id": target_tenant_id},
        )

    async def restore_active(self, tenant_id: str, key: str, user_id: str, previous_tenant_id: str) -> Dict[str, Any]:
        self._inject("restore_active")
        replay = self._replay(tenant_id, key)
        if replay is not None:
            return replay
        self.active[user_id] = previous_tenant_id
        return self._apply(
            "restore_active", tenant_id, key, {"user_id": user_id, "active_tenant_id": previous_tenant_id}
        )


class InMemoryEmailService(InMemoryDomainService):
    service_name = "email"

    def __init__(self):
        super().__init__()
        self.outbox: List[Dict[str, Any]] = []

    async def send(self, tenant_id: str, key: str, to: str, template: str, data: Optional[dict] = None) -> Dict[str, Any]:
        self._inject("send")
        replay = self._replay(tenant_id, key)
        if replay is not None:
            return replay
        if not to:
            raise FatalActivityError("Email recipient is required")
        message = {
            "message_id": self._derive_id("msg", key),
            "tenant_id": tenant_id,
            "to": to,
            "template": template,
            "data": dict(data or {}),
        }
        self.outbox.append(message)
        return self._apply("send", tenant_id, key, {"message_id": message["message_id"], "to": to})


@dataclass
class DomainServices:
    """The set of domain services wired into the built-in adapters."""

    tenants: InMemoryTenantService = field(default_factory=InMemoryTenantService)
    users: InMemoryUserService = field(default_factory=InMemoryUserService)
    storage: InMemoryStorageService = field(default_factory=InMemoryStorageService)
    memberships: InMemoryMembershipService = field(default_factory=InMemoryMembershipService)
    email: InMemoryEmailService = field(default_factory=InMemoryEmailService)
