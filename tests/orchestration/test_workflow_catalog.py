"""End-to-end runs of the built-in workflows over the in-memory domain services."""

import asyncio

import pytest

from core.domain.enums import CompensationStatus, ExecutionStatus
from core.domain.exceptions import AuthorizationError, FatalActivityError, RetryableActivityError
from orchestration import RetryPolicy, build_default_registry
from orchestration.catalog import VERIFY_POLICY


async def submit(core, method, path, payload, key, actor_id="alice"):
    result = await core.gateway.submit(core.request(method, path, payload, key=key, actor_id=actor_id))
    assert result.status_code == 202
    return result


async def finished(core, execution_id):
    await core.workers.drain()
    return await core.backend.get(execution_id)


@pytest.mark.asyncio
async def test_create_tenant_submitted_concurrently_runs_once(core):
    payload = {"name": "acme", "admin_email": "admin@acme.io", "quota_gb": 50}

    results = await asyncio.gather(
        *(submit(core, "POST", "/api/v1/tenants", payload, "onboard-acme") for _ in range(5))
    )
    execution_ids = {r.execution_id for r in results}
    assert len(execution_ids) == 1
    assert results[0].status_url == f"/executions/{results[0].execution_id}"

    execution = await finished(core, results[0].execution_id)

    assert execution.status == ExecutionStatus.COMPLETED
    tenant_id = execution.result["tenant_id"]
    assert execution.result == {
        "tenant_id": tenant_id,
        "admin_user_id": execution.result["admin_user_id"],
        "bucket": f"bucket-{tenant_id}",
    }
    assert core.services.tenants.effect_count("provision") == 1
    assert core.services.users.effect_count("create") == 1
    assert core.services.storage.effect_count("allocate") == 1
    assert [m["template"] for m in core.services.email.outbox] == ["tenant_welcome"]
    assert core.services.tenants.tenant_records("tenant-a")[tenant_id]["status"] == "active"


@pytest.mark.asyncio
async def test_create_tenant_with_bad_admin_email_deprovisions_tenant(core):
    result = await submit(core, "POST", "/api/v1/tenants", {"name": "acme", "admin_email": "nope"}, "bad-email")

    execution = await finished(core, result.execution_id)

    assert execution.status == ExecutionStatus.FAILED
    assert execution.failed_step == 1
    assert execution.compensation_status == CompensationStatus.COMPLETED
    records = core.services.tenants.tenant_records("tenant-a")
    assert [r["status"] for r in records.values()] == ["deleted"]
    assert core.services.email.outbox == []


@pytest.mark.asyncio
async def test_user_registration_rolls_back_user_when_storage_fails(core):
    core.services.storage.fail_next("allocate", FatalActivityError("storage quota exhausted"))
    result = await submit(core, "POST", "/api/v1/users", {"email": "dana@acme.io"}, "register-dana")

    execution = await finished(core, result.execution_id)

    assert execution.status == ExecutionStatus.FAILED
    assert execution.error == "storage quota exhausted"
    assert execution.compensation_status == CompensationStatus.COMPLETED
    users = list(core.services.users.tenant_records("tenant-a").values())
    assert len(users) == 1
    assert users[0]["deleted"] is True
    assert core.services.users.effect_count("delete") == 1


@pytest.mark.asyncio
async def test_user_registration_survives_transient_email_outage(core):
    core.services.email.fail_next("send", RetryableActivityError("smtp unavailable"))
    result = await submit(core, "POST", "/api/v1/users", {"email": "erin@acme.io"}, "register-erin")

    execution = await finished(core, result.execution_id)

    assert execution.status == ExecutionStatus.COMPLETED
    assert len(core.services.email.outbox) == 1
    invocations = await core.backend.list_invocations(execution.execution_id)
    email_attempts = [i.outcome for i in invocations if i.adapter_name == "email.send"]
    assert email_attempts == ["retryable_failure", "success"]


@pytest.mark.asyncio
async def test_switch_tenant_changes_active_tenant(core):
    core.services.memberships.add_member("bob", "tenant-a")
    core.services.memberships.add_member("bob", "tenant-b")
    payload = {"user_id": "bob", "target_tenant_id": "tenant-b"}

    result = await submit(core, "POST", "/api/v1/tenants/switch", payload, "switch-bob", actor_id="bob")
    execution = await finished(core, result.execution_id)

    assert execution.status == ExecutionStatus.COMPLETED
    assert core.services.memberships.active["bob"] == "tenant-b"


@pytest.mark.asyncio
async def test_switch_to_foreign_tenant_fails_verification(core):
    core.services.memberships.add_member("bob", "tenant-a")
    payload = {"user_id": "bob", "target_tenant_id": "tenant-z"}

    result = await submit(core, "POST", "/api/v1/tenants/switch", payload, "switch-away", actor_id="bob")
    execution = await finished(core, result.execution_id)

    assert execution.status == ExecutionStatus.FAILED
    assert execution.failed_step == 0
    assert core.services.memberships.active["bob"] == "tenant-a"


@pytest.mark.asyncio
async def test_terminate_tenant_reactivates_when_deprovision_fails(core):
    child = await core.services.tenants.provision("tenant-a", "seed", "globex")
    child_id = child["tenant_id"]
    core.services.tenants.fail_next("deprovision", FatalActivityError("tenant is under legal hold"))

    result = await submit(
        core, "DELETE", f"/api/v1/tenants/{child_id}", {"target_tenant_id": child_id}, "terminate-globex"
    )
    execution = await finished(core, result.execution_id)

    assert execution.status == ExecutionStatus.FAILED
    assert execution.failed_step == 2
    assert core.services.tenants.tenant_records("tenant-a")[child_id]["status"] == "active"
    assert core.services.tenants.effect_count("reactivate") == 1


@pytest.mark.asyncio
async def test_terminate_tenant_deletes_tenant(core):
    child = await core.services.tenants.provision("tenant-a", "seed", "initech")
    child_id = child["tenant_id"]

    result = await submit(
        core, "DELETE", f"/api/v1/tenants/{child_id}", {"target_tenant_id": child_id}, "terminate-initech"
    )
    execution = await finished(core, result.execution_id)

    assert execution.status == ExecutionStatus.COMPLETED
    assert core.services.tenants.tenant_records("tenant-a")[child_id]["status"] == "deleted"


@pytest.mark.asyncio
async def test_terminate_tenant_is_forbidden_for_members(core):
    with pytest.raises(AuthorizationError) as exc_info:
        await core.gateway.submit(
            core.request("DELETE", "/api/v1/tenants/tnt_1", {"target_tenant_id": "tnt_1"}, key="k", actor_id="bob")
        )

    assert exc_info.value.reason == AuthorizationError.FORBIDDEN
    assert await core.backend.list_executions() == []


@pytest.mark.asyncio
async def test_file_upload_stores_file_and_notifies(core):
    payload = {"filename": "q3-report.pdf", "size_bytes": 2048, "notify_email": "bob@acme.io"}

    result = await submit(core, "POST", "/api/v1/files/reports", payload, "upload-q3", actor_id="bob")
    execution = await finished(core, result.execution_id)

    assert execution.status == ExecutionStatus.COMPLETED
    files = await core.services.storage.list_files("tenant-a")
    assert [f["filename"] for f in files] == ["q3-report.pdf"]
    assert core.services.email.outbox[0]["template"] == "file_uploaded"


@pytest.mark.asyncio
async def test_failed_upload_notification_deletes_stored_file(core):
    payload = {"filename": "draft.txt", "size_bytes": 1}

    result = await submit(core, "POST", "/api/v1/files/drafts", payload, "upload-draft")
    execution = await finished(core, result.execution_id)

    # No notify_email: the notification step is rejected and the file is removed
    assert execution.status == ExecutionStatus.FAILED
    assert await core.services.storage.list_files("tenant-a") == []


def test_every_workflow_adapter_is_registered(core):
    for definition in core.workflows.all():
        core.adapters.ensure_registered(definition.adapter_names())


def test_unregistered_adapter_fails_fast(core):
    with pytest.raises(ValueError, match="tenant.teleport"):
        core.adapters.ensure_registered({"tenant.provision", "tenant.teleport"})


def test_retry_policy_backoff_is_capped():
    policy = RetryPolicy(initial_interval_seconds=1.0, backoff_coefficient=3.0, max_interval_seconds=5.0)

    assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 3.0, 5.0, 5.0]
    assert policy.delay_for(0) == 0.0
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)


def test_default_policy_override_keeps_explicit_policies():
    override = RetryPolicy(max_attempts=7)
    registry = build_default_registry(override)

    switch = registry.get("switch_tenant")
    assert switch.steps[0].retry_policy == VERIFY_POLICY
    assert switch.steps[1].retry_policy == override
    assert registry.get("create_tenant").build_result(
        [{"tenant_id": "t"}, {"user_id": "u"}, {"bucket": "b"}, {}]
    ) == {"tenant_id": "t", "admin_user_id": "u", "bucket": "b"}
