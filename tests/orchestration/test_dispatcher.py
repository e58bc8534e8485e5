"""Tests for WorkflowDispatcher - one execution per (tenant, idempotency key)."""

import asyncio

import pytest

from core.domain.enums import ExecutionStatus
from core.domain.exceptions import ClassificationError, DispatcherError
from core.domain.value_objects import ExecutionID
from orchestration import WorkflowDispatcher

TENANT_PAYLOAD = {"name": "acme", "admin_email": "admin@acme.io"}


@pytest.mark.asyncio
async def test_concurrent_submissions_share_one_execution(core):
    context = await core.context()

    ids = await asyncio.gather(
        *(core.dispatcher.start(context, "create_tenant", TENANT_PAYLOAD, "same-key") for _ in range(10))
    )

    assert len(set(ids)) == 1
    assert ids[0] == ExecutionID.from_idempotency_key("tenant-a", "same-key")
    executions = await core.backend.list_executions(tenant_id="tenant-a")
    assert len(executions) == 1
    assert executions[0].status == ExecutionStatus.PENDING


@pytest.mark.asyncio
async def test_resubmitting_finished_execution_returns_it_without_rerunning(core):
    context = await core.context()
    execution_id = await core.dispatcher.start(context, "create_tenant", TENANT_PAYLOAD, "done-key")
    await core.workers.drain()
    assert (await core.backend.get(execution_id)).status == ExecutionStatus.COMPLETED

    # A fresh dispatcher has an empty index and must fall back to the backend
    restarted = WorkflowDispatcher(core.backend, core.workflows)
    assert await restarted.start(context, "create_tenant", TENANT_PAYLOAD, "done-key") == execution_id
    assert await core.workers.run_once() is None
    assert core.services.tenants.effect_count("provision") == 1


@pytest.mark.asyncio
async def test_key_reused_for_other_operation_is_rejected(core):
    context = await core.context()
    await core.dispatcher.start(context, "create_tenant", TENANT_PAYLOAD, "shared-key")

    with pytest.raises(ClassificationError, match="already used for create_tenant"):
        await core.dispatcher.start(context, "file_upload", {"filename": "a.txt"}, "shared-key")

    restarted = WorkflowDispatcher(core.backend, core.workflows)
    with pytest.raises(ClassificationError):
        await restarted.start(context, "file_upload", {"filename": "a.txt"}, "shared-key")


@pytest.mark.asyncio
async def test_unknown_operation_and_missing_key_are_rejected(core):
    context = await core.context()

    with pytest.raises(ClassificationError, match="Unknown operation type"):
        await core.dispatcher.start(context, "launch_rocket", {}, "k")
    with pytest.raises(ClassificationError, match="idempotency key"):
        await core.dispatcher.start(context, "create_tenant", TENANT_PAYLOAD, None)

    assert await core.backend.list_executions() == []


@pytest.mark.asyncio
async def test_backend_failure_is_reported_and_safe_to_resubmit(core):
    context = await core.context()
    core.backend.fail_creates = True

    with pytest.raises(DispatcherError):
        await core.dispatcher.start(context, "create_tenant", TENANT_PAYLOAD, "flaky-key")
    assert core.dispatcher.indexed("tenant-a", "flaky-key") is None

    core.backend.fail_creates = False
    execution_id = await core.dispatcher.start(context, "create_tenant", TENANT_PAYLOAD, "flaky-key")
    assert (await core.backend.get(execution_id)).status == ExecutionStatus.PENDING


@pytest.mark.asyncio
async def test_same_key_in_different_tenants_gives_different_executions(core):
    first = await core.dispatcher.start(await core.context(), "create_tenant", TENANT_PAYLOAD, "k-1")
    second = await core.dispatcher.start(
        await core.context(tenant_id="tenant-b"), "create_tenant", TENANT_PAYLOAD, "k-1"
    )

    assert first != second
    assert (await core.backend.get(second)).tenant_id == "tenant-b"


@pytest.mark.asyncio
async def test_rebuild_index_restores_in_flight_executions_only(core):
    context = await core.context()
    pending = await core.dispatcher.start(context, "create_tenant", TENANT_PAYLOAD, "pending-key")
    cancelled = await core.dispatcher.start(context, "file_upload", {"filename": "x"}, "cancelled-key")
    await core.status.cancel(str(cancelled), "tenant-a", "alice")

    restarted = WorkflowDispatcher(core.backend, core.workflows)
    assert await restarted.rebuild_index() == 1
    assert restarted.indexed("tenant-a", "pending-key") == pending
    assert restarted.indexed("tenant-a", "cancelled-key") is None


@pytest.mark.asyncio
async def test_finished_executions_leave_the_index(core):
    context = await core.context()
    execution_id = await core.dispatcher.start(context, "create_tenant", TENANT_PAYLOAD, "finish-key")
    assert core.dispatcher.indexed("tenant-a", "finish-key") == execution_id

    await core.workers.drain()

    assert core.dispatcher.indexed("tenant-a", "finish-key") is None
    assert core.dispatcher.index_size() == 0
    # The deterministic id still answers the resubmission
    assert await core.dispatcher.start(context, "create_tenant", TENANT_PAYLOAD, "finish-key") == execution_id
    assert core.dispatcher.index_size() == 0
    assert await core.workers.run_once() is None


@pytest.mark.asyncio
async def test_submission_locks_are_released(core):
    context = await core.context()

    await asyncio.gather(
        *(core.dispatcher.start(context, "create_tenant", TENANT_PAYLOAD, f"key-{i % 3}") for i in range(9))
    )

    assert core.dispatcher.pending_submissions() == 0
    assert core.dispatcher.index_size() == 3


@pytest.mark.asyncio
async def test_index_is_bounded(core):
    dispatcher = WorkflowDispatcher(core.backend, core.workflows, max_index_entries=2)
    context = await core.context()

    first = await dispatcher.start(context, "create_tenant", TENANT_PAYLOAD, "k-1")
    await dispatcher.start(context, "create_tenant", TENANT_PAYLOAD, "k-2")
    await dispatcher.start(context, "create_tenant", TENANT_PAYLOAD, "k-3")

    assert dispatcher.index_size() == 2
    assert dispatcher.indexed("tenant-a", "k-1") is None
    assert await dispatcher.start(context, "create_tenant", TENANT_PAYLOAD, "k-1") == first
    assert len(await core.backend.list_executions(tenant_id="tenant-a")) == 3
