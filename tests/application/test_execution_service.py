"""Tests for ExecutionStatusService."""

from datetime import timedelta

import pytest

from core.domain.exceptions import AuthorizationError, ExecutionNotFoundError, FatalActivityError
from core.domain.value_objects import ExecutionID

USER_PAYLOAD = {"email": "dana@acme.io"}


async def start_registration(core, key="reg-dana"):
    return await core.dispatcher.start(await core.context(), "user_registration", USER_PAYLOAD, key)


@pytest.mark.asyncio
async def test_status_of_pending_and_completed_execution(core):
    execution_id = await start_registration(core)

    pending = await core.status.get_status(str(execution_id), "tenant-a", "alice")
    assert pending.status == "pending"
    assert pending.step_cursor == 0
    assert pending.finished_at is None

    await core.workers.drain()
    done = await core.status.get_status(str(execution_id), "tenant-a", "alice")

    assert done.status == "completed"
    assert done.step_cursor == 3
    assert set(done.result) == {"create_user", "allocate_storage", "send_welcome_email"}
    assert done.to_dict()["finished_at"] is not None


@pytest.mark.asyncio
async def test_history_lists_attempts_and_compensations(core):
    core.services.email.fail_next("send", FatalActivityError("mailbox rejected"))
    execution_id = await start_registration(core)
    await core.workers.drain()

    history = await core.status.get_history(str(execution_id), "tenant-a", "alice")

    assert history.status.status == "failed"
    assert history.status.last_error == "mailbox rejected"
    assert [i.adapter_name for i in history.invocations] == [
        "user.create",
        "storage.allocate",
        "email.send",
        "storage.release",
        "user.delete",
    ]
    assert [i.is_compensation for i in history.invocations] == [False, False, False, True, True]
    assert sorted((c.step_index, c.status) for c in history.compensations) == [
        (0, "completed"),
        (1, "completed"),
    ]
    assert history.to_dict()["execution"]["compensation_status"] == "completed"


@pytest.mark.asyncio
async def test_unknown_malformed_and_foreign_ids_are_not_found(core):
    execution_id = await start_registration(core)

    with pytest.raises(ExecutionNotFoundError):
        await core.status.get_status(str(ExecutionID.generate()), "tenant-a", "alice")
    with pytest.raises(ExecutionNotFoundError, match="Malformed"):
        await core.status.get_status("not-a-uuid", "tenant-a", "alice")
    with pytest.raises(ExecutionNotFoundError):
        await core.status.get_history(str(execution_id), "tenant-b", "alice")


@pytest.mark.asyncio
async def test_cancel_terminal_execution_is_rejected(core):
    execution_id = await start_registration(core)
    await core.workers.drain()

    result = await core.status.cancel(str(execution_id), "tenant-a", "alice")

    assert result.accepted is False
    assert result.status == "completed"
    assert result.to_dict()["result"] == "rejected"


@pytest.mark.asyncio
async def test_cancel_running_execution_sets_flag(core):
    execution_id = await start_registration(core)
    claimed = await core.backend.claim("worker-x", timedelta(seconds=30))
    claimed.mark_running()
    await core.backend.save(claimed)

    result = await core.status.cancel(str(execution_id), "tenant-a", "alice")

    assert result.accepted is True
    assert result.status == "running"
    assert (await core.status.get_status(str(execution_id), "tenant-a", "alice")).cancel_requested is True


@pytest.mark.asyncio
async def test_list_executions_filters_by_tenant(core):
    await start_registration(core, "a-1")
    await start_registration(core, "a-2")
    other = await core.context(tenant_id="tenant-b")
    await core.dispatcher.start(other, "user_registration", USER_PAYLOAD, "b-1")

    assert len(await core.status.list_executions(tenant_id="tenant-a")) == 2
    assert len(await core.status.list_executions()) == 3


@pytest.mark.asyncio
async def test_overdue_executions_are_alerted_but_left_running(core):
    execution_id = await start_registration(core)

    assert await core.status.check_overdue() == []

    # Any pending execution is older than a zero-second limit
    overdue = await core.status.check_overdue(max_age_seconds=0)
    assert [str(item.execution.execution_id) for item in overdue] == [str(execution_id)]
    assert overdue[0].age_seconds >= 0
    alerts = core.alerts.get_alerts("overdue_execution")
    assert alerts[0]["execution_id"] == str(execution_id)
    assert (await core.status.get_status(str(execution_id), "tenant-a", "alice")).status == "pending"


@pytest.mark.asyncio
async def test_status_and_cancel_require_a_tenant_context(core):
    execution_id = await start_registration(core)

    for tenant_id, actor_id in [("", "alice"), ("tenant-a", ""), ("tenant-a", "mallory")]:
        with pytest.raises(AuthorizationError) as exc_info:
            await core.status.cancel(str(execution_id), tenant_id, actor_id)
        assert exc_info.value.reason == AuthorizationError.UNAUTHORIZED
    with pytest.raises(AuthorizationError):
        await core.status.get_status(str(execution_id), "", "")

    assert (await core.backend.get(execution_id)).cancel_requested is False


@pytest.mark.asyncio
async def test_cancel_requires_the_workflow_permission(core):
    execution_id = await start_registration(core)

    with pytest.raises(AuthorizationError) as exc_info:
        await core.status.cancel(str(execution_id), "tenant-a", "carol")

    assert exc_info.value.reason == AuthorizationError.FORBIDDEN
    assert (await core.backend.get(execution_id)).status.value == "pending"
    # Reading is open to every member of the tenant
    assert (await core.status.get_status(str(execution_id), "tenant-a", "carol")).status == "pending"


@pytest.mark.asyncio
async def test_foreign_tenant_cannot_cancel(core):
    execution_id = await start_registration(core)

    with pytest.raises(ExecutionNotFoundError):
        await core.status.cancel(str(execution_id), "tenant-b", "alice")

    assert (await core.backend.get(execution_id)).cancel_requested is False
