"""Tests for SagaCoordinator - step sequencing, retry and compensation."""

import asyncio
from datetime import timedelta

import pytest

from core.domain.enums import CompensationStatus, ExecutionStatus
from core.domain.exceptions import FatalActivityError, RetryableActivityError
from core.domain.value_objects import FatalFailure, RetryableFailure, Success
from orchestration import AdapterRegistry, RetryPolicy, WorkflowDefinition, WorkflowRegistry, WorkflowStep

FAST = RetryPolicy(max_attempts=3, initial_interval_seconds=0.0, attempt_timeout_seconds=5.0)


class CallLog:
    """Records every adapter call in order."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, int]] = []

    def count(self, name: str) -> int:
        return sum(1 for called, _ in self.calls if called == name)


def ok(log: CallLog, name: str, value=None):
    async def adapter(tenant_id, execution_id, step_index, input_):
        log.calls.append((name, step_index))
        return Success(value if value is not None else {"step": name})
    return adapter


def fatal(log: CallLog, name: str):
    async def adapter(tenant_id, execution_id, step_index, input_):
        log.calls.append((name, step_index))
        raise FatalActivityError(f"{name} rejected the input")
    return adapter


def always_retryable(log: CallLog, name: str):
    async def adapter(tenant_id, execution_id, step_index, input_):
        log.calls.append((name, step_index))
        return RetryableFailure(f"{name} is unavailable")
    return adapter


def workflow(operation_type: str, *steps: WorkflowStep, high_privilege: bool = False) -> WorkflowRegistry:
    registry = WorkflowRegistry()
    registry.register(
        WorkflowDefinition(
            operation_type=operation_type,
            resource="workflows",
            action="run",
            high_privilege=high_privilege,
            steps=steps,
        )
    )
    return registry


async def submit_and_run(core, operation_type: str, payload=None, key="key-1"):
    context = await core.context()
    execution_id = await core.dispatcher.start(context, operation_type, payload or {}, key)
    await core.workers.drain()
    return await core.backend.get(execution_id)


@pytest.mark.asyncio
async def test_fatal_second_step_compensates_first_and_skips_third(make_core):
    """Step 2 fails fatally: step 1 is compensated, step 3 never runs."""
    log = CallLog()
    adapters = AdapterRegistry()
    adapters.register("one", ok(log, "one"))
    adapters.register("undo_one", ok(log, "undo_one"))
    adapters.register("two", fatal(log, "two"))
    adapters.register("three", ok(log, "three"))

    core = make_core(
        workflows=workflow(
            "three_steps",
            WorkflowStep("one", "one", compensation="undo_one", retry_policy=FAST),
            WorkflowStep("two", "two", retry_policy=FAST),
            WorkflowStep("three", "three", retry_policy=FAST),
        ),
        adapters=adapters,
    )

    execution = await submit_and_run(core, "three_steps")

    assert execution.status == ExecutionStatus.FAILED
    assert execution.compensation_status == CompensationStatus.COMPLETED
    assert execution.failed_step == 1
    assert "rejected" in execution.error
    assert log.calls == [("one", 0), ("two", 1), ("undo_one", 0)]
    assert log.count("three") == 0

    invocations = await core.backend.list_invocations(execution.execution_id)
    # Fatal failures are never retried
    assert [(i.adapter_name, i.attempt, i.outcome) for i in invocations] == [
        ("one", 1, "success"),
        ("two", 1, "fatal_failure"),
        ("undo_one", 1, "success"),
    ]
    assert invocations[-1].is_compensation is True


@pytest.mark.asyncio
async def test_compensations_run_in_reverse_order(make_core):
    log = CallLog()
    adapters = AdapterRegistry()
    for name in ("a", "b", "c"):
        adapters.register(name, ok(log, name))
        adapters.register(f"undo_{name}", ok(log, f"undo_{name}"))
    adapters.register("boom", fatal(log, "boom"))

    core = make_core(
        workflows=workflow(
            "reverse",
            WorkflowStep("a", "a", compensation="undo_a", retry_policy=FAST),
            WorkflowStep("b", "b", compensation="undo_b", retry_policy=FAST),
            WorkflowStep("c", "c", compensation="undo_c", retry_policy=FAST),
            WorkflowStep("boom", "boom", retry_policy=FAST),
        ),
        adapters=adapters,
    )

    execution = await submit_and_run(core, "reverse")

    undo_calls = [name for name, _ in log.calls if name.startswith("undo_")]
    assert undo_calls == ["undo_c", "undo_b", "undo_a"]
    assert execution.status == ExecutionStatus.FAILED
    records = await core.backend.list_compensations(execution.execution_id)
    assert {r.step_index: r.status for r in records} == {
        0: CompensationStatus.COMPLETED,
        1: CompensationStatus.COMPLETED,
        2: CompensationStatus.COMPLETED,
    }


@pytest.mark.asyncio
async def test_exhausted_compensation_fails_execution_and_skips_the_rest(make_core):
    """A compensation that exhausts its retries never ends COMPLETED."""
    log = CallLog()
    adapters = AdapterRegistry()
    adapters.register("a", ok(log, "a"))
    adapters.register("undo_a", ok(log, "undo_a"))
    adapters.register("b", ok(log, "b"))
    adapters.register("undo_b", always_retryable(log, "undo_b"))
    adapters.register("boom", fatal(log, "boom"))

    core = make_core(
        workflows=workflow(
            "broken_rollback",
            WorkflowStep("a", "a", compensation="undo_a", retry_policy=FAST),
            WorkflowStep("b", "b", compensation="undo_b", retry_policy=FAST, compensation_retry_policy=FAST),
            WorkflowStep("boom", "boom", retry_policy=FAST),
        ),
        adapters=adapters,
    )

    execution = await submit_and_run(core, "broken_rollback")

    assert execution.status == ExecutionStatus.FAILED
    assert execution.status != ExecutionStatus.COMPLETED
    assert execution.compensation_status == CompensationStatus.FAILED
    assert "undo_b" in execution.compensation_error
    assert execution.last_error == execution.compensation_error
    # The original failure stays recorded next to the rollback failure
    assert "boom" in execution.error

    assert log.count("undo_b") == 3
    assert log.count("undo_a") == 0

    records = {r.step_index: r for r in await core.backend.list_compensations(execution.execution_id)}
    assert records[1].status == CompensationStatus.FAILED
    assert records[1].attempts == 3
    assert records[0].status == CompensationStatus.SKIPPED

    alerts = core.alerts.get_alerts("compensation_failure")
    assert len(alerts) == 1
    assert alerts[0]["execution_id"] == str(execution.execution_id)


@pytest.mark.asyncio
async def test_retryable_failures_back_off_then_succeed(make_core):
    attempts = {"n": 0}

    async def flaky(tenant_id, execution_id, step_index, input_):
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise RetryableActivityError("connection reset")
        if attempts["n"] == 2:
            raise ValueError("unexpected glitch")
        return Success({"ok": True})

    policy = RetryPolicy(max_attempts=4, initial_interval_seconds=0.5, backoff_coefficient=2.0, max_interval_seconds=0.8)
    adapters = AdapterRegistry()
    adapters.register("flaky", flaky)
    core = make_core(workflows=workflow("flaky_flow", WorkflowStep("flaky", "flaky", retry_policy=policy)), adapters=adapters)

    execution = await submit_and_run(core, "flaky_flow")

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.result == {"flaky": {"ok": True}}
    assert attempts["n"] == 3
    assert core.sleep.delays == [0.5, 0.8]

    invocations = await core.backend.list_invocations(execution.execution_id)
    assert [i.outcome for i in invocations] == ["retryable_failure", "retryable_failure", "success"]
    assert "ValueError" in invocations[1].error
    assert invocations[0].retry_policy["max_attempts"] == 4


@pytest.mark.asyncio
async def test_attempt_timeout_is_retried_and_recorded(make_core):
    async def slow(tenant_id, execution_id, step_index, input_):
        await asyncio.sleep(1)
        return Success()

    policy = RetryPolicy(max_attempts=2, initial_interval_seconds=0.0, attempt_timeout_seconds=0.01)
    adapters = AdapterRegistry()
    adapters.register("slow", slow)
    core = make_core(workflows=workflow("slow_flow", WorkflowStep("slow", "slow", retry_policy=policy)), adapters=adapters)

    execution = await submit_and_run(core, "slow_flow")

    assert execution.status == ExecutionStatus.FAILED
    invocations = await core.backend.list_invocations(execution.execution_id)
    assert [i.outcome for i in invocations] == ["timeout", "timeout"]
    # Nothing to roll back, so the rollback trivially completed
    assert execution.compensation_status == CompensationStatus.COMPLETED


@pytest.mark.asyncio
async def test_adapter_returning_non_outcome_is_fatal(make_core):
    async def sloppy(tenant_id, execution_id, step_index, input_):
        return {"not": "an outcome"}

    adapters = AdapterRegistry()
    adapters.register("sloppy", sloppy)
    core = make_core(workflows=workflow("sloppy_flow", WorkflowStep("sloppy", "sloppy", retry_policy=FAST)), adapters=adapters)

    execution = await submit_and_run(core, "sloppy_flow")

    assert execution.status == ExecutionStatus.FAILED
    invocations = await core.backend.list_invocations(execution.execution_id)
    assert len(invocations) == 1
    assert invocations[0].outcome == "fatal_failure"


@pytest.mark.asyncio
async def test_fatal_failure_outcome_is_not_retried(make_core):
    calls = {"n": 0}

    async def rejecting(tenant_id, execution_id, step_index, input_):
        calls["n"] += 1
        return FatalFailure("quota exceeded")

    adapters = AdapterRegistry()
    adapters.register("rejecting", rejecting)
    core = make_core(
        workflows=workflow("reject_flow", WorkflowStep("rejecting", "rejecting", retry_policy=FAST)),
        adapters=adapters,
    )

    execution = await submit_and_run(core, "reject_flow")

    assert calls["n"] == 1
    assert execution.error == "quota exceeded"


@pytest.mark.asyncio
async def test_cancel_during_last_step_completes_step_then_cancels(make_core):
    """The in-flight step finishes; completed steps are compensated; final state CANCELLED."""
    log = CallLog()
    holder = {}

    async def last(tenant_id, execution_id, step_index, input_):
        log.calls.append(("last", step_index))
        await holder["core"].status.cancel(str(execution_id), "tenant-a", "alice")
        return Success({"finished": True})

    adapters = AdapterRegistry()
    adapters.register("first", ok(log, "first"))
    adapters.register("undo_first", ok(log, "undo_first"))
    adapters.register("last", last)
    core = make_core(
        workflows=workflow(
            "cancel_flow",
            WorkflowStep("first", "first", compensation="undo_first", retry_policy=FAST),
            WorkflowStep("last", "last", retry_policy=FAST),
        ),
        adapters=adapters,
    )
    holder["core"] = core

    execution = await submit_and_run(core, "cancel_flow")

    assert execution.status == ExecutionStatus.CANCELLED
    assert execution.step_cursor == 2
    assert execution.step_outputs[1] == {"finished": True}
    assert execution.compensation_status == CompensationStatus.COMPLETED
    assert log.calls == [("first", 0), ("last", 1), ("undo_first", 0)]

    invocations = await core.backend.list_invocations(execution.execution_id)
    assert invocations[1].outcome == "success"


@pytest.mark.asyncio
async def test_cancel_with_nothing_to_roll_back_cancels_directly(make_core):
    holder = {}

    async def only(tenant_id, execution_id, step_index, input_):
        await holder["core"].status.cancel(str(execution_id), "tenant-a", "alice")
        return Success()

    adapters = AdapterRegistry()
    adapters.register("only", only)
    core = make_core(workflows=workflow("single", WorkflowStep("only", "only", retry_policy=FAST)), adapters=adapters)
    holder["core"] = core

    execution = await submit_and_run(core, "single")

    assert execution.status == ExecutionStatus.CANCELLED
    assert execution.compensation_status is None


@pytest.mark.asyncio
async def test_resumes_from_persisted_cursor(make_core):
    log = CallLog()
    adapters = AdapterRegistry()
    adapters.register("one", ok(log, "one"))
    adapters.register("two", ok(log, "two"))
    core = make_core(
        workflows=workflow(
            "resumable",
            WorkflowStep("one", "one", retry_policy=FAST),
            WorkflowStep("two", "two", retry_policy=FAST),
        ),
        adapters=adapters,
    )

    context = await core.context()
    execution_id = await core.dispatcher.start(context, "resumable", {}, "resume-key")
    claimed = await core.backend.claim("crashed-worker", lease=timedelta(seconds=30))
    # Simulate a worker that finished step one and then died
    claimed.mark_running()
    claimed.record_step_success({"step": "one"})
    await core.backend.save(claimed)

    execution = await core.coordinator.run(await core.backend.get(execution_id))

    assert execution.status == ExecutionStatus.COMPLETED
    assert log.calls == [("two", 1)]
    assert execution.result == {"one": {"step": "one"}, "two": {"step": "two"}}


@pytest.mark.asyncio
async def test_revoked_membership_fails_high_privilege_workflow_before_next_step(make_core):
    """High-privilege workflows re-check the store before every step."""
    log = CallLog()
    holder = {}

    async def first(tenant_id, execution_id, step_index, input_):
        log.calls.append(("first", step_index))
        holder["core"].authz.remove_member(tenant_id, "alice")
        return Success({"done": 1})

    adapters = AdapterRegistry()
    adapters.register("first", first)
    adapters.register("undo_first", ok(log, "undo_first"))
    adapters.register("second", ok(log, "second"))
    core = make_core(
        workflows=workflow(
            "guarded",
            WorkflowStep("first", "first", compensation="undo_first", retry_policy=FAST),
            WorkflowStep("second", "second", retry_policy=FAST),
            high_privilege=True,
        ),
        adapters=adapters,
    )
    holder["core"] = core

    execution = await submit_and_run(core, "guarded")

    assert execution.status == ExecutionStatus.FAILED
    assert execution.failed_step == 1
    assert "Tenant context invalid" in execution.error
    assert log.count("second") == 0
    assert log.count("undo_first") == 1


@pytest.mark.asyncio
async def test_lifecycle_events_are_published(make_core):
    log = CallLog()
    adapters = AdapterRegistry()
    adapters.register("one", ok(log, "one"))
    core = make_core(workflows=workflow("evented", WorkflowStep("one", "one", retry_policy=FAST)), adapters=adapters)

    seen = []

    async def record(event):
        seen.append(event.name)

    for name in ("execution.started", "execution.step.started", "execution.step.succeeded", "execution.completed"):
        core.event_bus.subscribe(name, record)

    execution = await submit_and_run(core, "evented")

    assert execution.status == ExecutionStatus.COMPLETED
    assert seen == [
        "execution.started",
        "execution.step.started",
        "execution.step.succeeded",
        "execution.completed",
    ]


@pytest.mark.asyncio
async def test_unknown_adapter_fails_without_invocation(make_core):
    adapters = AdapterRegistry()
    core = make_core(workflows=workflow("missing", WorkflowStep("ghost", "ghost", retry_policy=FAST)), adapters=adapters)

    execution = await submit_and_run(core, "missing")

    assert execution.status == ExecutionStatus.FAILED
    assert "ghost" in execution.error
    assert await core.backend.list_invocations(execution.execution_id) == []
