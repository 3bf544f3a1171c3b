"""Tests for TaskExecutor: run lifecycle, failure, and cancellation."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from cronberry.errors import ExecutionNotFound, MissingParam, StorageError
from cronberry.executor import RunContext, TaskExecutor
from cronberry.models import LogLevel, RunStatus, TaskRun
from cronberry.registry import TaskRegistry
from cronberry.store.memory import MemoryRunStore


class RecordingStore(MemoryRunStore):
    """MemoryRunStore that remembers every save_task_run snapshot."""

    def __init__(self) -> None:
        super().__init__()
        self.saves: list[tuple[int, RunStatus]] = []

    async def save_task_run(self, run: TaskRun) -> None:
        await super().save_task_run(run)
        self.saves.append((run.id, run.status))


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
async def executor(store: RecordingStore):
    ex = TaskExecutor(store)
    yield ex
    await ex.cancel_all()
    await ex.join(timeout=2)


def _task(body, schema=None):
    return TaskRegistry().register("task-a", body, schema if schema is not None else {"x": "int"})


async def ok_body(ctx: RunContext, params, logger) -> None:
    await logger.info("x is %d", params.get_int("x"))


async def failing_body(ctx: RunContext, params, logger) -> None:
    raise RuntimeError("boom")


async def sleepy_body(ctx: RunContext, params, logger) -> None:
    await asyncio.sleep(3600)


# -- Happy path ----------------------------------------------------------------


async def test_completed_run(executor: TaskExecutor, store: RecordingStore) -> None:
    run_id = await executor.execute_now(_task(ok_body), {"x": 3})
    assert await executor.join(timeout=2)

    run = await store.get_task_run_by_id(run_id)
    assert run.status is RunStatus.COMPLETED
    assert run.end_time is not None
    assert run.start_time <= run.end_time
    assert run.params == {"x": 3}
    assert store.saves == [(run_id, RunStatus.STARTED), (run_id, RunStatus.COMPLETED)]

    logs = await store.get_task_run_logs(run_id)
    assert [(e.level, e.message) for e in logs] == [(LogLevel.INFO, "x is 3")]


async def test_returns_id_before_body_runs(executor: TaskExecutor, store: RecordingStore) -> None:
    started = asyncio.Event()

    async def body(ctx, params, logger) -> None:
        started.set()

    run_id = await executor.execute_now(_task(body), {"x": 1})
    assert not started.is_set()
    assert executor.in_flight() == [run_id]
    run = await store.get_task_run_by_id(run_id)
    assert run.status is RunStatus.STARTED
    assert run.end_time is None

    await executor.join(timeout=2)
    assert started.is_set()
    assert executor.in_flight() == []


async def test_params_are_coerced_and_owned_by_run(
    executor: TaskExecutor, store: RecordingStore
) -> None:
    seen = {}

    async def body(ctx, params, logger) -> None:
        seen.update(params)
        params["x"] = 1000

    caller_params = {"x": "42"}
    run_id = await executor.execute_now(_task(body), caller_params)
    await executor.join(timeout=2)

    assert seen == {"x": 42}
    assert caller_params == {"x": "42"}
    assert (await store.get_task_run_by_id(run_id)).params == {"x": 42}


async def test_body_receives_context(executor: TaskExecutor) -> None:
    contexts: list[RunContext] = []

    async def body(ctx, params, logger) -> None:
        contexts.append(ctx)

    run_id = await executor.execute_now(_task(body, {}), {})
    await executor.join(timeout=2)

    assert contexts[0].run_id == run_id
    assert contexts[0].task_name == "task-a"
    assert contexts[0].is_cancelled is False


# -- Validation / storage failures at dispatch ---------------------------------


async def test_invalid_params_create_no_run(executor: TaskExecutor, store: RecordingStore) -> None:
    with pytest.raises(MissingParam):
        await executor.execute_now(_task(ok_body), {"y": 1})
    assert store.saves == []
    assert executor.in_flight() == []


async def test_start_save_failure_spawns_nothing() -> None:
    store = AsyncMock()
    store.save_task_run.side_effect = StorageError("db locked")
    executor = TaskExecutor(store)
    body = AsyncMock()

    async def wrapped(ctx, params, logger) -> None:
        await body()

    with pytest.raises(StorageError, match="db locked"):
        await executor.execute_now(_task(wrapped), {"x": 1})

    await asyncio.sleep(0)
    body.assert_not_awaited()
    assert executor.in_flight() == []


# -- Failing body --------------------------------------------------------------


async def test_failed_run_logs_error(executor: TaskExecutor, store: RecordingStore) -> None:
    run_id = await executor.execute_now(_task(failing_body), {"x": 1})
    await executor.join(timeout=2)

    run = await store.get_task_run_by_id(run_id)
    assert run.status is RunStatus.FAILED
    assert run.end_time is not None

    logs = await store.get_task_run_logs(run_id)
    errors = [e for e in logs if e.level is LogLevel.ERROR]
    assert len(errors) == 1
    assert "boom" in errors[0].message
    assert errors[0].message == "Task failed due to: boom"


async def test_terminal_save_failure_is_logged_not_raised(
    executor: TaskExecutor, store: RecordingStore, caplog: pytest.LogCaptureFixture
) -> None:
    original = store.save_task_run
    calls = 0

    async def flaky(run: TaskRun) -> None:
        nonlocal calls
        calls += 1
        if calls > 1:
            raise StorageError("gone")
        await original(run)

    store.save_task_run = flaky  # type: ignore[method-assign]

    run_id = await executor.execute_now(_task(ok_body), {"x": 1})
    assert await executor.join(timeout=2)

    assert "Unable to save terminal state" in caplog.text
    logs = await store.get_task_run_logs(run_id)
    assert logs[-1].level is LogLevel.ERROR
    assert logs[-1].message == "Unable to save task run due to: gone"
    assert executor.in_flight() == []


# -- Cancellation --------------------------------------------------------------


async def test_cancel_marks_run_cancelled(executor: TaskExecutor, store: RecordingStore) -> None:
    run_id = await executor.execute_now(_task(sleepy_body), {"x": 1})
    await asyncio.sleep(0.05)

    await executor.cancel(run_id)
    assert await executor.join(timeout=2)

    run = await store.get_task_run_by_id(run_id)
    assert run.status is RunStatus.CANCELLED
    assert run.end_time is not None
    assert run.start_time <= run.end_time
    assert all(status is not RunStatus.COMPLETED for _, status in store.saves)


async def test_cancel_twice(executor: TaskExecutor) -> None:
    run_id = await executor.execute_now(_task(sleepy_body), {"x": 1})
    await executor.cancel(run_id)
    with pytest.raises(ExecutionNotFound) as exc_info:
        await executor.cancel(run_id)
    assert exc_info.value.run_id == run_id


async def test_cancel_unknown_run(executor: TaskExecutor) -> None:
    with pytest.raises(ExecutionNotFound):
        await executor.cancel(404)


async def test_cancel_after_completion(executor: TaskExecutor) -> None:
    run_id = await executor.execute_now(_task(ok_body), {"x": 1})
    await executor.join(timeout=2)
    with pytest.raises(ExecutionNotFound):
        await executor.cancel(run_id)


async def test_finished_body_cannot_be_cancelled(store: RecordingStore) -> None:
    release = asyncio.Event()
    logging_error = asyncio.Event()
    original = store.save_task_run_log

    async def slow_log(entry) -> None:
        logging_error.set()
        await release.wait()
        await original(entry)

    store.save_task_run_log = slow_log  # type: ignore[method-assign]
    executor = TaskExecutor(store)

    run_id = await executor.execute_now(_task(failing_body), {"x": 1})
    await asyncio.wait_for(logging_error.wait(), timeout=2)

    assert executor.in_flight() == []
    with pytest.raises(ExecutionNotFound):
        await executor.cancel(run_id)

    release.set()
    assert await executor.wait(run_id, timeout=2)
    run = await store.get_task_run_by_id(run_id)
    assert run.status is RunStatus.FAILED
    assert (await store.get_task_run_logs(run_id))[0].message == "Task failed due to: boom"


# -- Waiting -------------------------------------------------------------------


async def test_wait_for_single_run(executor: TaskExecutor, store: RecordingStore) -> None:
    gate = asyncio.Event()

    async def gated(ctx: RunContext, params, logger) -> None:
        await gate.wait()

    slow_id = await executor.execute_now(_task(gated), {"x": 1})
    fast_id = await executor.execute_now(_task(ok_body), {"x": 2})

    assert await executor.wait(fast_id, timeout=2)
    assert (await store.get_task_run_by_id(fast_id)).status is RunStatus.COMPLETED

    assert await executor.wait(slow_id, timeout=0.05) is False
    assert (await store.get_task_run_by_id(slow_id)).status is RunStatus.STARTED

    gate.set()
    assert await executor.wait(slow_id, timeout=2)
    assert (await store.get_task_run_by_id(slow_id)).status is RunStatus.COMPLETED


async def test_wait_unknown_run_returns_immediately(executor: TaskExecutor) -> None:
    assert await executor.wait(404, timeout=0.01)


async def test_body_error_after_cancel_is_cancelled(
    executor: TaskExecutor, store: RecordingStore
) -> None:
    async def body(ctx: RunContext, params, logger) -> None:
        try:
            await ctx.wait_cancelled()
        except asyncio.CancelledError:
            pass
        raise RuntimeError("context cancelled")

    run_id = await executor.execute_now(_task(body), {"x": 1})
    await asyncio.sleep(0.05)
    await executor.cancel(run_id)
    await executor.join(timeout=2)

    run = await store.get_task_run_by_id(run_id)
    assert run.status is RunStatus.CANCELLED
    logs = await store.get_task_run_logs(run_id)
    assert not [e for e in logs if e.level is LogLevel.ERROR]


async def test_body_ignoring_cancellation_completes(
    executor: TaskExecutor, store: RecordingStore
) -> None:
    release = asyncio.Event()

    async def stubborn(ctx: RunContext, params, logger) -> None:
        while True:
            try:
                await release.wait()
                return
            except asyncio.CancelledError:
                continue

    run_id = await executor.execute_now(_task(stubborn), {"x": 1})
    await asyncio.sleep(0.05)
    await executor.cancel(run_id)
    release.set()
    await executor.join(timeout=2)

    run = await store.get_task_run_by_id(run_id)
    assert run.status is RunStatus.COMPLETED


async def test_cancel_storage_error_propagates() -> None:
    store = AsyncMock()

    async def assign_id(run: TaskRun) -> None:
        run.id = 1

    store.save_task_run.side_effect = assign_id
    store.get_task_run_by_id.side_effect = StorageError("offline")
    ex = TaskExecutor(store)

    run_id = await ex.execute_now(_task(sleepy_body), {"x": 1})
    with pytest.raises(StorageError, match="offline"):
        await ex.cancel(run_id)
    assert ex.in_flight() == []
    await ex.join(timeout=2)


async def test_cancel_all(executor: TaskExecutor, store: RecordingStore) -> None:
    ids = [await executor.execute_now(_task(sleepy_body), {"x": i}) for i in range(3)]
    await asyncio.sleep(0.05)

    assert await executor.cancel_all() == 3
    assert executor.in_flight() == []
    await executor.join(timeout=2)
    for run_id in ids:
        assert (await store.get_task_run_by_id(run_id)).status is RunStatus.CANCELLED


async def test_cancel_all_swallows_storage_errors() -> None:
    store = AsyncMock()

    async def assign_id(run: TaskRun) -> None:
        run.id = 1

    store.save_task_run.side_effect = assign_id
    store.get_task_run_by_id.side_effect = StorageError("offline")
    ex = TaskExecutor(store)
    await ex.execute_now(_task(sleepy_body), {"x": 1})

    assert await ex.cancel_all() == 1
    await ex.join(timeout=2)
