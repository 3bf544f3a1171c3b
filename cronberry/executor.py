"""TaskExecutor: dispatches runs and drives them to a terminal state."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from cronberry.errors import ExecutionNotFound
from cronberry.models import RunStatus, TaskRun, utcnow
from cronberry.params import TaskParams
from cronberry.runlog import RunLogger

if TYPE_CHECKING:
    from collections.abc import Mapping

    from cronberry.registry import Task
    from cronberry.store.base import RunStore

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """Cancellation handle passed to every task body.

    Cancelling a run sets :attr:`cancelled` and cancels the asyncio task
    running the body, so ``CancelledError`` surfaces at the body's next
    ``await``. Bodies that shield themselves should poll :attr:`is_cancelled`
    or await :meth:`wait_cancelled` alongside their own work.
    """

    run_id: int
    task_name: str
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled.is_set()

    async def wait_cancelled(self) -> None:
        await self.cancelled.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled.is_set():
            raise asyncio.CancelledError


@dataclass
class _InFlight:
    task: asyncio.Task
    context: RunContext

    def signal(self) -> None:
        self.context.cancelled.set()
        self.task.cancel(msg=f"run {self.context.run_id} cancelled")


class TaskExecutor:
    """Spawns task runs and tracks their cancellation handles.

    Args:
        store: RunStore receiving the run records and logs.
        sink: Logger that run log lines are mirrored to.
    """

    def __init__(self, store: RunStore, sink: logging.Logger | None = None) -> None:
        self._store = store
        self._sink = sink
        self._in_flight: dict[int, _InFlight] = {}
        self._lock = threading.RLock()
        self._spawned: dict[int, asyncio.Task] = {}

    async def execute_now(self, task: Task, params: Mapping[str, Any]) -> int:
        """Validate, persist a ``started`` run, spawn the body, and return the run id.

        Validation and storage errors propagate and nothing is spawned.
        """
        snapshot = TaskParams(params)
        task.validate_params(snapshot)

        run = TaskRun(task_name=task.name, params=dict(snapshot))
        await self._store.save_task_run(run)

        context = RunContext(run_id=run.id, task_name=task.name)
        run_logger = RunLogger(run.id, self._store, sink=self._sink, task_name=task.name)
        aio_task = asyncio.create_task(
            self._run(task, run, snapshot, context, run_logger),
            name=f"cronberry-run-{run.id}",
        )
        with self._lock:
            self._in_flight[run.id] = _InFlight(task=aio_task, context=context)
        self._spawned[run.id] = aio_task
        aio_task.add_done_callback(lambda _, run_id=run.id: self._spawned.pop(run_id, None))

        logger.info("Dispatched run %d of task '%s'", run.id, task.name)
        return run.id

    async def cancel(self, run_id: int) -> None:
        """Signal a run and persist it as ``cancelled``.

        Raises ExecutionNotFound when the run is not in flight; storage
        errors propagate.
        """
        with self._lock:
            handle = self._in_flight.pop(run_id, None)
        if handle is None:
            raise ExecutionNotFound(run_id)

        handle.signal()
        logger.info("Cancelled run %d of task '%s'", run_id, handle.context.task_name)

        run = await self._store.get_task_run_by_id(run_id)
        run.finish(RunStatus.CANCELLED)
        await self._store.save_task_run(run)

    async def cancel_all(self) -> int:
        """Cancel every in-flight run. Storage failures are logged, not raised."""
        with self._lock:
            handles = list(self._in_flight.items())
            self._in_flight.clear()

        for run_id, handle in handles:
            handle.signal()
            try:
                run = await self._store.get_task_run_by_id(run_id)
                run.finish(RunStatus.CANCELLED)
                await self._store.save_task_run(run)
            except Exception:
                logger.warning("Unable to record cancellation of run %d", run_id, exc_info=True)

        if handles:
            logger.info("Cancelled %d in-flight run(s)", len(handles))
        return len(handles)

    def in_flight(self) -> list[int]:
        """Ids of runs that can still be cancelled."""
        with self._lock:
            return sorted(self._in_flight)

    async def join(self, timeout: float | None = None) -> bool:
        """Wait for spawned runs to finish. Returns False on timeout."""
        pending = set(self._spawned.values())
        if not pending:
            return True
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        return not still_pending

    async def wait(self, run_id: int, timeout: float | None = None) -> bool:
        """Wait for one run to finish. Unknown or finished runs return True at once."""
        aio_task = self._spawned.get(run_id)
        if aio_task is None:
            return True
        _, still_pending = await asyncio.wait({aio_task}, timeout=timeout)
        return not still_pending

    # -- Internal --------------------------------------------------------------

    async def _run(
        self,
        task: Task,
        run: TaskRun,
        params: TaskParams,
        context: RunContext,
        run_logger: RunLogger,
    ) -> None:
        error: Exception | None = None
        try:
            await task.body(context, params, run_logger)
        except asyncio.CancelledError:
            run.status = RunStatus.CANCELLED
        except Exception as exc:
            run.status = RunStatus.CANCELLED if context.is_cancelled else RunStatus.FAILED
            error = exc
        else:
            run.status = RunStatus.COMPLETED
        finally:
            # Once the body is done the run can no longer be cancelled.
            with self._lock:
                self._in_flight.pop(run.id, None)

        if run.status is RunStatus.FAILED:
            logger.warning("Run %d of task '%s' failed: %s", run.id, task.name, error)
            await self._log_quietly(run_logger, "Task failed due to: %s", error)

        run.end_time = utcnow()
        try:
            await self._store.save_task_run(run)
        except Exception as exc:
            logger.exception("Unable to save terminal state of run %d", run.id)
            await self._log_quietly(run_logger, "Unable to save task run due to: %s", exc)
        else:
            logger.info("Run %d of task '%s' %s", run.id, task.name, run.status)

    @staticmethod
    async def _log_quietly(run_logger: RunLogger, message: str, *args: Any) -> None:
        try:
            await run_logger.error(message, *args)
        except Exception:
            logger.warning("Unable to persist log for run %d", run_logger.run_id, exc_info=True)
