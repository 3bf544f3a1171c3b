"""Engine: the embedding API tying registry, schedules, and executor together."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from cronberry.auth import CredentialStore
from cronberry.config import settings
from cronberry.executor import TaskExecutor
from cronberry.models import ALL_LEVELS
from cronberry.params import TaskSchema, params_from_struct, schema_from_struct
from cronberry.registry import Task, TaskRegistry
from cronberry.schedules import ScheduleEntry, ScheduleManager

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from cronberry.models import TaskRun, TaskRunLog
    from cronberry.params import TaskParams
    from cronberry.registry import TaskBody
    from cronberry.store.base import RunStore

logger = logging.getLogger(__name__)


@dataclass
class TaskInfo:
    """A task and its schedules, as listed to the outer layer."""

    task_name: str
    schema: dict[str, str]
    schedules: list[ScheduleEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_name": self.task_name,
            "schema": dict(self.schema),
            "schedules": [s.to_dict() for s in self.schedules],
        }


class Engine:
    """Task scheduler and execution engine.

    Construction does not start the scheduler; call :meth:`start` from a
    running event loop (or use ``async with``)::

        engine = Engine(MemoryRunStore())
        task = engine.register_task("report", report, {"days": "int"})
        task.register_schedule({"days": 7}, RUN_AT_MIDNIGHT)
        async with engine:
            run_id = await task.execute_now({"days": 1})

    Args:
        store: RunStore that persists runs and run logs.
        timezone: IANA timezone for cron fields (default from settings).
        sink: Logger that run log lines are mirrored to.
    """

    def __init__(
        self,
        store: RunStore,
        *,
        timezone: str | None = None,
        sink: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self._registry = TaskRegistry()
        self._executor = TaskExecutor(store, sink=sink)
        self._schedules = ScheduleManager(self._executor.execute_now, timezone=timezone)
        self._credentials = CredentialStore()

    @property
    def running(self) -> bool:
        return self._schedules.running

    @property
    def credentials(self) -> CredentialStore:
        return self._credentials

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Start the cron engine; registered schedules fire from now on."""
        self._schedules.start()

    async def shutdown(self) -> None:
        """Cancel every in-flight run and stop the cron engine.

        Cancelled runs are persisted as ``cancelled`` on a best-effort basis.
        Task bodies are not awaited; use :meth:`join` for that.
        """
        await self._executor.cancel_all()
        self._schedules.shutdown()
        # AsyncIOScheduler defers its own shutdown to the next loop iteration.
        await asyncio.sleep(0)

    async def join(self, timeout: float | None = None) -> bool:
        """Wait until every spawned run has reached a terminal state."""
        return await self._executor.join(timeout)

    async def wait(self, run_id: int, timeout: float | None = None) -> bool:
        """Wait until run *run_id* has reached a terminal state."""
        return await self._executor.wait(run_id, timeout)

    async def __aenter__(self) -> Engine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    # -- Tasks -----------------------------------------------------------------

    def register_task(
        self,
        name: str,
        body: TaskBody,
        schema: TaskSchema | Mapping[str, Any] | type | None = None,
    ) -> Task:
        """Register *body* under *name*.

        *schema* may be a TaskSchema, a ``{field: type}`` mapping, or a
        dataclass / pydantic model class.
        """
        if isinstance(schema, type):
            schema = schema_from_struct(schema)
        return self._registry.register(name, body, schema, engine=self)

    def get_task(self, name: str) -> Task:
        """Return the task or raise TaskNotFound."""
        return self._registry.lookup(name)

    def tasks(self) -> list[Task]:
        return list(self._registry)

    def for_each_task(self, fn: Callable[[Task], Any]) -> None:
        self._registry.for_each(fn)

    def task_info(self, name: str) -> TaskInfo:
        task = self._registry.lookup(name)
        return TaskInfo(
            task_name=task.name,
            schema=task.schema.to_dict(),
            schedules=self._schedules.entries(task.name),
        )

    def task_infos(self) -> list[TaskInfo]:
        return [self.task_info(name) for name in sorted(self._registry.names)]

    def _resolve(self, task: Task | str) -> Task:
        return self._registry.lookup(task) if isinstance(task, str) else task

    # -- Schedules -------------------------------------------------------------

    def register_schedule(
        self, task: Task | str, params: Mapping[str, Any], schedule: str
    ) -> ScheduleEntry:
        """Bind *params* to a cron *schedule*. Raises param errors or CronParseError."""
        return self._schedules.register(self._resolve(task), params, schedule)

    def delete_schedule(self, task: Task | str, entry_id: str) -> None:
        name = task if isinstance(task, str) else task.name
        self._schedules.delete(name, entry_id)

    def list_schedules(self, task_name: str) -> list[ScheduleEntry]:
        return self._schedules.entries(task_name)

    # -- Runs ------------------------------------------------------------------

    async def execute_now(self, task: Task | str, params: Mapping[str, Any]) -> int:
        """Start a run immediately and return its id without waiting for it."""
        return await self._executor.execute_now(self._resolve(task), params)

    async def cancel_execution_by_id(self, run_id: int) -> None:
        """Cancel an in-flight run. Raises ExecutionNotFound if it is not running."""
        await self._executor.cancel(run_id)

    def in_flight(self) -> list[int]:
        return self._executor.in_flight()

    async def task_runs(
        self, task_name: str, page: int = 1, size: int | None = None
    ) -> tuple[list[TaskRun], int]:
        """One page of a task's runs (newest first) and the task's total run count."""
        size = size or settings.default_page_size
        runs = await self.store.get_paginated_task_runs_for_task_name(task_name, page, size)
        total = await self.store.get_task_runs_count_for_task_name(task_name)
        return runs, total

    async def run_logs(
        self, run_id: int, level: str = ALL_LEVELS, page: int = 1, size: int | None = None
    ) -> tuple[list[TaskRunLog], int]:
        """One page of a run's logs and the number of entries matching *level*."""
        size = size or settings.default_page_size
        return await self.store.get_paginated_task_run_logs(run_id, level, page, size)

    # -- Credentials -----------------------------------------------------------

    def add_web_user(self, username: str, password: str) -> None:
        self._credentials.add_web_user(username, password)

    def add_api_key(self, api_key: str, description: str) -> None:
        self._credentials.add_api_key(api_key, description)

    def lookup_password(self, username: str) -> str | None:
        return self._credentials.lookup_password(username)

    def lookup_api_key(self, api_key: str) -> str | None:
        return self._credentials.lookup_api_key(api_key)

    # -- Struct helpers --------------------------------------------------------

    @staticmethod
    def schema_from_struct(struct: Any) -> TaskSchema:
        return schema_from_struct(struct)

    @staticmethod
    def task_params_from_struct(obj: Any) -> TaskParams:
        return params_from_struct(obj)
