"""Task registry: name -> (body, schema)."""

from __future__ import annotations

import inspect
import logging
import threading
import weakref
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from cronberry.errors import TaskNotFound
from cronberry.params import TaskSchema, validate

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator, Mapping

    from cronberry.engine import Engine
    from cronberry.executor import RunContext
    from cronberry.params import TaskParams
    from cronberry.runlog import RunLogger
    from cronberry.schedules import ScheduleEntry

    TaskBody = Callable[[RunContext, TaskParams, RunLogger], Awaitable[None]]

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Task:
    """A registered task.

    Holds a weak reference to the engine that registered it, so the
    convenience methods below work without the task keeping the engine alive.
    """

    name: str
    body: TaskBody
    schema: TaskSchema
    _engine_ref: weakref.ref | None = field(default=None, repr=False)

    @property
    def engine(self) -> Engine:
        engine = self._engine_ref() if self._engine_ref is not None else None
        if engine is None:
            msg = f"Task '{self.name}' is not attached to a live engine"
            raise RuntimeError(msg)
        return engine

    def validate_params(self, params: dict[str, Any]) -> dict[str, Any]:
        """Validate and coerce *params* in place against this task's schema."""
        return validate(self.schema, params)

    async def execute_now(self, params: Mapping[str, Any]) -> int:
        return await self.engine.execute_now(self, params)

    def register_schedule(self, params: Mapping[str, Any], schedule: str) -> ScheduleEntry:
        return self.engine.register_schedule(self, params, schedule)

    def delete_schedule(self, entry_id: str) -> None:
        self.engine.delete_schedule(self, entry_id)

    def list_schedules(self) -> list[ScheduleEntry]:
        return self.engine.list_schedules(self.name)


class TaskRegistry:
    """Thread-safe catalog of registered tasks.

    Registering a name twice replaces the earlier task.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._lock = threading.RLock()

    def register(
        self,
        name: str,
        body: TaskBody,
        schema: TaskSchema | Mapping[str, Any] | None = None,
        engine: Engine | None = None,
    ) -> Task:
        """Register an async *body* under *name*.

        Raises UnsupportedSchemaType for unknown field types and TypeError for
        a body that is not a coroutine function.
        """
        if not inspect.iscoroutinefunction(body):
            msg = f"Task body '{name}' must be an async function"
            raise TypeError(msg)
        if not isinstance(schema, TaskSchema):
            schema = TaskSchema(schema)

        task = Task(
            name=name,
            body=body,
            schema=schema,
            _engine_ref=weakref.ref(engine) if engine is not None else None,
        )
        with self._lock:
            if name in self._tasks:
                logger.warning("Task '%s' re-registered; replacing previous definition", name)
            self._tasks[name] = task
        logger.info("Registered task '%s' with schema %s", name, schema.to_dict())
        return task

    def lookup(self, name: str) -> Task:
        """Return the task named *name* or raise TaskNotFound."""
        with self._lock:
            task = self._tasks.get(name)
        if task is None:
            raise TaskNotFound(name)
        return task

    def get(self, name: str) -> Task | None:
        with self._lock:
            return self._tasks.get(name)

    def for_each(self, fn: Callable[[Task], Any]) -> None:
        """Call *fn* for every task, in unspecified order."""
        for task in self:
            fn(task)

    @property
    def names(self) -> list[str]:
        with self._lock:
            return list(self._tasks)

    def __iter__(self) -> Iterator[Task]:
        with self._lock:
            snapshot = list(self._tasks.values())
        return iter(snapshot)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._tasks
