"""RunStore: the persistence port consumed by the engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cronberry.models import TaskRun, TaskRunLog


class RunStore(ABC):
    """Abstract persistence for task runs and their logs.

    Implementations must be safe to call concurrently; the engine does not
    serialize calls. Failures surface as :class:`~cronberry.errors.StorageError`.

    Example::

        class MyStore(RunStore):
            async def save_task_run(self, run: TaskRun) -> None:
                ...
    """

    @abstractmethod
    async def save_task_run(self, run: TaskRun) -> None:
        """Insert *run* when ``run.id == 0`` (assigning the id), else update by id."""
        ...

    @abstractmethod
    async def get_task_run_by_id(self, run_id: int) -> TaskRun:
        """Fetch a run or raise :class:`~cronberry.errors.RunNotFound`."""
        ...

    @abstractmethod
    async def get_task_runs(self) -> list[TaskRun]:
        """All runs, newest start time first."""
        ...

    @abstractmethod
    async def get_paginated_task_runs_for_task_name(
        self, name: str, page: int, size: int
    ) -> list[TaskRun]:
        """One 1-based page of runs for *name*, newest first."""
        ...

    @abstractmethod
    async def get_task_runs_count_for_task_name(self, name: str) -> int:
        ...

    @abstractmethod
    async def save_task_run_log(self, entry: TaskRunLog) -> None:
        """Append *entry*, assigning its id."""
        ...

    @abstractmethod
    async def get_task_run_logs(self, run_id: int) -> list[TaskRunLog]:
        """All logs for a run in insertion order."""
        ...

    @abstractmethod
    async def get_paginated_task_run_logs(
        self, run_id: int, level: str, page: int, size: int
    ) -> tuple[list[TaskRunLog], int]:
        """One page of logs plus the total number matching *level*.

        ``level == "all"`` disables the level filter.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    async def __aenter__(self) -> RunStore:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


def check_page(page: int, size: int) -> int:
    """Validate 1-based paging arguments and return the row offset."""
    if page < 1 or size < 1:
        msg = f"page and size must be >= 1 (got page={page}, size={size})"
        raise ValueError(msg)
    return (page - 1) * size
