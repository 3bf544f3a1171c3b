"""MemoryRunStore: process-local storage for tests and embedding."""

from __future__ import annotations

import asyncio
import copy
import logging

from cronberry.errors import RunNotFound
from cronberry.models import ALL_LEVELS, TaskRun, TaskRunLog
from cronberry.store.base import RunStore, check_page

logger = logging.getLogger(__name__)


class MemoryRunStore(RunStore):
    """Keeps runs and logs in dicts.

    Records are copied on the way in and out so callers never alias
    persisted state.
    """

    def __init__(self) -> None:
        self._runs: dict[int, TaskRun] = {}
        self._logs: dict[int, list[TaskRunLog]] = {}
        self._lock = asyncio.Lock()
        self._next_run_id = 1
        self._next_log_id = 1

    async def save_task_run(self, run: TaskRun) -> None:
        async with self._lock:
            if run.id == 0:
                run.id = self._next_run_id
                self._next_run_id += 1
            elif run.id not in self._runs:
                raise RunNotFound(run.id)
            self._runs[run.id] = copy.deepcopy(run)

    async def get_task_run_by_id(self, run_id: int) -> TaskRun:
        async with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                raise RunNotFound(run_id)
            return copy.deepcopy(run)

    async def get_task_runs(self) -> list[TaskRun]:
        async with self._lock:
            return self._sorted(self._runs.values())

    async def get_paginated_task_runs_for_task_name(
        self, name: str, page: int, size: int
    ) -> list[TaskRun]:
        offset = check_page(page, size)
        async with self._lock:
            runs = self._sorted(r for r in self._runs.values() if r.task_name == name)
        return runs[offset : offset + size]

    async def get_task_runs_count_for_task_name(self, name: str) -> int:
        async with self._lock:
            return sum(1 for r in self._runs.values() if r.task_name == name)

    async def save_task_run_log(self, entry: TaskRunLog) -> None:
        async with self._lock:
            entry.id = self._next_log_id
            self._next_log_id += 1
            self._logs.setdefault(entry.task_run_id, []).append(copy.deepcopy(entry))

    async def get_task_run_logs(self, run_id: int) -> list[TaskRunLog]:
        async with self._lock:
            return [copy.deepcopy(e) for e in self._logs.get(run_id, [])]

    async def get_paginated_task_run_logs(
        self, run_id: int, level: str, page: int, size: int
    ) -> tuple[list[TaskRunLog], int]:
        offset = check_page(page, size)
        async with self._lock:
            matching = [
                copy.deepcopy(e)
                for e in self._logs.get(run_id, [])
                if level == ALL_LEVELS or e.level == level
            ]
        return matching[offset : offset + size], len(matching)

    async def close(self) -> None:
        logger.debug("MemoryRunStore closed (%d runs)", len(self._runs))

    @staticmethod
    def _sorted(runs) -> list[TaskRun]:
        ordered = sorted(runs, key=lambda r: (r.start_time, r.id), reverse=True)
        return [copy.deepcopy(r) for r in ordered]
