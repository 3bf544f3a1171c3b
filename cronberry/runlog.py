"""RunLogger: level-tagged logging bound to a single task run."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from cronberry.models import LogLevel, TaskRunLog

if TYPE_CHECKING:
    from cronberry.store.base import RunStore

DEFAULT_SINK = logging.getLogger("cronberry.run")

_SINK_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.SUCCESS: logging.INFO,
}


class RunLogger:
    """Records log entries for one run.

    Every call mirrors the message to a process-level ``logging.Logger``
    (the *sink*) and persists a :class:`TaskRunLog` through the store.
    Persistence errors propagate; task bodies may ignore them.

    Messages take optional %-style arguments::

        await logger.info("processed %d rows", count)
    """

    def __init__(
        self,
        run_id: int,
        store: RunStore,
        sink: logging.Logger | None = None,
        task_name: str = "",
    ) -> None:
        self.run_id = run_id
        self.task_name = task_name
        self._store = store
        self._sink = sink or DEFAULT_SINK

    async def info(self, message: str, *args: Any) -> TaskRunLog:
        return await self.log(LogLevel.INFO, message, *args)

    async def debug(self, message: str, *args: Any) -> TaskRunLog:
        return await self.log(LogLevel.DEBUG, message, *args)

    async def error(self, message: str, *args: Any) -> TaskRunLog:
        return await self.log(LogLevel.ERROR, message, *args)

    async def success(self, message: str, *args: Any) -> TaskRunLog:
        return await self.log(LogLevel.SUCCESS, message, *args)

    async def log(self, level: LogLevel, message: str, *args: Any) -> TaskRunLog:
        if args:
            message = message % args
        self._sink.log(
            _SINK_LEVELS[level],
            "[run %d %s] %s",
            self.run_id,
            self.task_name,
            message,
            extra={"run_id": self.run_id, "run_level": str(level)},
        )
        entry = TaskRunLog(task_run_id=self.run_id, level=level, message=message)
        await self._store.save_task_run_log(entry)
        return entry
