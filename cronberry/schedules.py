"""Schedule manager: binds (task, params, cron expression) to APScheduler jobs."""

from __future__ import annotations

import logging
import re
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from cronberry.config import settings
from cronberry.errors import CronParseError
from cronberry.params import TaskParams

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from apscheduler.job import Job
    from apscheduler.triggers.base import BaseTrigger

    from cronberry.registry import Task

logger = logging.getLogger(__name__)

# Common intervals
RUN_EVERY_MINUTE = "@every 1m"
RUN_EVERY_5_MINUTES = "@every 5m"
RUN_EVERY_10_MINUTES = "@every 10m"
RUN_EVERY_15_MINUTES = "@every 15m"
RUN_EVERY_30_MINUTES = "@every 30m"
RUN_EVERY_HOUR = "@every 1h"
RUN_EVERY_2_HOURS = "@every 2h"
RUN_EVERY_3_HOURS = "@every 3h"
RUN_EVERY_4_HOURS = "@every 4h"
RUN_EVERY_6_HOURS = "@every 6h"
RUN_EVERY_12_HOURS = "@every 12h"
RUN_EVERY_DAY = "@every 24h"
RUN_EVERY_WEEK = "@every 168h"

# Times of day
RUN_AT_MIDNIGHT = "0 0 * * *"
RUN_AT_NOON = "0 12 * * *"
RUN_AT_6AM = "0 6 * * *"
RUN_AT_6PM = "0 18 * * *"

# Days of the week
RUN_EVERY_MONDAY_AT_NOON = "0 12 * * 1"
RUN_EVERY_FRIDAY_AT_NOON = "0 12 * * 5"
RUN_EVERY_SUNDAY_AT_MIDNIGHT = "0 0 * * 0"

_DESCRIPTORS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION = re.compile(rf"(?:{_DURATION_PART.pattern})+")

# Crontab numbers day-of-week from Sunday (0 or 7); APScheduler 3 from Monday.
_DOW_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")
_DOW_PART = re.compile(r"(\*|\d+)(?:-(\d+))?(?:/(\d+))?")


def parse_duration(text: str) -> float:
    """Parse ``30s``, ``1m``, ``1h30m`` or ``1.5h`` into seconds."""
    if not _DURATION.fullmatch(text):
        msg = f"invalid duration {text!r}"
        raise ValueError(msg)
    return sum(
        float(number) * _UNIT_SECONDS[unit] for number, unit in _DURATION_PART.findall(text)
    )


def _crontab_day_of_week(value: str) -> str:
    """Rewrite a numeric crontab day-of-week field as APScheduler day names."""
    parts: list[str] = []
    for part in value.split(","):
        match = _DOW_PART.fullmatch(part)
        if part == "*" or match is None:
            parts.append(part)
            continue
        start, end, step = match.groups()
        if start == "*":
            lo, hi = 0, 6
        else:
            lo = int(start)
            hi = int(end) if end is not None else (6 if step else lo)
        if not (0 <= lo <= 7 and 0 <= hi <= 7) or lo > hi:
            msg = f"day-of-week out of range: {part}"
            raise ValueError(msg)
        days = range(lo, hi + 1, int(step) if step else 1)
        parts.extend(_DOW_NAMES[d] for d in days)
    return ",".join(dict.fromkeys(parts))


def parse_schedule(expression: str, timezone: Any = None) -> BaseTrigger:
    """Build an APScheduler trigger from a cron expression.

    Accepts five-field crontab, ``@every <duration>`` and the ``@daily``
    style descriptors. Raises CronParseError.
    """
    timezone = timezone or settings.scheduler_timezone
    text = expression.strip()

    if text.startswith("@every"):
        _, _, raw = text.partition(" ")
        try:
            seconds = parse_duration(raw.strip())
        except ValueError as exc:
            raise CronParseError(expression, str(exc)) from None
        if seconds <= 0:
            raise CronParseError(expression, "interval must be positive")
        # Sub-second precision is dropped; the shortest interval is one second.
        return IntervalTrigger(seconds=max(1, int(seconds)), timezone=timezone)

    if text.startswith("@"):
        if text not in _DESCRIPTORS:
            raise CronParseError(expression, f"unrecognized descriptor {text}")
        text = _DESCRIPTORS[text]

    fields = text.split()
    if len(fields) != 5:
        raise CronParseError(expression, f"expected exactly 5 fields, found {len(fields)}")
    minute, hour, day, month, day_of_week = fields
    common = {"minute": minute, "hour": hour, "month": month, "timezone": timezone}
    try:
        restricted = not day.startswith("*") and not day_of_week.startswith("*")
        day_of_week = _crontab_day_of_week(day_of_week)
        # Crontab fires when either day field matches once both are restricted.
        if restricted:
            return OrTrigger(
                [
                    CronTrigger(day=day, **common),
                    CronTrigger(day_of_week=day_of_week, **common),
                ]
            )
        return CronTrigger(day=day, day_of_week=day_of_week, **common)
    except ValueError as exc:
        raise CronParseError(expression, str(exc)) from None


@dataclass
class ScheduleEntry:
    """A schedule bound to a task.

    Attributes:
        entry_id: Opaque handle (the APScheduler job id), used to delete it.
        task_name: The scheduled task.
        schedule: The cron expression as registered.
        params: Validated params snapshot passed to every firing.
        next_fire_time: Next firing in UTC, ``None`` if none is pending.
    """

    entry_id: str
    task_name: str
    schedule: str
    params: TaskParams = field(default_factory=TaskParams)
    next_fire_time: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "schedule": self.schedule,
            "params": dict(self.params),
            "next_execution_ts": int(self.next_fire_time.timestamp()) if self.next_fire_time else 0,
        }


class ScheduleManager:
    """Owns the APScheduler instance and the per-task schedule lists.

    Args:
        fire: Async callable ``(task, params)`` invoked on every firing.
        timezone: IANA timezone for cron fields (default from settings).
    """

    def __init__(
        self,
        fire: Callable[[Task, TaskParams], Awaitable[Any]],
        timezone: str | None = None,
    ) -> None:
        self._fire = fire
        self._timezone = timezone or settings.scheduler_timezone
        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        self._entries: dict[str, list[ScheduleEntry]] = {}
        self._lock = threading.RLock()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # -- Lifecycle -------------------------------------------------------------

    def start(self) -> None:
        """Start firing schedules. Must be called from within the event loop."""
        if self._running:
            return
        self._scheduler.start()
        self._running = True
        logger.info(
            "Scheduler started with %d schedule(s) (tz=%s)",
            len(self._scheduler.get_jobs()),
            self._timezone,
        )

    def shutdown(self) -> None:
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")

    # -- Schedule management ---------------------------------------------------

    def register(self, task: Task, params: Mapping[str, Any], expression: str) -> ScheduleEntry:
        """Validate *params*, install a job for *expression*, and track it."""
        snapshot = TaskParams(params)
        task.validate_params(snapshot)
        trigger = parse_schedule(expression, self._timezone)

        entry_id = uuid.uuid4().hex
        with self._lock:
            job = self._scheduler.add_job(
                self._run,
                trigger=trigger,
                id=entry_id,
                name=f"{task.name} [{expression}]",
                args=[task, snapshot],
                misfire_grace_time=None,
            )
            entry = ScheduleEntry(
                entry_id=entry_id,
                task_name=task.name,
                schedule=expression,
                params=snapshot,
                next_fire_time=self._next_fire_time(job),
            )
            self._entries.setdefault(task.name, []).append(entry)

        logger.info("Scheduled task '%s' (%s) as %s", task.name, expression, entry_id)
        return replace(entry, params=snapshot.copy())

    def delete(self, task_name: str, entry_id: str) -> None:
        """Remove a schedule. Unknown handles are ignored."""
        with self._lock:
            try:
                self._scheduler.remove_job(entry_id)
            except JobLookupError:
                logger.debug("Job %s not found in scheduler (may already be removed)", entry_id)
            entries = self._entries.get(task_name, [])
            self._entries[task_name] = [e for e in entries if e.entry_id != entry_id]
        logger.info("Deleted schedule %s for task '%s'", entry_id, task_name)

    def entries(self, task_name: str) -> list[ScheduleEntry]:
        """Return the task's schedules with next fire times recomputed now."""
        with self._lock:
            entries = list(self._entries.get(task_name, []))
            return [
                replace(
                    e,
                    params=e.params.copy(),
                    next_fire_time=self._next_fire_time(self._scheduler.get_job(e.entry_id)),
                )
                for e in entries
            ]

    # -- Internal --------------------------------------------------------------

    async def _run(self, task: Task, params: TaskParams) -> None:
        """Callback invoked by APScheduler for every firing."""
        try:
            await self._fire(task, params.copy())
        except Exception:
            logger.exception("Scheduled run of '%s' could not be started", task.name)

    def _next_fire_time(self, job: Job | None) -> datetime | None:
        if job is None:
            return None
        next_run = getattr(job, "next_run_time", None)
        if next_run is None and not self._running:
            # Pending jobs get no next_run_time until the scheduler starts.
            now = datetime.now(self._scheduler.timezone)
            next_run = job.trigger.get_next_fire_time(None, now)
        return next_run.astimezone(UTC) if next_run else None
