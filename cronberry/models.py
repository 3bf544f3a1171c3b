"""TaskRun and TaskRunLog records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

ALL_LEVELS = "all"


class RunStatus(StrEnum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.STARTED


class LogLevel(StrEnum):
    INFO = "info"
    DEBUG = "debug"
    ERROR = "error"
    SUCCESS = "success"


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class TaskRun:
    """One invocation of a task.

    Attributes:
        id: Assigned by storage on the first save; ``0`` until then.
        task_name: Name of the registered task.
        start_time: UTC timestamp of dispatch.
        end_time: UTC timestamp of the terminal state, ``None`` while ongoing.
        params: Snapshot of the validated params.
        status: One of ``started``, ``completed``, ``failed``, ``cancelled``.
    """

    task_name: str
    start_time: datetime = field(default_factory=utcnow)
    end_time: datetime | None = None
    params: dict[str, Any] = field(default_factory=dict)
    status: RunStatus = RunStatus.STARTED
    id: int = 0

    @property
    def ongoing(self) -> bool:
        return self.end_time is None

    def duration(self) -> str:
        """Return ``"ongoing"`` or the elapsed time in human-readable form."""
        if self.end_time is None:
            return "ongoing"
        return format_duration(self.end_time - self.start_time)

    def finish(self, status: RunStatus) -> None:
        self.status = status
        self.end_time = utcnow()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_name": self.task_name,
            "start_time": format_timestamp(self.start_time),
            "end_time": format_timestamp(self.end_time) if self.end_time else "",
            "duration": self.duration(),
            "params": dict(self.params),
            "status": str(self.status),
        }


@dataclass
class TaskRunLog:
    """A single log line recorded during a run."""

    task_run_id: int
    level: LogLevel
    message: str
    timestamp: datetime = field(default_factory=utcnow)
    id: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_run_id": self.task_run_id,
            "timestamp": format_timestamp(self.timestamp),
            "level": str(self.level),
            "message": self.message,
        }


# -- Formatting ----------------------------------------------------------------


def format_timestamp(value: datetime) -> str:
    """RFC 3339 in UTC with a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def format_duration(delta: timedelta) -> str:
    """Render *delta* like ``1h2m3.5s``, ``250ms`` or ``0s``."""
    micros = (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds
    sign = "-" if micros < 0 else ""
    micros = abs(micros)

    if micros == 0:
        return "0s"
    if micros < 1_000:
        return f"{sign}{micros}µs"
    if micros < 1_000_000:
        return f"{sign}{_trim(micros / 1_000)}ms"

    hours, rest = divmod(micros, 3_600_000_000)
    minutes, rest = divmod(rest, 60_000_000)
    out = sign
    if hours:
        out += f"{hours}h"
    if hours or minutes:
        out += f"{minutes}m"
    return out + f"{_trim(rest / 1_000_000)}s"


def _trim(value: float) -> str:
    return f"{value:.6f}".rstrip("0").rstrip(".")
