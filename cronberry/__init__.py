"""cronberry: an embeddable task scheduler and execution engine."""

from cronberry.auth import CredentialStore
from cronberry.engine import Engine, TaskInfo
from cronberry.errors import (
    CronberryError,
    CronParseError,
    ExecutionNotFound,
    MissingParam,
    ParamError,
    RunNotFound,
    StorageError,
    TaskNotFound,
    TypeMismatch,
    UnexpectedParam,
    UnsupportedSchemaType,
)
from cronberry.executor import RunContext, TaskExecutor
from cronberry.models import LogLevel, RunStatus, TaskRun, TaskRunLog, format_duration
from cronberry.params import (
    TaskParams,
    TaskParamType,
    TaskSchema,
    params_from_struct,
    parse_form,
    schema_from_struct,
    validate,
)
from cronberry.registry import Task, TaskRegistry
from cronberry.runlog import RunLogger
from cronberry.schedules import ScheduleEntry, ScheduleManager, parse_schedule
from cronberry.store import MemoryRunStore, RunStore, SqliteRunStore

__all__ = [
    "CredentialStore",
    "CronParseError",
    "CronberryError",
    "Engine",
    "ExecutionNotFound",
    "LogLevel",
    "MemoryRunStore",
    "MissingParam",
    "ParamError",
    "RunContext",
    "RunLogger",
    "RunNotFound",
    "RunStatus",
    "RunStore",
    "ScheduleEntry",
    "ScheduleManager",
    "SqliteRunStore",
    "StorageError",
    "Task",
    "TaskExecutor",
    "TaskInfo",
    "TaskNotFound",
    "TaskParamType",
    "TaskParams",
    "TaskRegistry",
    "TaskRun",
    "TaskRunLog",
    "TaskSchema",
    "TypeMismatch",
    "UnexpectedParam",
    "UnsupportedSchemaType",
    "format_duration",
    "params_from_struct",
    "parse_form",
    "parse_schedule",
    "schema_from_struct",
    "validate",
]
