"""Error kinds raised by the engine."""

from __future__ import annotations

from typing import Any


class CronberryError(Exception):
    """Base class for every error the engine raises on purpose."""


# -- Parameters ----------------------------------------------------------------


class ParamError(CronberryError, ValueError):
    """Params do not satisfy a task schema."""

    def __init__(self, name: str, message: str) -> None:
        self.name = name
        super().__init__(message)


class MissingParam(ParamError):
    def __init__(self, name: str) -> None:
        super().__init__(name, f"missing required parameter: {name}")


class UnexpectedParam(ParamError):
    def __init__(self, name: str) -> None:
        super().__init__(name, f"unexpected parameter: {name}")


class TypeMismatch(ParamError):
    """A value cannot be coerced to the declared type."""

    def __init__(self, name: str, declared: Any, actual: Any) -> None:
        self.declared = declared
        self.actual = actual
        super().__init__(
            name,
            f"parameter {name} should be of type {declared}, got {type(actual).__name__}",
        )


class UnsupportedSchemaType(CronberryError, ValueError):
    """A schema declares a type outside the supported set."""

    def __init__(self, value: Any, field: str | None = None) -> None:
        self.value = value
        self.field = field
        if field is None:
            msg = f"unsupported field type: {value}"
        else:
            msg = f"unsupported type for field {field}: {value}"
        super().__init__(msg)


# -- Scheduling ----------------------------------------------------------------


class CronParseError(CronberryError, ValueError):
    def __init__(self, expression: str, reason: str) -> None:
        self.expression = expression
        self.reason = reason
        super().__init__(f"invalid schedule {expression!r}: {reason}")


# -- Storage -------------------------------------------------------------------


class StorageError(CronberryError):
    """A storage adapter failed."""


class RunNotFound(StorageError, LookupError):
    def __init__(self, run_id: int) -> None:
        self.run_id = run_id
        super().__init__(f"task run not found: {run_id}")


# -- Lookups -------------------------------------------------------------------


class ExecutionNotFound(CronberryError, LookupError):
    def __init__(self, run_id: int) -> None:
        self.run_id = run_id
        super().__init__(f"execution ID {run_id} not found or already completed")


class TaskNotFound(CronberryError, LookupError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"task not found: {name}")
