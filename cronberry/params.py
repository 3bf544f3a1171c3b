"""Typed task parameters: schema, validation, and coercion.

A task declares a :class:`TaskSchema` mapping field names to one of four
:class:`TaskParamType` values. Every invocation carries a :class:`TaskParams`
map which :func:`validate` checks against the schema and normalizes in place:

======== ================= ==========================================
Declared Accepts directly  Coerces from
======== ================= ==========================================
int      ``int``           ``float`` (truncated), decimal ``str``
float    ``float``         ``int``, numeric ``str``
string   ``str``           nothing
bool     ``bool``          nothing
======== ================= ==========================================

``bool`` is never accepted where a number is declared, even though Python
treats it as an ``int`` subclass.
"""

from __future__ import annotations

import dataclasses
import math
import re
import typing
from collections.abc import Iterator, Mapping
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel

from cronberry.errors import MissingParam, TypeMismatch, UnexpectedParam, UnsupportedSchemaType

ParamValue = int | float | bool | str

_INT_RE = re.compile(r"[+-]?[0-9]+")
_FLOAT_RE = re.compile(
    r"[+-]?(?:inf(?:inity)?|nan|(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:e[+-]?[0-9]+)?)",
    re.IGNORECASE | re.ASCII,
)


class TaskParamType(StrEnum):
    INT = "int"
    BOOL = "bool"
    STRING = "string"
    FLOAT = "float"

    @classmethod
    def parse(cls, value: Any, field: str | None = None) -> TaskParamType:
        """Return the member for *value* or raise UnsupportedSchemaType."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise UnsupportedSchemaType(value, field) from None


class TaskSchema(Mapping[str, TaskParamType]):
    """Immutable mapping of field name to declared type."""

    def __init__(self, fields: Mapping[str, Any] | None = None) -> None:
        parsed = {
            name: TaskParamType.parse(kind, name) for name, kind in (fields or {}).items()
        }
        self._fields = MappingProxyType(parsed)

    def __getitem__(self, key: str) -> TaskParamType:
        return self._fields[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        inner = ", ".join(f"{k}={v.value}" for k, v in self._fields.items())
        return f"TaskSchema({inner})"

    def to_dict(self) -> dict[str, str]:
        return {name: kind.value for name, kind in self._fields.items()}


class TaskParams(dict[str, ParamValue]):
    """Parameters of one invocation, with typed accessors."""

    def copy(self) -> TaskParams:
        return TaskParams(self)

    def get_int(self, key: str) -> int:
        return _coerce(key, TaskParamType.INT, self._require(key))

    def get_float(self, key: str) -> float:
        return _coerce(key, TaskParamType.FLOAT, self._require(key))

    def get_bool(self, key: str) -> bool:
        return _coerce(key, TaskParamType.BOOL, self._require(key))

    def get_string(self, key: str) -> str:
        return _coerce(key, TaskParamType.STRING, self._require(key))

    def _require(self, key: str) -> ParamValue:
        if key not in self:
            raise MissingParam(key)
        return self[key]


# -- Validation ----------------------------------------------------------------


def validate(schema: Mapping[str, TaskParamType], params: dict[str, Any]) -> dict[str, Any]:
    """Check *params* against *schema*, coercing values in place.

    Raises MissingParam, TypeMismatch, or UnexpectedParam. Returns *params*.
    """
    for name, declared in schema.items():
        if name not in params:
            raise MissingParam(name)
        params[name] = _coerce(name, TaskParamType.parse(declared, name), params[name])

    for name in params:
        if name not in schema:
            raise UnexpectedParam(name)

    return params


def parse_form(schema: Mapping[str, TaskParamType], form: Mapping[str, str]) -> TaskParams:
    """Build validated params from form-encoded input.

    Checkbox semantics apply to bool fields: ``"on"`` is true and an absent
    key is false. Form keys outside the schema are ignored.
    """
    params = TaskParams()
    for name, declared in schema.items():
        if declared is TaskParamType.BOOL:
            params[name] = form.get(name) == "on"
        elif name in form:
            params[name] = form[name]
    validate(schema, params)
    return params


def _coerce(name: str, declared: TaskParamType, value: Any) -> ParamValue:
    if declared is TaskParamType.INT:
        if isinstance(value, bool):
            raise TypeMismatch(name, declared, value)
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            if not math.isfinite(value):
                raise TypeMismatch(name, declared, value)
            return int(value)
        if isinstance(value, str) and _INT_RE.fullmatch(value):
            return int(value)
        raise TypeMismatch(name, declared, value)

    if declared is TaskParamType.FLOAT:
        if isinstance(value, bool):
            raise TypeMismatch(name, declared, value)
        if isinstance(value, float):
            return value
        if isinstance(value, int):
            return float(value)
        if isinstance(value, str) and _FLOAT_RE.fullmatch(value):
            return float(value)
        raise TypeMismatch(name, declared, value)

    if declared is TaskParamType.STRING:
        if isinstance(value, str):
            return value
        raise TypeMismatch(name, declared, value)

    if isinstance(value, bool):
        return value
    raise TypeMismatch(name, declared, value)


# -- Struct helpers ------------------------------------------------------------

_PY_TYPES: dict[Any, TaskParamType] = {
    int: TaskParamType.INT,
    float: TaskParamType.FLOAT,
    bool: TaskParamType.BOOL,
    str: TaskParamType.STRING,
}


def _struct_fields(struct: Any) -> list[tuple[str, str, Any]]:
    """Return ``(key, attribute, annotation)`` for a dataclass or pydantic model."""
    cls = struct if isinstance(struct, type) else type(struct)

    if dataclasses.is_dataclass(cls):
        hints = typing.get_type_hints(cls)
        return [
            (f.metadata.get("task", f.name), f.name, hints.get(f.name, f.type))
            for f in dataclasses.fields(cls)
        ]

    if issubclass(cls, BaseModel):
        return [
            (info.alias or name, name, info.annotation)
            for name, info in cls.model_fields.items()
        ]

    msg = f"{cls.__name__} is neither a dataclass nor a pydantic model"
    raise TypeError(msg)


def schema_from_struct(struct: Any) -> TaskSchema:
    """Derive a schema from a dataclass or pydantic model (class or instance).

    The key is the field name unless ``metadata={"task": ...}`` (dataclasses)
    or an ``alias`` (pydantic) overrides it.
    """
    fields: dict[str, TaskParamType] = {}
    for key, _attr, annotation in _struct_fields(struct):
        kind = _PY_TYPES.get(annotation)
        if kind is None:
            raise UnsupportedSchemaType(getattr(annotation, "__name__", annotation), key)
        fields[key] = kind
    return TaskSchema(fields)


def params_from_struct(obj: Any) -> TaskParams:
    """Build validated params from a dataclass or pydantic model instance."""
    if isinstance(obj, type):
        msg = "params_from_struct expects an instance, not a class"
        raise TypeError(msg)
    params = TaskParams({key: getattr(obj, attr) for key, attr, _ in _struct_fields(obj)})
    validate(schema_from_struct(obj), params)
    return params
