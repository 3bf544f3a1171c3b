"""Tests for the task registry."""

import gc

import pytest

from cronberry.errors import TaskNotFound, UnsupportedSchemaType
from cronberry.params import TaskParamType, TaskSchema
from cronberry.registry import TaskRegistry


@pytest.fixture
def reg() -> TaskRegistry:
    """Fresh registry for each test."""
    return TaskRegistry()


async def noop(ctx, params, logger) -> None:
    return None


async def other(ctx, params, logger) -> None:
    return None


# -- register ------------------------------------------------------------------


def test_register_and_lookup(reg: TaskRegistry) -> None:
    task = reg.register("task-a", noop, {"x": "int"})
    assert reg.lookup("task-a") is task
    assert task.schema == TaskSchema({"x": TaskParamType.INT})
    assert "task-a" in reg
    assert len(reg) == 1


def test_register_accepts_task_schema(reg: TaskRegistry) -> None:
    schema = TaskSchema({"s": "string"})
    task = reg.register("task-a", noop, schema)
    assert task.schema is schema


def test_register_without_schema(reg: TaskRegistry) -> None:
    task = reg.register("task-a", noop)
    assert len(task.schema) == 0


def test_register_rejects_unknown_type(reg: TaskRegistry) -> None:
    with pytest.raises(UnsupportedSchemaType):
        reg.register("task-a", noop, {"x": "decimal"})
    assert reg.get("task-a") is None


def test_register_rejects_sync_function(reg: TaskRegistry) -> None:
    def sync_body(ctx, params, logger) -> None:
        return None

    with pytest.raises(TypeError, match="must be an async function"):
        reg.register("bad", sync_body)


def test_reregister_overwrites(reg: TaskRegistry) -> None:
    reg.register("task-a", noop, {"x": "int"})
    replacement = reg.register("task-a", other, {"y": "string"})

    assert reg.lookup("task-a") is replacement
    assert reg.lookup("task-a").body is other
    assert len(reg) == 1


# -- lookup / iteration --------------------------------------------------------


def test_lookup_missing(reg: TaskRegistry) -> None:
    with pytest.raises(TaskNotFound) as exc_info:
        reg.lookup("nope")
    assert exc_info.value.name == "nope"


def test_for_each_visits_every_task(reg: TaskRegistry) -> None:
    reg.register("a", noop)
    reg.register("b", noop)
    seen: list[str] = []
    reg.for_each(lambda t: seen.append(t.name))
    assert sorted(seen) == ["a", "b"]
    assert sorted(reg.names) == ["a", "b"]


def test_iteration_is_a_snapshot(reg: TaskRegistry) -> None:
    reg.register("a", noop)
    for task in reg:
        reg.register(task.name + "-copy", noop)
    assert sorted(reg.names) == ["a", "a-copy"]


# -- Task ----------------------------------------------------------------------


def test_validate_params_coerces(reg: TaskRegistry) -> None:
    task = reg.register("task-a", noop, {"x": "int"})
    params = {"x": "5"}
    task.validate_params(params)
    assert params == {"x": 5}


def test_detached_task_has_no_engine(reg: TaskRegistry) -> None:
    task = reg.register("task-a", noop)
    with pytest.raises(RuntimeError, match="not attached"):
        _ = task.engine


def test_task_does_not_keep_engine_alive() -> None:
    from cronberry.engine import Engine
    from cronberry.store.memory import MemoryRunStore

    engine = Engine(MemoryRunStore())
    task = engine.register_task("task-a", noop)
    assert task.engine is engine

    del engine
    gc.collect()
    with pytest.raises(RuntimeError):
        _ = task.engine
