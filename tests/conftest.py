"""Shared test fixtures."""

from pathlib import Path

import pytest

from cronberry.engine import Engine
from cronberry.store.memory import MemoryRunStore
from cronberry.store.sqlite import SqliteRunStore


@pytest.fixture
def store() -> MemoryRunStore:
    return MemoryRunStore()


@pytest.fixture
def sqlite_store(tmp_path: Path) -> SqliteRunStore:
    """A SqliteRunStore backed by a temporary database."""
    return SqliteRunStore(db_path=tmp_path / "runs.db")


@pytest.fixture
async def engine(store: MemoryRunStore):
    """An Engine over the in-memory store; shut down after each test."""
    eng = Engine(store, timezone="UTC")
    yield eng
    await eng.shutdown()
    await eng.join(timeout=2)
