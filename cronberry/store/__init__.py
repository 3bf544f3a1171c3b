"""Storage port and the bundled adapters."""

from cronberry.store.base import RunStore
from cronberry.store.memory import MemoryRunStore
from cronberry.store.sqlite import SqliteRunStore

__all__ = ["RunStore", "MemoryRunStore", "SqliteRunStore"]
