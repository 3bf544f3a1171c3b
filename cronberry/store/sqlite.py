"""SqliteRunStore: aiosqlite persistence for runs and run logs."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import aiosqlite

from cronberry.config import settings
from cronberry.errors import RunNotFound, StorageError
from cronberry.models import ALL_LEVELS, LogLevel, RunStatus, TaskRun, TaskRunLog
from cronberry.store.base import RunStore, check_page

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS task_runs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        task_name TEXT NOT NULL,
        start_time TEXT NOT NULL,
        end_time TEXT,
        params TEXT NOT NULL DEFAULT '{}',
        status TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS task_run_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        task_run_id INTEGER NOT NULL REFERENCES task_runs(id),
        timestamp TEXT NOT NULL,
        level TEXT NOT NULL,
        message TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_task_runs_name ON task_runs (task_name, start_time)",
    "CREATE INDEX IF NOT EXISTS idx_task_run_logs_run ON task_run_logs (task_run_id, id)",
)

_RUN_COLUMNS = "id, task_name, start_time, end_time, params, status"
_LOG_COLUMNS = "id, task_run_id, timestamp, level, message"


def _ts(value: datetime) -> str:
    # Fixed-width so lexical order matches chronological order.
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _parse_ts(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=UTC)


def _run_from_row(row: tuple) -> TaskRun:
    return TaskRun(
        id=row[0],
        task_name=row[1],
        start_time=_parse_ts(row[2]),
        end_time=_parse_ts(row[3]) if row[3] else None,
        params=json.loads(row[4]),
        status=RunStatus(row[5]),
    )


def _log_from_row(row: tuple) -> TaskRunLog:
    return TaskRunLog(
        id=row[0],
        task_run_id=row[1],
        timestamp=_parse_ts(row[2]),
        level=LogLevel(row[3]),
        message=row[4],
    )


class SqliteRunStore(RunStore):
    """Persists runs and logs in SQLite.

    Pass an explicit *db_path* for test isolation (e.g. ``tmp_path / "runs.db"``).
    Each operation opens its own connection, so concurrent callers never
    share a cursor.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    # -- Internal helpers ------------------------------------------------------

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            db = await aiosqlite.connect(str(self._db_path))
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(f"unable to open {self._db_path}: {exc}") from exc
        try:
            if not self._initialised:
                for statement in _CREATE_TABLES:
                    await db.execute(statement)
                await db.commit()
                self._initialised = True
            yield db
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        finally:
            await db.close()

    # -- Runs ------------------------------------------------------------------

    async def save_task_run(self, run: TaskRun) -> None:
        row = (
            run.task_name,
            _ts(run.start_time),
            _ts(run.end_time) if run.end_time else None,
            json.dumps(run.params),
            str(run.status),
        )
        async with self._connect() as db:
            if run.id == 0:
                cursor = await db.execute(
                    "INSERT INTO task_runs (task_name, start_time, end_time, params, status)"
                    " VALUES (?, ?, ?, ?, ?)",
                    row,
                )
                await db.commit()
                run.id = cursor.lastrowid
                logger.debug("Inserted task run %d (%s)", run.id, run.task_name)
                return

            cursor = await db.execute(
                "UPDATE task_runs SET task_name = ?, start_time = ?, end_time = ?,"
                " params = ?, status = ? WHERE id = ?",
                (*row, run.id),
            )
            await db.commit()
            if cursor.rowcount == 0:
                raise RunNotFound(run.id)

    async def get_task_run_by_id(self, run_id: int) -> TaskRun:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_RUN_COLUMNS} FROM task_runs WHERE id = ?", (run_id,)
            )
            row = await cursor.fetchone()
        if row is None:
            raise RunNotFound(run_id)
        return _run_from_row(row)

    async def get_task_runs(self) -> list[TaskRun]:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_RUN_COLUMNS} FROM task_runs ORDER BY start_time DESC, id DESC"
            )
            rows = await cursor.fetchall()
        return [_run_from_row(row) for row in rows]

    async def get_paginated_task_runs_for_task_name(
        self, name: str, page: int, size: int
    ) -> list[TaskRun]:
        offset = check_page(page, size)
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_RUN_COLUMNS} FROM task_runs WHERE task_name = ?"
                " ORDER BY start_time DESC, id DESC LIMIT ? OFFSET ?",
                (name, size, offset),
            )
            rows = await cursor.fetchall()
        return [_run_from_row(row) for row in rows]

    async def get_task_runs_count_for_task_name(self, name: str) -> int:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM task_runs WHERE task_name = ?", (name,)
            )
            row = await cursor.fetchone()
        return int(row[0])

    # -- Logs ------------------------------------------------------------------

    async def save_task_run_log(self, entry: TaskRunLog) -> None:
        async with self._connect() as db:
            cursor = await db.execute(
                "INSERT INTO task_run_logs (task_run_id, timestamp, level, message)"
                " VALUES (?, ?, ?, ?)",
                (entry.task_run_id, _ts(entry.timestamp), str(entry.level), entry.message),
            )
            await db.commit()
            entry.id = cursor.lastrowid

    async def get_task_run_logs(self, run_id: int) -> list[TaskRunLog]:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_LOG_COLUMNS} FROM task_run_logs WHERE task_run_id = ? ORDER BY id",
                (run_id,),
            )
            rows = await cursor.fetchall()
        return [_log_from_row(row) for row in rows]

    async def get_paginated_task_run_logs(
        self, run_id: int, level: str, page: int, size: int
    ) -> tuple[list[TaskRunLog], int]:
        offset = check_page(page, size)
        where = "task_run_id = ?"
        args: tuple = (run_id,)
        if level != ALL_LEVELS:
            where += " AND level = ?"
            args += (str(level),)

        async with self._connect() as db:
            cursor = await db.execute(f"SELECT COUNT(*) FROM task_run_logs WHERE {where}", args)
            total = (await cursor.fetchone())[0]
            cursor = await db.execute(
                f"SELECT {_LOG_COLUMNS} FROM task_run_logs WHERE {where}"
                " ORDER BY id LIMIT ? OFFSET ?",
                (*args, size, offset),
            )
            rows = await cursor.fetchall()
        return [_log_from_row(row) for row in rows], int(total)

    async def close(self) -> None:
        # Connections are per-operation; nothing is held open.
        logger.debug("SqliteRunStore closed (%s)", self._db_path)
