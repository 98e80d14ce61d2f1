"""SQLite database with WAL mode, accessed through aiosqlite."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite

from taskswarm.errors import StoreUnavailable


class Database:
    """Async SQLite storage layer with one connection per operation."""

    BUSY_TIMEOUT = 10.0  # seconds

    def __init__(self, data_dir: Path | None = None) -> None:
        self.data_dir = data_dir or Path.home() / ".taskswarm"
        self.db_path = self.data_dir / "data" / "taskswarm.db"

    def _ensure_dirs(self) -> None:
        try:
            (self.data_dir / "data").mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreUnavailable(f"Cannot create data directory {self.data_dir}: {exc}") from exc

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        """Get a database connection with WAL mode, committed on clean exit."""
        self._ensure_dirs()
        try:
            conn = await aiosqlite.connect(str(self.db_path), timeout=self.BUSY_TIMEOUT)
        except aiosqlite.Error as exc:
            raise StoreUnavailable(f"Cannot open {self.db_path}: {exc}") from exc
        try:
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA foreign_keys=ON")
            yield conn
            await conn.commit()
        except aiosqlite.Error as exc:
            await conn.rollback()
            raise StoreUnavailable(str(exc)) from exc
        except BaseException:
            await conn.rollback()
            raise
        finally:
            await conn.close()

    async def ensure_tables(self) -> None:
        """Create all tables if they don't exist."""
        async with self.connect() as conn:
            await conn.executescript(_SCHEMA)

    async def execute(self, sql: str, params: tuple[Any, ...] = ()) -> list[aiosqlite.Row]:
        """Execute a query and return results."""
        async with self.connect() as conn:
            cursor = await conn.execute(sql, params)
            return list(await cursor.fetchall())

    async def execute_insert(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        """Execute an insert and return lastrowid."""
        async with self.connect() as conn:
            cursor = await conn.execute(sql, params)
            return cursor.lastrowid or 0

    async def execute_update(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        """Execute an update/delete and return the number of affected rows."""
        async with self.connect() as conn:
            cursor = await conn.execute(sql, params)
            return cursor.rowcount


_SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    type TEXT UNIQUE NOT NULL,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    type TEXT NOT NULL DEFAULT 'general',
    priority TEXT NOT NULL DEFAULT 'medium',
    status TEXT NOT NULL DEFAULT 'pending',
    assigned_to TEXT,
    preferred_agent TEXT,
    project_id TEXT REFERENCES projects(id),
    created_at TEXT NOT NULL,
    updated_at TEXT,
    assigned_at TEXT,
    started_at TEXT,
    completed_at TEXT,
    failed_at TEXT,
    ready_at TEXT,
    result TEXT,
    error TEXT,
    blocking_reason TEXT,
    next_action TEXT,
    estimated_effort TEXT,
    delegated_by TEXT,
    CHECK (status NOT IN ('assigned', 'in_progress') OR assigned_to IS NOT NULL)
);

CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status, created_at);
CREATE INDEX IF NOT EXISTS idx_tasks_agent ON tasks(assigned_to, status);

CREATE TABLE IF NOT EXISTS task_links (
    from_id TEXT NOT NULL REFERENCES tasks(id),
    to_id TEXT NOT NULL REFERENCES tasks(id),
    relation TEXT NOT NULL DEFAULT 'NEXT_STEP',
    PRIMARY KEY (from_id, relation)
);

CREATE TABLE IF NOT EXISTS quota_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    key TEXT NOT NULL,
    ts REAL NOT NULL,
    expires_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_quota_key_ts ON quota_entries(key, ts);

INSERT OR IGNORE INTO schema_version (version) VALUES (1);
"""
