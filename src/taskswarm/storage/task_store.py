"""Task Store Adapter: durable task records, project grouping and workflow links."""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterable
from typing import Any

import aiosqlite

from taskswarm.models import LIVE_STATUSES, Task, TaskStatus, utcnow
from taskswarm.storage.database import Database

NEXT_STEP = "NEXT_STEP"

_COLUMNS = (
    "id",
    "title",
    "description",
    "type",
    "priority",
    "status",
    "assigned_to",
    "preferred_agent",
    "project_id",
    "created_at",
    "updated_at",
    "assigned_at",
    "started_at",
    "completed_at",
    "failed_at",
    "ready_at",
    "result",
    "error",
    "blocking_reason",
    "next_action",
    "estimated_effort",
    "delegated_by",
)
_MUTABLE = frozenset(_COLUMNS) - {"id", "created_at"}

_PRIORITY_RANK_SQL = (
    "CASE priority WHEN 'critical' THEN 3 WHEN 'high' THEN 2 WHEN 'medium' THEN 1 ELSE 0 END"
)
_ORDERS = {
    "created": "created_at ASC, rowid ASC",
    "priority": f"{_PRIORITY_RANK_SQL} DESC, created_at ASC, rowid ASC",
}


class TaskStore:
    """Reads and writes task records.

    Status changes go through ``claim`` and ``transition``, which are
    conditional single-statement updates: they only apply when the row is
    still in one of the expected statuses, so two writers cannot both win.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(self, task: Task) -> bool:
        """Insert a task record. Returns False if a record with that id already exists."""
        values = self._encode(task)
        placeholders = ", ".join("?" for _ in _COLUMNS)
        async with self.db.connect() as conn:
            cursor = await conn.execute(
                f"INSERT INTO tasks ({', '.join(_COLUMNS)}) VALUES ({placeholders}) "
                "ON CONFLICT(id) DO NOTHING",
                tuple(values[c] for c in _COLUMNS),
            )
            return cursor.rowcount == 1

    async def get(self, task_id: str) -> Task | None:
        rows = await self.db.execute("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return self._decode(rows[0]) if rows else None

    async def find(
        self,
        *,
        statuses: Iterable[TaskStatus] | None = None,
        assigned_to: str | None = None,
        unmanaged: bool = False,
        order: str = "created",
        limit: int | None = None,
    ) -> list[Task]:
        """Query tasks by status and agent.

        ``unmanaged`` restricts to pending tasks that have no project or no
        assignee yet. ``order`` is ``created`` (oldest first) or ``priority``
        (highest first, then oldest).
        """
        clauses: list[str] = []
        params: list[Any] = []
        if statuses is not None:
            status_list = [TaskStatus(s).value for s in statuses]
            if not status_list:
                return []
            clauses.append(f"status IN ({', '.join('?' for _ in status_list)})")
            params.extend(status_list)
        if assigned_to is not None:
            clauses.append("assigned_to = ?")
            params.append(assigned_to)
        if unmanaged:
            clauses.append("status = ? AND (project_id IS NULL OR assigned_to IS NULL)")
            params.append(TaskStatus.PENDING.value)

        sql = "SELECT * FROM tasks"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += f" ORDER BY {_ORDERS[order]}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        rows = await self.db.execute(sql, tuple(params))
        return [self._decode(row) for row in rows]

    async def live_ids(self) -> set[str]:
        """Ids of every task the scheduler should be tracking."""
        statuses = [s.value for s in LIVE_STATUSES]
        rows = await self.db.execute(
            f"SELECT id FROM tasks WHERE status IN ({', '.join('?' for _ in statuses)})",
            tuple(statuses),
        )
        return {row["id"] for row in rows}

    async def update_fields(self, task_id: str, **fields: Any) -> bool:
        """Unconditionally update non-status fields."""
        if "status" in fields:
            raise ValueError("use transition() or claim() to change status")
        if not fields:
            return False
        assignments, params = self._assignments(fields)
        count = await self.db.execute_update(
            f"UPDATE tasks SET {assignments} WHERE id = ?", (*params, task_id)
        )
        return count == 1

    async def claim(
        self,
        task_id: str,
        agent: str,
        from_statuses: Iterable[TaskStatus] = (TaskStatus.PENDING, TaskStatus.QUEUED),
        **fields: Any,
    ) -> bool:
        """Assign a task to ``agent`` only if it is unassigned (or already theirs)."""
        statuses = [TaskStatus(s).value for s in from_statuses]
        now = utcnow()
        assignments, params = self._assignments(
            {"status": TaskStatus.ASSIGNED.value, "assigned_to": agent, "assigned_at": now, **fields}
        )
        count = await self.db.execute_update(
            f"UPDATE tasks SET {assignments} WHERE id = ? "
            f"AND status IN ({', '.join('?' for _ in statuses)}) "
            "AND (assigned_to IS NULL OR assigned_to = ?)",
            (*params, task_id, *statuses, agent),
        )
        return count == 1

    async def transition(
        self,
        task_id: str,
        from_statuses: Iterable[TaskStatus],
        to_status: TaskStatus,
        **fields: Any,
    ) -> bool:
        """Move a task to ``to_status`` only if it is currently in one of ``from_statuses``."""
        statuses = [TaskStatus(s).value for s in from_statuses]
        assignments, params = self._assignments({"status": TaskStatus(to_status).value, **fields})
        count = await self.db.execute_update(
            f"UPDATE tasks SET {assignments} WHERE id = ? "
            f"AND status IN ({', '.join('?' for _ in statuses)})",
            (*params, task_id, *statuses),
        )
        return count == 1

    async def mark_blocked(self, task_id: str, reason: str | None, next_action: str | None) -> bool:
        """Move a pending task to ``blocked`` with the reason triage gave."""
        return await self.transition(
            task_id,
            (TaskStatus.PENDING,),
            TaskStatus.BLOCKED,
            blocking_reason=reason,
            next_action=next_action,
        )

    async def link_next_step(self, task_id: str, next_task_id: str) -> None:
        """Record that ``next_task_id`` follows ``task_id`` in a workflow."""
        async with self.db.connect() as conn:
            await conn.execute(
                """
                INSERT INTO task_links (from_id, to_id, relation) VALUES (?, ?, ?)
                ON CONFLICT(from_id, relation) DO UPDATE SET to_id = excluded.to_id
                """,
                (task_id, next_task_id, NEXT_STEP),
            )

    async def successor_of(self, task_id: str) -> Task | None:
        rows = await self.db.execute(
            """
            SELECT t.* FROM task_links l JOIN tasks t ON t.id = l.to_id
            WHERE l.from_id = ? AND l.relation = ?
            """,
            (task_id, NEXT_STEP),
        )
        return self._decode(rows[0]) if rows else None

    async def ensure_project(self, project_type: str) -> str:
        """Return the id of the project grouping for ``project_type``, creating it if needed."""
        async with self.db.connect() as conn:
            await conn.execute(
                """
                INSERT INTO projects (id, type, name, created_at) VALUES (?, ?, ?, ?)
                ON CONFLICT(type) DO NOTHING
                """,
                (
                    f"project-{uuid.uuid4().hex[:8]}",
                    project_type,
                    f"{project_type.replace('_', ' ').title()} Project",
                    utcnow(),
                ),
            )
            cursor = await conn.execute("SELECT id FROM projects WHERE type = ?", (project_type,))
            row = await cursor.fetchone()
        return str(row["id"])

    async def attach_project(self, task_id: str, project_type: str, **fields: Any) -> str:
        project_id = await self.ensure_project(project_type)
        await self.update_fields(task_id, project_id=project_id, **fields)
        return project_id

    async def get_project(self, project_id: str) -> dict[str, Any] | None:
        rows = await self.db.execute("SELECT * FROM projects WHERE id = ?", (project_id,))
        return dict(rows[0]) if rows else None

    async def counts_by_status(self) -> dict[str, int]:
        rows = await self.db.execute("SELECT status, COUNT(*) AS n FROM tasks GROUP BY status")
        return {row["status"]: row["n"] for row in rows}

    def _assignments(self, fields: dict[str, Any]) -> tuple[str, list[Any]]:
        unknown = set(fields) - _MUTABLE
        if unknown:
            raise ValueError(f"Unknown task fields: {sorted(unknown)}")
        fields = {**fields, "updated_at": fields.get("updated_at") or utcnow()}
        params = [self._encode_value(k, v) for k, v in fields.items()]
        return ", ".join(f"{k} = ?" for k in fields), params

    def _encode(self, task: Task) -> dict[str, Any]:
        data = task.to_dict()
        return {c: self._encode_value(c, data.get(c)) for c in _COLUMNS}

    @staticmethod
    def _encode_value(column: str, value: Any) -> Any:
        if column == "result":
            return None if value is None else json.dumps(value, default=str)
        if hasattr(value, "value"):
            return value.value
        return value

    @staticmethod
    def _decode(row: aiosqlite.Row) -> Task:
        data = {c: row[c] for c in _COLUMNS}
        data["result"] = json.loads(data["result"]) if data["result"] is not None else None
        data["description"] = data["description"] or ""
        return Task(**data)
