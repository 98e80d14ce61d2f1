"""Core records: tasks, queue entries, routing outcomes and coordination sessions."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any


def utcnow() -> str:
    """ISO-8601 timestamp used for every persisted time field."""
    return datetime.now(timezone.utc).isoformat()


class TaskStatus(StrEnum):
    """Task lifecycle states."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    QUEUED = "queued"
    BLOCKED = "blocked"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


LIVE_STATUSES: tuple[TaskStatus, ...] = (
    TaskStatus.PENDING,
    TaskStatus.QUEUED,
    TaskStatus.ASSIGNED,
    TaskStatus.IN_PROGRESS,
)


class TaskPriority(StrEnum):
    """Task priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    TaskPriority.LOW: 0,
    TaskPriority.MEDIUM: 1,
    TaskPriority.HIGH: 2,
    TaskPriority.CRITICAL: 3,
}


@dataclass
class Task:
    """A unit of work.

    ``result`` is whatever the reasoning capability returned. It must be
    JSON-serialisable; nothing in the dispatch core looks inside it.
    """

    id: str
    title: str
    description: str = ""
    type: str = "general"
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    assigned_to: str | None = None
    preferred_agent: str | None = None
    project_id: str | None = None
    created_at: str = field(default_factory=utcnow)
    updated_at: str | None = None
    assigned_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    failed_at: str | None = None
    ready_at: str | None = None
    result: Any = None
    error: str | None = None
    blocking_reason: str | None = None
    next_action: str | None = None
    estimated_effort: str | None = None
    delegated_by: str | None = None
    next_agent: str | None = None

    def __post_init__(self) -> None:
        self.priority = TaskPriority(self.priority)
        self.status = TaskStatus(self.status)

    @classmethod
    def new(
        cls,
        title: str,
        description: str = "",
        *,
        type: str = "general",
        priority: TaskPriority | str = TaskPriority.MEDIUM,
        task_id: str | None = None,
    ) -> Task:
        return cls(
            id=task_id or f"task-{uuid.uuid4().hex[:12]}",
            title=title,
            description=description,
            type=type,
            priority=TaskPriority(priority),
        )

    @property
    def text(self) -> str:
        """Lower-cased title and description, the input to keyword matching."""
        return f"{self.title} {self.description or ''}".lower()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["priority"] = self.priority.value
        data["status"] = self.status.value
        return data


@dataclass
class QueuedTask:
    """Pending-queue entry awaiting capacity on its preferred agent."""

    task: Task
    preferred_agent: str
    queued_at: str = field(default_factory=utcnow)
    estimated_wait: int = 0
    delegation_failed: bool = False


@dataclass
class RouteOutcome:
    """What happened to a task after one routing or execution step."""

    task_id: str
    status: TaskStatus
    agent: str | None = None
    preferred_agent: str | None = None
    delegated_by: str | None = None
    next_agent: str | None = None
    position: int | None = None
    estimated_wait: int | None = None
    reason: str | None = None
    next_action: str | None = None
    result: Any = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {k: v for k, v in asdict(self).items() if v is not None}
        data["status"] = self.status.value
        return data


class SessionStatus(StrEnum):
    """Coordination session states."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PhaseResult:
    """Output of one agent invocation inside a coordination session."""

    phase: str
    agent: str
    output: Any
    timestamp: str = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CoordinationSession:
    """Ephemeral record of one multi-agent workflow run."""

    id: str
    task: dict[str, Any]
    strategy: str
    status: SessionStatus = SessionStatus.IN_PROGRESS
    participants: list[str] = field(default_factory=list)
    results: list[PhaseResult] = field(default_factory=list)
    started_at: str = field(default_factory=utcnow)
    completed_at: str | None = None
    result: Any = None
    error: str | None = None
    expires_at: float | None = None

    def add_participant(self, agent: str) -> None:
        self.participants.append(agent)

    def record(self, phase: str, agent: str, output: Any) -> PhaseResult:
        entry = PhaseResult(phase=phase, agent=agent, output=output)
        self.results.append(entry)
        return entry

    @property
    def finished(self) -> bool:
        return self.status != SessionStatus.IN_PROGRESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task": self.task,
            "strategy": self.strategy,
            "status": self.status.value,
            "participants": list(self.participants),
            "results": [r.to_dict() for r in self.results],
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "result": self.result,
            "error": self.error,
        }
