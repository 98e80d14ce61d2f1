"""Exception hierarchy for the dispatch system."""

from __future__ import annotations


class TaskSwarmError(Exception):
    """Base class for all taskswarm errors."""


class ConfigError(TaskSwarmError):
    """Invalid configuration value."""


class StoreUnavailable(TaskSwarmError):
    """The durable task store could not be reached or rejected a query."""


class AdmissionDenied(TaskSwarmError):
    """An agent has no capacity or no remaining quota."""

    def __init__(self, agent: str, reason: str) -> None:
        super().__init__(f"{agent}: {reason}")
        self.agent = agent
        self.reason = reason


class TaskBlocked(TaskSwarmError):
    """A task lacks the detail needed to be assigned."""

    def __init__(self, task_id: str, reason: str, next_action: str) -> None:
        super().__init__(f"Task {task_id} blocked: {reason}")
        self.task_id = task_id
        self.reason = reason
        self.next_action = next_action


class ExecutionFailed(TaskSwarmError):
    """The reasoning capability failed while working on a task."""

    def __init__(self, task_id: str, agent: str, message: str) -> None:
        super().__init__(f"{agent} failed on {task_id}: {message}")
        self.task_id = task_id
        self.agent = agent
        self.message = message


class TaskNotFound(TaskSwarmError):
    """No task with the given id exists in the store."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class TriggerRejected(TaskSwarmError):
    """Manual trigger requested for a task in an ineligible status."""

    def __init__(self, task_id: str, status: str, reason: str | None = None) -> None:
        reason = reason or "only pending, queued or assigned tasks can be triggered"
        super().__init__(f"Task {task_id} is in status '{status}'; {reason}")
        self.task_id = task_id
        self.status = status
        self.reason = reason


class UnknownStrategy(TaskSwarmError):
    """Requested coordination strategy is not registered."""

    def __init__(self, name: str, known: list[str]) -> None:
        super().__init__(f"Unknown coordination strategy: {name} (known: {', '.join(known)})")
        self.name = name
