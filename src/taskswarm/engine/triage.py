"""Triage: decide whether a task is specific enough to assign, and how to group it.

A task is blocked when it is too short to act on, or when it asks to build
something without naming anything concrete to build. Ready tasks get a
project type, a primary agent, an effort estimate and a workflow.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from taskswarm.engine.registry import (
    BACKEND_DEVELOPER,
    CODE_REVIEWER,
    DEVOPS_ENGINEER,
    FRONTEND_DEVELOPER,
    QA_ENGINEER,
    SYSTEM_ARCHITECT,
)
from taskswarm.models import Task

MIN_TEXT_LENGTH = 20
MIN_DEV_WORDS = 10

DEV_VERBS = ("create", "build", "implement")
TECHNICAL_TERMS = ("api", "component", "database", "ui", "test", "deploy")

BLOCKED_NEXT_ACTION = "Requires additional information before assignment"

# (keywords, project type, primary agent), checked in order.
PROJECT_RULES: tuple[tuple[tuple[str, ...], str, str], ...] = (
    (("ui", "frontend", "react", "component"), "frontend", FRONTEND_DEVELOPER),
    (("api", "backend", "database", "server"), "backend", BACKEND_DEVELOPER),
    (("deploy", "docker", "infrastructure", "devops"), "infrastructure", DEVOPS_ENGINEER),
    (("test", "qa", "quality", "bug"), "testing", QA_ENGINEER),
    (("review", "security", "audit", "optimize"), "review", CODE_REVIEWER),
    (("design", "architecture", "plan", "system"), "architecture", SYSTEM_ARCHITECT),
)
DEFAULT_PROJECT = ("general", SYSTEM_ARCHITECT)

QA_FOLLOWUP_AGENTS = (FRONTEND_DEVELOPER, BACKEND_DEVELOPER, DEVOPS_ENGINEER)


class Readiness(StrEnum):
    READY = "ready"
    BLOCKED = "blocked"


class Effort(StrEnum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


@dataclass
class TaskAnalysis:
    """Outcome of triaging one task."""

    status: Readiness
    primary_agent: str
    project_type: str
    estimated_effort: Effort
    workflow_steps: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    reason: str | None = None
    next_action: str | None = None

    @property
    def blocked(self) -> bool:
        return self.status == Readiness.BLOCKED

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "primary_agent": self.primary_agent,
            "project_type": self.project_type,
            "estimated_effort": self.estimated_effort.value,
            "workflow_steps": list(self.workflow_steps),
            "dependencies": list(self.dependencies),
            "reason": self.reason,
            "next_action": self.next_action,
        }


class TriageCoordinator:
    """Rule-based task classification used by the project-manager role."""

    def analyze(self, task: Task) -> TaskAnalysis:
        text = task.text
        project_type, primary = self.classify(text)
        analysis = TaskAnalysis(
            status=Readiness.READY,
            primary_agent=primary,
            project_type=project_type,
            estimated_effort=self.estimate_effort(text),
            workflow_steps=self.determine_workflow(primary),
            dependencies=self.identify_dependencies(text),
        )
        if self.is_blocked(task):
            analysis.status = Readiness.BLOCKED
            analysis.reason = self.blocking_reason(task)
            analysis.next_action = BLOCKED_NEXT_ACTION
        return analysis

    def is_blocked(self, task: Task) -> bool:
        text = task.text.strip()
        if len(text) < MIN_TEXT_LENGTH:
            return True
        return self._vague_development_request(text)

    def blocking_reason(self, task: Task) -> str:
        text = task.text.strip()
        if len(text) < MIN_TEXT_LENGTH:
            return "Task description is too brief. Please provide more detailed requirements."
        if self._vague_development_request(text):
            return (
                "Development task needs more technical specifications "
                "(API endpoints, UI mockups, database schema, etc.)"
            )
        return "Task requires additional clarification or requirements before assignment."

    @staticmethod
    def _vague_development_request(text: str) -> bool:
        if not any(verb in text for verb in DEV_VERBS):
            return False
        # word-prefix match so "build" does not count as "ui"
        if any(re.search(rf"\b{re.escape(term)}", text) for term in TECHNICAL_TERMS):
            return False
        return len(text.split()) < MIN_DEV_WORDS

    @staticmethod
    def classify(text: str) -> tuple[str, str]:
        """Return ``(project_type, primary_agent)`` for lower-cased task text."""
        for keywords, project_type, agent in PROJECT_RULES:
            if any(k in text for k in keywords):
                return project_type, agent
        return DEFAULT_PROJECT

    @staticmethod
    def estimate_effort(text: str) -> Effort:
        words = len(text.split())
        if words < 20:
            return Effort.SMALL
        if words < 50:
            return Effort.MEDIUM
        return Effort.LARGE

    @staticmethod
    def determine_workflow(primary: str) -> list[str]:
        steps = [primary]
        if primary in QA_FOLLOWUP_AGENTS:
            steps.append(QA_ENGINEER)
        if primary != CODE_REVIEWER:
            steps.append(CODE_REVIEWER)
        return steps

    @staticmethod
    def identify_dependencies(text: str) -> list[str]:
        deps = []
        if "api" in text and "frontend" in text:
            deps.append("backend-api-first")
        if "deploy" in text or "production" in text:
            deps.append("testing-complete")
        return deps

    def next_agent_in_workflow(self, task: Task, current_agent: str) -> str | None:
        _, primary = self.classify(task.text)
        steps = self.determine_workflow(primary)
        if current_agent not in steps:
            return None
        index = steps.index(current_agent)
        return steps[index + 1] if index + 1 < len(steps) else None
