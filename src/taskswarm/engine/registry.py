"""Agent Registry - the fixed pool of agents work can be dispatched to."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class AgentDescriptor:
    """A named worker with a concurrency limit. Not a thread."""

    name: str
    specialization: str
    max_concurrent_tasks: int = 1
    can_delegate: bool = False
    triage: bool = False  # classifies and groups incoming work before routing
    system_prompt: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Agent name must be non-empty")
        if self.max_concurrent_tasks < 1:
            raise ValueError(f"{self.name}: max_concurrent_tasks must be >= 1")

    @property
    def specialization_words(self) -> set[str]:
        words = self.specialization.lower().replace(",", " ").split()
        return {w for w in words if len(w) > 3}

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "specialization": self.specialization,
            "max_concurrent_tasks": self.max_concurrent_tasks,
            "can_delegate": self.can_delegate,
            "triage": self.triage,
        }


class AgentRegistry:
    """Immutable name -> descriptor mapping."""

    def __init__(self, agents: Iterable[AgentDescriptor], coordinator: str | None = None) -> None:
        self._agents: dict[str, AgentDescriptor] = {}
        for agent in agents:
            if agent.name in self._agents:
                raise ValueError(f"Duplicate agent name: {agent.name}")
            self._agents[agent.name] = agent
        if not self._agents:
            raise ValueError("Registry needs at least one agent")
        if coordinator is not None and coordinator not in self._agents:
            raise ValueError(f"Coordinator {coordinator} is not a registered agent")
        self._coordinator = coordinator

    def __iter__(self) -> Iterator[AgentDescriptor]:
        return iter(self._agents.values())

    def __contains__(self, name: object) -> bool:
        return name in self._agents

    def __len__(self) -> int:
        return len(self._agents)

    def get(self, name: str | None) -> AgentDescriptor | None:
        if name is None:
            return None
        return self._agents.get(name)

    def require(self, name: str) -> AgentDescriptor:
        try:
            return self._agents[name]
        except KeyError:
            raise KeyError(f"Unknown agent: {name}") from None

    def names(self) -> list[str]:
        return list(self._agents)

    @property
    def coordinator(self) -> str:
        """Planning agent used by coordination strategies."""
        if self._coordinator is not None:
            return self._coordinator
        for agent in self._agents.values():
            if agent.can_delegate and not agent.triage:
                return agent.name
        return next(iter(self._agents))

    @property
    def triage_agent(self) -> str | None:
        for agent in self._agents.values():
            if agent.triage:
                return agent.name
        return None


SYSTEM_ARCHITECT = "system-architect"
BACKEND_DEVELOPER = "backend-developer"
FRONTEND_DEVELOPER = "frontend-developer"
QA_ENGINEER = "qa-engineer"
DEVOPS_ENGINEER = "devops-engineer"
CODE_REVIEWER = "code-reviewer"
PROJECT_MANAGER = "project-manager"


def default_team() -> AgentRegistry:
    """The standard seven-agent team."""
    return AgentRegistry(
        [
            AgentDescriptor(
                SYSTEM_ARCHITECT,
                "System architecture and technical planning",
                max_concurrent_tasks=2,
                can_delegate=True,
                system_prompt=(
                    "You are a senior system architect. Produce clear technical plans, "
                    "identify components and interfaces, and call out risks."
                ),
            ),
            AgentDescriptor(
                BACKEND_DEVELOPER,
                "Server-side development and API creation",
                max_concurrent_tasks=3,
                system_prompt="You are a backend developer. Design and implement APIs, services and data models.",
            ),
            AgentDescriptor(
                FRONTEND_DEVELOPER,
                "Frontend development and user interfaces",
                max_concurrent_tasks=2,
                system_prompt="You are a frontend developer. Build accessible, maintainable user interfaces.",
            ),
            AgentDescriptor(
                QA_ENGINEER,
                "Quality assurance and testing",
                max_concurrent_tasks=4,
                system_prompt="You are a QA engineer. Write test plans and find defects before users do.",
            ),
            AgentDescriptor(
                DEVOPS_ENGINEER,
                "Deployment, infrastructure, and operations",
                max_concurrent_tasks=3,
                system_prompt="You are a DevOps engineer. Handle builds, deployment pipelines and infrastructure.",
            ),
            AgentDescriptor(
                CODE_REVIEWER,
                "Code review and quality standards",
                max_concurrent_tasks=5,
                system_prompt="You are a code reviewer. Check correctness, security and adherence to standards.",
            ),
            AgentDescriptor(
                PROJECT_MANAGER,
                "Task assignment, project organization, workflow coordination",
                max_concurrent_tasks=10,
                can_delegate=True,
                triage=True,
                system_prompt="You are a project manager. Clarify requirements and organise work into projects.",
            ),
        ],
        coordinator=SYSTEM_ARCHITECT,
    )
