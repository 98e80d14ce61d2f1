"""Base strategy class and the context strategies run in."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from taskswarm.engine.reasoning import Reasoner
from taskswarm.engine.registry import AgentRegistry
from taskswarm.models import CoordinationSession

logger = logging.getLogger(__name__)


@dataclass
class StrategyContext:
    """Collaborators a strategy may use."""

    registry: AgentRegistry
    reasoner: Reasoner
    can_accept: Callable[[str], bool]
    coordinator: str

    def available(self, agent: str) -> bool:
        return agent in self.registry

    async def invoke(
        self,
        session: CoordinationSession,
        phase: str,
        agent: str,
        prompt: str,
        extra: dict[str, Any] | None = None,
    ) -> Any:
        """Call the reasoning capability as ``agent`` and record the result on the session."""
        descriptor = self.registry.require(agent)
        session.add_participant(agent)
        context = {
            "agent": agent,
            "session_id": session.id,
            "phase": phase,
            "system_prompt": descriptor.system_prompt,
            **(extra or {}),
        }
        output = await self.reasoner.think(prompt, context)
        session.record(phase, agent, output)
        return output

    async def fan_out(self, calls: Sequence[Awaitable[Any]]) -> list[Any]:
        """Await every call; once all have finished, re-raise the first failure."""
        outcomes = await asyncio.gather(*calls, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return list(outcomes)


def task_brief(session: CoordinationSession) -> str:
    task = session.task
    brief = f"Task: {task.get('title', '')}"
    if task.get("description"):
        brief += f"\n\n{task['description']}"
    return brief


def task_text(session: CoordinationSession) -> str:
    return f"{session.task.get('title', '')} {session.task.get('description') or ''}".lower()


class BaseStrategy(ABC):
    """Base class for coordination strategies."""

    name: str
    description: str

    @abstractmethod
    async def run(self, session: CoordinationSession, ctx: StrategyContext) -> Any:
        """Execute the strategy for the session's task.

        Args:
            session: Session to record participants and phase results on
            ctx: Registry, reasoner and admission check

        Returns:
            The strategy's combined result payload

        """
        ...
