"""Delegated planning: coordinator plans, specialists execute, coordinator integrates."""

from __future__ import annotations

import logging
from typing import Any

from taskswarm.engine.registry import BACKEND_DEVELOPER, FRONTEND_DEVELOPER, QA_ENGINEER
from taskswarm.models import CoordinationSession
from taskswarm.strategies.base import BaseStrategy, StrategyContext, task_brief, task_text

logger = logging.getLogger(__name__)

# (keywords, subtask title, agent); an empty keyword tuple always applies.
SUBTASK_TEMPLATES: tuple[tuple[tuple[str, ...], str, str], ...] = (
    (("api", "backend"), "Backend API Development", BACKEND_DEVELOPER),
    (("ui", "interface", "frontend"), "Frontend Interface Development", FRONTEND_DEVELOPER),
    ((), "Quality Assurance", QA_ENGINEER),
)


def extract_subtasks(text: str) -> list[tuple[str, str]]:
    """Split task text into ``(title, agent)`` subtasks by keyword."""
    return [
        (title, agent)
        for keywords, title, agent in SUBTASK_TEMPLATES
        if not keywords or any(k in text for k in keywords)
    ]


class DelegatedStrategy(BaseStrategy):
    """Coordinator-led planning.

    1. The coordinator writes a plan.
    2. Each subtask goes to its specialist, if that agent exists and has
       capacity; otherwise the subtask is skipped.
    3. The coordinator integrates everything into one result.
    """

    name = "delegated"
    description = "Coordinator plans, specialists execute subtasks, coordinator integrates"

    async def run(self, session: CoordinationSession, ctx: StrategyContext) -> Any:
        brief = task_brief(session)
        plan = await ctx.invoke(
            session,
            "planning",
            ctx.coordinator,
            f"{brief}\n\nProduce a technical plan: components, interfaces, risks and the order of work.",
        )

        subtask_results: dict[str, Any] = {}
        skipped: list[str] = []
        for title, agent in extract_subtasks(task_text(session)):
            if not ctx.available(agent) or not ctx.can_accept(agent):
                logger.warning("Skipping subtask %r: %s unavailable", title, agent)
                skipped.append(title)
                continue
            subtask_results[title] = await ctx.invoke(
                session,
                f"subtask:{title}",
                agent,
                f"{brief}\n\nSubtask: {title}\n\nPlan from the coordinator:\n{plan}",
                {"subtask": title},
            )

        integration = await ctx.invoke(
            session,
            "integration",
            ctx.coordinator,
            f"{brief}\n\nIntegrate these specialist results into one coherent deliverable:\n"
            + "\n\n".join(f"## {title}\n{output}" for title, output in subtask_results.items()),
            {"subtasks": list(subtask_results)},
        )
        return {
            "plan": plan,
            "subtask_results": subtask_results,
            "skipped_subtasks": skipped,
            "integration": integration,
        }
