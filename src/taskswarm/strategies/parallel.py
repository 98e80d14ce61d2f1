"""Parallel: independent work packages, one per specialization, no shared context."""

from __future__ import annotations

import logging
from typing import Any

from taskswarm.engine.registry import BACKEND_DEVELOPER, FRONTEND_DEVELOPER, QA_ENGINEER, SYSTEM_ARCHITECT
from taskswarm.models import CoordinationSession
from taskswarm.strategies.base import BaseStrategy, StrategyContext, task_brief

logger = logging.getLogger(__name__)

WORK_PACKAGES: tuple[tuple[str, str, str], ...] = (
    ("architecture_planning", SYSTEM_ARCHITECT, "Plan the overall architecture."),
    ("backend_requirements", BACKEND_DEVELOPER, "List the backend requirements and APIs."),
    ("frontend_requirements", FRONTEND_DEVELOPER, "List the frontend requirements and components."),
    ("quality_requirements", QA_ENGINEER, "List the quality requirements and test coverage."),
)


class ParallelStrategy(BaseStrategy):
    """All work packages run concurrently; results are recorded in completion order."""

    name = "parallel"
    description = "Independent work packages executed concurrently"

    async def run(self, session: CoordinationSession, ctx: StrategyContext) -> Any:
        brief = task_brief(session)
        packages = [p for p in WORK_PACKAGES if ctx.available(p[1])]
        for name, agent, _ in WORK_PACKAGES:
            if not ctx.available(agent):
                logger.warning("Work package %s skipped: no agent %s", name, agent)

        outputs = await ctx.fan_out(
            [
                ctx.invoke(session, name, agent, f"{brief}\n\nWork package: {name}\n{instruction}")
                for name, agent, instruction in packages
            ]
        )
        return {name: output for (name, _, _), output in zip(packages, outputs)}
