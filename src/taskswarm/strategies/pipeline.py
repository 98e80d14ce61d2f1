"""Pipeline: fixed stages run strictly in order, each seeing all earlier output."""

from __future__ import annotations

import logging
from typing import Any

from taskswarm.engine.registry import BACKEND_DEVELOPER, FRONTEND_DEVELOPER, QA_ENGINEER, SYSTEM_ARCHITECT
from taskswarm.models import CoordinationSession
from taskswarm.strategies.base import BaseStrategy, StrategyContext, task_brief

logger = logging.getLogger(__name__)

STAGES: tuple[tuple[str, str, str], ...] = (
    ("analysis", SYSTEM_ARCHITECT, "Analyze the requirements and outline the solution."),
    ("backend_design", BACKEND_DEVELOPER, "Design the backend: APIs, data model and services."),
    ("frontend_design", FRONTEND_DEVELOPER, "Design the frontend: screens, components and state."),
    ("testing_strategy", QA_ENGINEER, "Define the testing strategy and acceptance criteria."),
)


class PipelineStrategy(BaseStrategy):
    """Sequential stages. A failing stage stops the pipeline; later stages never run."""

    name = "pipeline"
    description = "Analysis -> backend -> frontend -> testing, each stage building on the last"

    def __init__(self, stages: tuple[tuple[str, str, str], ...] = STAGES) -> None:
        self.stages = stages

    async def run(self, session: CoordinationSession, ctx: StrategyContext) -> Any:
        brief = task_brief(session)
        accumulated: dict[str, Any] = {}
        for stage, agent, instruction in self.stages:
            if not ctx.available(agent):
                logger.warning("Pipeline stage %s skipped: no agent %s", stage, agent)
                continue
            previous = "\n\n".join(f"## {name}\n{output}" for name, output in accumulated.items())
            prompt = f"{brief}\n\nStage: {stage}\n{instruction}"
            if previous:
                prompt += f"\n\nPrevious stage results:\n{previous}"
            accumulated[f"{stage}_result"] = await ctx.invoke(
                session, stage, agent, prompt, {"previous_stage_results": dict(accumulated)}
            )
        return accumulated
