"""Collaborative: relevant agents contribute concurrently, coordinator synthesizes."""

from __future__ import annotations

from typing import Any

from taskswarm.models import CoordinationSession
from taskswarm.strategies.base import BaseStrategy, StrategyContext, task_brief, task_text

MAX_COLLABORATORS = 4


class CollaborativeStrategy(BaseStrategy):
    """Up to four agents answer the same prompt at once; the coordinator merges the answers."""

    name = "collaborative"
    description = "Relevant agents contribute in parallel, coordinator synthesizes"

    @staticmethod
    def select_agents(ctx: StrategyContext, text: str) -> list[str]:
        selected = [ctx.coordinator]
        for agent in ctx.registry:
            if len(selected) >= MAX_COLLABORATORS:
                break
            if agent.name == ctx.coordinator or agent.triage:
                continue
            if any(word in text for word in agent.specialization_words):
                selected.append(agent.name)
        return selected

    async def run(self, session: CoordinationSession, ctx: StrategyContext) -> Any:
        brief = task_brief(session)
        agents = self.select_agents(ctx, task_text(session))
        prompt = f"{brief}\n\nContribute your specialist perspective: approach, risks and concrete recommendations."

        outputs = await ctx.fan_out([ctx.invoke(session, "contribution", agent, prompt) for agent in agents])
        contributions = dict(zip(agents, outputs))

        synthesis = await ctx.invoke(
            session,
            "synthesis",
            ctx.coordinator,
            f"{brief}\n\nSynthesize these contributions into one result:\n"
            + "\n\n".join(f"## {agent}\n{output}" for agent, output in contributions.items()),
        )
        return {"collaborators": agents, "contributions": contributions, "synthesis": synthesis}
