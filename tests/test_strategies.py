"""Tests for coordination strategies."""

from __future__ import annotations

import pytest

from taskswarm.engine.registry import default_team
from taskswarm.models import CoordinationSession, Task
from taskswarm.strategies import (
    STRATEGIES,
    CollaborativeStrategy,
    DelegatedStrategy,
    ParallelStrategy,
    PipelineStrategy,
    StrategyContext,
)
from taskswarm.strategies.delegated import extract_subtasks

from conftest import ScriptedReasoner

pytestmark = pytest.mark.anyio


def make_context(reasoner: ScriptedReasoner, busy: set[str] | None = None) -> StrategyContext:
    registry = default_team()
    busy = busy or set()
    return StrategyContext(
        registry=registry,
        reasoner=reasoner,
        can_accept=lambda agent: agent not in busy,
        coordinator=registry.coordinator,
    )


def make_session(title: str, strategy: str, description: str = "") -> CoordinationSession:
    return CoordinationSession(id="coord-test", task=Task.new(title, description).to_dict(), strategy=strategy)


def test_strategy_registry() -> None:
    """Test that all strategies are registered."""
    assert STRATEGIES["delegated"] == DelegatedStrategy
    assert STRATEGIES["architect-led"] == DelegatedStrategy
    assert STRATEGIES["collaborative"] == CollaborativeStrategy
    assert STRATEGIES["pipeline"] == PipelineStrategy
    assert STRATEGIES["parallel"] == ParallelStrategy


def test_extract_subtasks() -> None:
    assert extract_subtasks("build an api and a ui") == [
        ("Backend API Development", "backend-developer"),
        ("Frontend Interface Development", "frontend-developer"),
        ("Quality Assurance", "qa-engineer"),
    ]
    assert extract_subtasks("write docs") == [("Quality Assurance", "qa-engineer")]


class TestDelegated:
    async def test_plan_subtasks_integrate(self, reasoner: ScriptedReasoner) -> None:
        session = make_session("Build an api and a ui", "delegated")
        result = await DelegatedStrategy().run(session, make_context(reasoner))

        assert reasoner.agents_called() == [
            "system-architect",
            "backend-developer",
            "frontend-developer",
            "qa-engineer",
            "system-architect",
        ]
        assert list(result["subtask_results"]) == [
            "Backend API Development",
            "Frontend Interface Development",
            "Quality Assurance",
        ]
        assert result["skipped_subtasks"] == []
        assert [r.phase for r in session.results][0] == "planning"
        assert [r.phase for r in session.results][-1] == "integration"

    async def test_busy_specialist_is_skipped(self, reasoner: ScriptedReasoner) -> None:
        session = make_session("Build an api and a ui", "delegated")
        result = await DelegatedStrategy().run(session, make_context(reasoner, busy={"frontend-developer"}))

        assert "frontend-developer" not in reasoner.agents_called()
        assert result["skipped_subtasks"] == ["Frontend Interface Development"]
        assert list(result["subtask_results"]) == ["Backend API Development", "Quality Assurance"]


class TestCollaborative:
    def test_select_agents(self, reasoner: ScriptedReasoner) -> None:
        ctx = make_context(reasoner)
        agents = CollaborativeStrategy.select_agents(
            ctx, "server-side development of the invoices screen with quality testing"
        )
        assert agents == ["system-architect", "backend-developer", "frontend-developer", "qa-engineer"]

    def test_select_agents_without_overlap(self, reasoner: ScriptedReasoner) -> None:
        assert CollaborativeStrategy.select_agents(make_context(reasoner), "tidy up") == ["system-architect"]

    async def test_contributions_then_synthesis(self, reasoner: ScriptedReasoner) -> None:
        session = make_session("Server-side development with quality testing", "collaborative")
        result = await CollaborativeStrategy().run(session, make_context(reasoner))

        assert set(result["contributions"]) == set(result["collaborators"])
        assert reasoner.calls[-1]["phase"] == "synthesis"
        assert reasoner.calls[-1]["agent"] == "system-architect"

    async def test_failure_waits_for_all_contributions(self) -> None:
        reasoner = ScriptedReasoner(delay=0.01)
        reasoner.fail_for.add("frontend-developer")
        session = make_session("Server-side development of the invoices screen with quality testing", "collaborative")

        with pytest.raises(RuntimeError, match="frontend-developer"):
            await CollaborativeStrategy().run(session, make_context(reasoner))

        assert sorted(reasoner.agents_called()) == sorted(
            ["system-architect", "backend-developer", "frontend-developer", "qa-engineer"]
        )
        assert "synthesis" not in [call["phase"] for call in reasoner.calls]
        assert len(session.results) == 3


class TestPipeline:
    async def test_stages_run_in_order(self, reasoner: ScriptedReasoner) -> None:
        session = make_session("Invoice portal", "pipeline")
        result = await PipelineStrategy().run(session, make_context(reasoner))

        assert list(result) == [
            "analysis_result",
            "backend_design_result",
            "frontend_design_result",
            "testing_strategy_result",
        ]
        assert reasoner.agents_called() == [
            "system-architect",
            "backend-developer",
            "frontend-developer",
            "qa-engineer",
        ]
        # each stage sees the output of the ones before it
        assert "analysis_result" not in reasoner.calls[0]["prompt"]
        assert "analysis_result" in reasoner.calls[1]["prompt"]
        assert "backend_design_result" in reasoner.calls[2]["prompt"]

    async def test_failing_stage_stops_pipeline(self, reasoner: ScriptedReasoner) -> None:
        reasoner.fail_for.add("backend-developer")
        session = make_session("Invoice portal", "pipeline")

        with pytest.raises(RuntimeError):
            await PipelineStrategy().run(session, make_context(reasoner))

        assert reasoner.agents_called() == ["system-architect", "backend-developer"]
        assert [r.phase for r in session.results] == ["analysis"]


class TestParallel:
    async def test_all_packages(self, reasoner: ScriptedReasoner) -> None:
        session = make_session("Invoice portal", "parallel")
        result = await ParallelStrategy().run(session, make_context(reasoner))

        assert set(result) == {
            "architecture_planning",
            "backend_requirements",
            "frontend_requirements",
            "quality_requirements",
        }
        assert len(session.participants) == 4
