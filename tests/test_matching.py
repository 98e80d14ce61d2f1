"""Tests for the agent registry, capability matching and triage."""

from __future__ import annotations

import pytest

from taskswarm.engine.matching import KeywordMatcher, KeywordRule, delegation_matcher, routing_matcher
from taskswarm.engine.registry import AgentDescriptor, AgentRegistry, default_team
from taskswarm.engine.triage import BLOCKED_NEXT_ACTION, Effort, Readiness, TriageCoordinator
from taskswarm.models import Task


class TestRegistry:
    """Tests for AgentRegistry."""

    def test_default_team(self) -> None:
        team = default_team()
        assert len(team) == 7
        assert team.coordinator == "system-architect"
        assert team.triage_agent == "project-manager"
        assert team.require("qa-engineer").max_concurrent_tasks == 4
        assert team.require("system-architect").can_delegate is True
        assert team.require("backend-developer").can_delegate is False

    def test_rejects_invalid_capacity(self) -> None:
        with pytest.raises(ValueError):
            AgentDescriptor("x", "anything", max_concurrent_tasks=0)

    def test_rejects_duplicates(self) -> None:
        with pytest.raises(ValueError):
            AgentRegistry([AgentDescriptor("x", "a"), AgentDescriptor("x", "b")])

    def test_unknown_agent(self) -> None:
        team = default_team()
        assert team.get("nobody") is None
        with pytest.raises(KeyError):
            team.require("nobody")


class TestKeywordMatcher:
    """Tests for keyword-based routing."""

    @pytest.mark.parametrize(
        ("text", "agent"),
        [
            ("Plan the migration strategy", "system-architect"),
            ("Add a REST API for invoices", "backend-developer"),
            ("Restyle the navbar with CSS", "frontend-developer"),
            ("Increase test coverage for parser", "qa-engineer"),
            ("Set up docker for staging", "devops-engineer"),
            ("Refactor the payment module", "code-reviewer"),
            ("Write the release notes", "system-architect"),
        ],
    )
    def test_routing(self, text: str, agent: str) -> None:
        assert routing_matcher().select(text) == agent

    def test_first_match_wins(self) -> None:
        # mentions both backend and frontend keywords
        assert routing_matcher().select("Server endpoint feeding a React component") == "backend-developer"

    def test_deterministic(self) -> None:
        matcher = routing_matcher()
        text = "Optimize database queries behind the dashboard UI"
        assert len({matcher.select(text) for _ in range(50)}) == 1

    def test_exclude(self) -> None:
        matcher = KeywordMatcher([KeywordRule("a", ("alpha",)), KeywordRule("b", ("alpha",))], default="c")
        assert matcher.select("alpha") == "a"
        assert matcher.select("alpha", exclude={"a"}) == "b"
        assert matcher.select("alpha", exclude={"a", "b"}) == "c"
        assert matcher.select("alpha", exclude={"a", "b", "c"}) is None

    def test_delegation_specialists(self) -> None:
        matcher = delegation_matcher()
        assert matcher.select("expose an api") == "backend-developer"
        assert matcher.select("frontend polish") == "frontend-developer"
        assert matcher.select("qa pass") == "qa-engineer"
        assert matcher.select("deploy it") == "devops-engineer"
        assert matcher.select("something else") == "backend-developer"


class TestTriage:
    """Tests for blocked-task detection and project classification."""

    def test_too_brief_is_blocked(self) -> None:
        analysis = TriageCoordinator().analyze(Task.new("fix it"))
        assert analysis.status == Readiness.BLOCKED
        assert analysis.reason is not None
        assert "too brief" in analysis.reason
        assert analysis.next_action == BLOCKED_NEXT_ACTION

    def test_vague_development_request_is_blocked(self) -> None:
        analysis = TriageCoordinator().analyze(Task.new("Build the new thing we talked about"))
        assert analysis.blocked
        assert analysis.reason is not None
        assert "technical specifications" in analysis.reason

    def test_detailed_task_is_ready(self) -> None:
        task = Task.new(
            "Implement POST /users API with JWT auth",
            "Accept email and password, validate input, hash passwords with bcrypt, "
            "return a signed token and a 201 status. Reject duplicates with 409.",
        )
        analysis = TriageCoordinator().analyze(task)
        assert analysis.status == Readiness.READY
        assert analysis.reason is None
        assert analysis.primary_agent == "backend-developer"
        assert analysis.project_type == "backend"
        assert analysis.workflow_steps == ["backend-developer", "qa-engineer", "code-reviewer"]

    def test_effort_by_word_count(self) -> None:
        triage = TriageCoordinator()
        assert triage.estimate_effort("few words here") == Effort.SMALL
        assert triage.estimate_effort(" ".join(["word"] * 30)) == Effort.MEDIUM
        assert triage.estimate_effort(" ".join(["word"] * 60)) == Effort.LARGE

    def test_workflow_for_reviewer(self) -> None:
        assert TriageCoordinator.determine_workflow("code-reviewer") == ["code-reviewer"]
        assert TriageCoordinator.determine_workflow("system-architect") == ["system-architect", "code-reviewer"]

    def test_dependencies(self) -> None:
        deps = TriageCoordinator.identify_dependencies("wire the api into the frontend and deploy")
        assert deps == ["backend-api-first", "testing-complete"]

    def test_next_agent_in_workflow(self) -> None:
        task = Task.new("Create a React component for the signup form")
        triage = TriageCoordinator()
        assert triage.next_agent_in_workflow(task, "frontend-developer") == "qa-engineer"
        assert triage.next_agent_in_workflow(task, "code-reviewer") is None
