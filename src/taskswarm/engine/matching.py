"""Capability matching: map task text to the agent best suited for it."""

from __future__ import annotations

from collections.abc import Collection, Sequence
from dataclasses import dataclass
from typing import Protocol

from taskswarm.engine.registry import (
    BACKEND_DEVELOPER,
    CODE_REVIEWER,
    DEVOPS_ENGINEER,
    FRONTEND_DEVELOPER,
    QA_ENGINEER,
    SYSTEM_ARCHITECT,
)


class CapabilityMatcher(Protocol):
    """Anything that can pick an agent name for a piece of task text."""

    def select(self, text: str, exclude: Collection[str] = ()) -> str | None: ...


@dataclass(frozen=True)
class KeywordRule:
    agent: str
    keywords: tuple[str, ...]

    def matches(self, text: str) -> bool:
        return any(keyword in text for keyword in self.keywords)


class KeywordMatcher:
    """Ordered keyword rules; the first rule whose keywords appear in the text wins.

    Matching is plain substring search over lower-cased text, so the result
    depends only on the text and the rule list.
    """

    def __init__(self, rules: Sequence[KeywordRule], default: str | None) -> None:
        self.rules = tuple(rules)
        self.default = default

    def select(self, text: str, exclude: Collection[str] = ()) -> str | None:
        text = text.lower()
        for rule in self.rules:
            if rule.agent in exclude:
                continue
            if rule.matches(text):
                return rule.agent
        if self.default in exclude:
            return None
        return self.default


ROUTING_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(
        SYSTEM_ARCHITECT,
        ("design", "architecture", "plan", "system", "technical", "strategy", "requirements"),
    ),
    KeywordRule(
        BACKEND_DEVELOPER,
        ("api", "database", "server", "backend", "service", "integration", "auth"),
    ),
    KeywordRule(
        FRONTEND_DEVELOPER,
        ("ui", "interface", "frontend", "component", "react", "vue", "angular", "css"),
    ),
    KeywordRule(
        QA_ENGINEER,
        ("test", "qa", "quality", "bug", "testing", "coverage", "validation"),
    ),
    KeywordRule(
        DEVOPS_ENGINEER,
        ("deploy", "docker", "infrastructure", "devops", "pipeline", "build", "ci/cd"),
    ),
    KeywordRule(
        CODE_REVIEWER,
        ("review", "optimize", "refactor", "standards", "code quality", "security"),
    ),
)

# Specialists a delegating agent can hand work to.
DELEGATION_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(BACKEND_DEVELOPER, ("api", "backend")),
    KeywordRule(FRONTEND_DEVELOPER, ("ui", "frontend")),
    KeywordRule(QA_ENGINEER, ("test", "qa")),
    KeywordRule(DEVOPS_ENGINEER, ("deploy", "devops")),
)


def routing_matcher() -> KeywordMatcher:
    return KeywordMatcher(ROUTING_RULES, default=SYSTEM_ARCHITECT)


def delegation_matcher() -> KeywordMatcher:
    return KeywordMatcher(DELEGATION_RULES, default=BACKEND_DEVELOPER)
