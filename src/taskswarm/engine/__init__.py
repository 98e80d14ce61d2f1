"""Task routing, triage and admission control."""

from taskswarm.engine.events import EventBus
from taskswarm.engine.matching import CapabilityMatcher, KeywordMatcher, KeywordRule
from taskswarm.engine.quota import QuotaLedger, QuotaStore, RequestPriority
from taskswarm.engine.reasoning import EchoReasoner, Reasoner
from taskswarm.engine.registry import AgentDescriptor, AgentRegistry, default_team
from taskswarm.engine.router import TaskRouter
from taskswarm.engine.scheduler import LoopScheduler
from taskswarm.engine.triage import TaskAnalysis, TriageCoordinator

__all__ = [
    "AgentDescriptor",
    "AgentRegistry",
    "CapabilityMatcher",
    "EchoReasoner",
    "EventBus",
    "KeywordMatcher",
    "KeywordRule",
    "LoopScheduler",
    "QuotaLedger",
    "QuotaStore",
    "Reasoner",
    "RequestPriority",
    "TaskAnalysis",
    "TaskRouter",
    "TriageCoordinator",
    "default_team",
]
