"""Coordination strategies."""

from taskswarm.strategies.base import BaseStrategy, StrategyContext
from taskswarm.strategies.collaborative import CollaborativeStrategy
from taskswarm.strategies.delegated import DelegatedStrategy
from taskswarm.strategies.parallel import ParallelStrategy
from taskswarm.strategies.pipeline import PipelineStrategy

STRATEGIES: dict[str, type[BaseStrategy]] = {
    "delegated": DelegatedStrategy,
    "architect-led": DelegatedStrategy,
    "collaborative": CollaborativeStrategy,
    "pipeline": PipelineStrategy,
    "parallel": ParallelStrategy,
}

__all__ = [
    "BaseStrategy",
    "StrategyContext",
    "DelegatedStrategy",
    "CollaborativeStrategy",
    "PipelineStrategy",
    "ParallelStrategy",
    "STRATEGIES",
]
