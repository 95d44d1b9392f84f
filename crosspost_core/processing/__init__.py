"""Multi-target processing and response aggregation."""

from .multi_target_orchestrator import Invoke, MultiTargetOrchestrator, to_targets
from .response_aggregator import ResponseAggregator

__all__ = [
    "Invoke",
    "MultiTargetOrchestrator",
    "ResponseAggregator",
    "to_targets",
]
