"""Collaboration strategies built on top of the provider manager."""

from .base import (
    CollaborationStrategy,
    StepFailure,
    StepOutcome,
    StepSuccess,
    fan_out,
    jaccard_similarity,
    run_step,
)
from .consensus import ConsensusConfig, ConsensusStrategy
from .iterative import ConvergenceCriteria, FeedbackPrompts, IterativeConfig, IterativeStrategy
from .parallel import ParallelConfig, ParallelStrategy
from .sequential import SequentialConfig, SequentialStrategy, StopConditions

STRATEGIES = {
    "sequential": (SequentialStrategy, SequentialConfig),
    "parallel": (ParallelStrategy, ParallelConfig),
    "consensus": (ConsensusStrategy, ConsensusConfig),
    "iterative": (IterativeStrategy, IterativeConfig),
}

__all__ = [
    "CollaborationStrategy",
    "ConsensusConfig",
    "ConsensusStrategy",
    "ConvergenceCriteria",
    "FeedbackPrompts",
    "IterativeConfig",
    "IterativeStrategy",
    "ParallelConfig",
    "ParallelStrategy",
    "STRATEGIES",
    "SequentialConfig",
    "SequentialStrategy",
    "StepFailure",
    "StepOutcome",
    "StepSuccess",
    "StopConditions",
    "fan_out",
    "jaccard_similarity",
    "run_step",
]
