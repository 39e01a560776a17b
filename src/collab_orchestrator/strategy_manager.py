"""Strategy selection, configuration and dispatch."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import CollaborationInputError
from .strategies import (
    STRATEGIES,
    CollaborationStrategy,
    ConsensusConfig,
    ConvergenceCriteria,
    FeedbackPrompts,
    IterativeConfig,
    ParallelConfig,
    SequentialConfig,
    StopConditions,
)
from .types import AIRequest, CollaborationResult, ProviderName, ValidationIssue, ValidationResult

if TYPE_CHECKING:
    from .manager import ProviderManager

LOGGER = logging.getLogger("collab_orchestrator.strategy_manager")

TECHNICAL_KEYWORDS = (
    "algorithm",
    "implement",
    "code",
    "function",
    "class",
    "method",
    "analyze",
    "calculate",
    "optimize",
    "design",
    "architecture",
)
REASONING_KEYWORDS = (
    "compare",
    "contrast",
    "evaluate",
    "synthesize",
    "critique",
    "justify",
    "reasoning",
    "logic",
    "proof",
    "theorem",
)

# Nested config sections that arrive as plain mappings.
_NESTED = {
    "stop_conditions": StopConditions,
    "convergence_criteria": ConvergenceCriteria,
    "feedback_prompts": FeedbackPrompts,
}


@dataclass(frozen=True)
class Recommendation:
    strategy: str
    reason: str
    config: Any


@dataclass(frozen=True)
class StrategyInfo:
    name: str
    description: str
    best_for: Tuple[str, ...]
    min_providers: int
    complexity: str
    max_providers: Optional[int] = None


STRATEGY_INFO: Dict[str, StrategyInfo] = {
    "parallel": StrategyInfo(
        name="Parallel Strategy",
        description="Execute multiple providers simultaneously and aggregate results",
        best_for=("Fast responses", "Diverse perspectives", "Simple tasks"),
        min_providers=1,
        complexity="low",
    ),
    "sequential": StrategyInfo(
        name="Sequential Strategy",
        description="Execute providers in sequence, building upon previous results",
        best_for=("Complex analysis", "Step-by-step reasoning", "Iterative refinement"),
        min_providers=2,
        complexity="medium",
    ),
    "consensus": StrategyInfo(
        name="Consensus Strategy",
        description="Build consensus among multiple providers through voting",
        best_for=("Controversial topics", "Decision making", "Balanced perspectives"),
        min_providers=2,
        max_providers=5,
        complexity="medium",
    ),
    "iterative": StrategyInfo(
        name="Iterative Strategy",
        description="Iteratively improve responses through review and refinement",
        best_for=("High quality output", "Complex problems", "Detailed analysis"),
        min_providers=1,
        complexity="high",
    ),
}


def estimate_complexity(prompt: str) -> float:
    """Score a prompt in [0, 1] from its length, vocabulary and structure."""
    lowered = prompt.lower()
    complexity = min(len(prompt) / 1000, 0.3)
    complexity += min(sum(1 for keyword in TECHNICAL_KEYWORDS if keyword in lowered) * 0.1, 0.3)
    complexity += min(sum(1 for keyword in REASONING_KEYWORDS if keyword in lowered) * 0.15, 0.4)
    if prompt.count("?") > 1:
        complexity += 0.2
    if "list" in lowered or "1." in prompt or "a)" in prompt:
        complexity += 0.1
    return min(complexity, 1.0)


class StrategyManager:
    """Dispatch collaboration requests to the named strategy."""

    def __init__(self, provider_manager: "ProviderManager", default_timeout: float = 60.0) -> None:
        self._provider_manager = provider_manager
        self._default_timeout = default_timeout
        self._strategies: Dict[str, CollaborationStrategy] = {
            name: strategy_cls(provider_manager) for name, (strategy_cls, _) in STRATEGIES.items()
        }

    async def execute_strategy(self, strategy: str, request: AIRequest, config: Any) -> CollaborationResult:
        """Run ``strategy``; ``config`` may be a typed config or a plain mapping."""
        instance = self._strategies.get(strategy)
        if instance is None:
            raise CollaborationInputError(f"Strategy '{strategy}' is not available")
        if isinstance(config, Mapping):
            config = self.config_from_mapping(strategy, config)

        validation = self.validate_strategy_config(strategy, config)
        if not validation.valid:
            raise CollaborationInputError(f"Invalid configuration for {strategy}: {validation.message}")

        LOGGER.debug("Executing %s strategy for request %s", strategy, request.id)
        return await instance.execute(request, config)

    def get_available_strategies(self) -> List[str]:
        return list(self._strategies)

    def validate_strategy_config(self, strategy: str, config: Any) -> ValidationResult:
        if strategy not in STRATEGIES:
            return _invalid([f"Unknown strategy: {strategy}"])
        _, config_cls = STRATEGIES[strategy]
        if not isinstance(config, config_cls):
            return _invalid([f"Expected {config_cls.__name__} for {strategy}, got {type(config).__name__}"])
        problems = config.validate()
        return _invalid(problems) if problems else ValidationResult(valid=True)

    def recommend_strategy(
        self,
        request: AIRequest,
        providers: Optional[Sequence["ProviderName | str"]] = None,
    ) -> Recommendation:
        if providers is None:
            providers = self._provider_manager.get_available_providers()
        candidates = [ProviderName.parse(provider) for provider in providers]
        if not candidates:
            raise CollaborationInputError("At least one provider must be specified")

        count = len(candidates)
        complexity = estimate_complexity(request.prompt)

        if count == 1:
            return Recommendation(
                "iterative",
                "Only one provider available - iterative improvement recommended",
                IterativeConfig(
                    primary_provider=candidates[0],
                    review_providers=[candidates[0]],
                    max_iterations=3,
                    timeout=self._default_timeout,
                ),
            )

        if complexity > 0.7:
            if count >= 3:
                return Recommendation(
                    "sequential",
                    "High complexity task - sequential processing for thorough analysis",
                    SequentialConfig(providers=candidates[:3], max_steps=3, context_preservation="full"),
                )
            return Recommendation(
                "iterative",
                "High complexity with limited providers - iterative refinement",
                IterativeConfig(
                    primary_provider=candidates[0],
                    review_providers=candidates[1:],
                    max_iterations=4,
                    timeout=self._default_timeout,
                ),
            )

        if complexity > 0.4:
            return Recommendation(
                "consensus",
                "Medium complexity - consensus building for balanced perspective",
                ConsensusConfig(
                    providers=candidates[:4],
                    consensus_threshold=0.7,
                    max_rounds=2,
                    timeout=self._default_timeout,
                ),
            )

        return Recommendation(
            "parallel",
            "Straightforward task - parallel execution for speed and diversity",
            ParallelConfig(
                providers=candidates,
                aggregation_method="best",
                timeout=self._default_timeout,
            ),
        )

    def get_strategy_info(self, strategy: str) -> StrategyInfo:
        try:
            return STRATEGY_INFO[strategy]
        except KeyError as exc:
            raise CollaborationInputError(f"Unknown strategy: {strategy}") from exc

    def config_from_mapping(self, strategy: str, data: Mapping[str, Any]) -> Any:
        """Build the typed config for ``strategy`` from plain data, e.g. parsed JSON."""
        if strategy not in STRATEGIES:
            raise CollaborationInputError(f"Unknown strategy: {strategy}")
        _, config_cls = STRATEGIES[strategy]
        values = dict(data)
        if "timeout" in {item.name for item in fields(config_cls)}:
            values.setdefault("timeout", self._default_timeout)
        return _build(config_cls, values)


def _build(cls: Any, data: Mapping[str, Any]) -> Any:
    known = {item.name for item in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise CollaborationInputError(f"Unknown {cls.__name__} fields: {', '.join(unknown)}")
    values: Dict[str, Any] = {}
    for key, value in data.items():
        nested = _NESTED.get(key)
        if nested is not None and isinstance(value, Mapping):
            value = _build(nested, value)
        values[key] = value
    try:
        return cls(**values)
    except TypeError as exc:
        raise CollaborationInputError(f"Invalid {cls.__name__}: {exc}") from exc


def _invalid(problems: Sequence[str]) -> ValidationResult:
    return ValidationResult(
        valid=False,
        errors=tuple(ValidationIssue("config", problem, "INVALID_CONFIG") for problem in problems),
    )
