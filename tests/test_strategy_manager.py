"""Tests for strategy dispatch, configuration and recommendation."""

import pytest

from collab_orchestrator.errors import CollaborationInputError
from collab_orchestrator.strategies import (
    ConsensusConfig,
    IterativeConfig,
    ParallelConfig,
    SequentialConfig,
    StopConditions,
)
from collab_orchestrator.strategy_manager import StrategyManager, estimate_complexity
from collab_orchestrator.types import AIRequest, ProviderName

COMPLEX_PROMPT = "Please analyze and compare this algorithm design, evaluate its architecture and justify the proof? Why?"
MEDIUM_PROMPT = "Compare and evaluate the options, then justify your choice."


def _request(prompt="Hi"):
    return AIRequest(id="req-1", prompt=prompt)


class _NoProviders:
    def get_available_providers(self):
        return []


@pytest.mark.asyncio
async def test_execute_strategy_accepts_plain_mappings(make_manager, stub_provider):
    manager = await make_manager(stub_provider("openai"), stub_provider("deepseek"))
    strategies = StrategyManager(manager)

    result = await strategies.execute_strategy(
        "parallel", _request(), {"providers": ["openai", "deepseek"], "aggregation_method": "concatenate"}
    )

    assert result.success is True
    assert result.strategy == "parallel"
    assert result.final_result.provider == "parallel_aggregated"


@pytest.mark.asyncio
async def test_execute_strategy_rejects_unknown_and_invalid(make_manager, stub_provider):
    manager = await make_manager(stub_provider("openai"))
    strategies = StrategyManager(manager)

    with pytest.raises(CollaborationInputError, match="Strategy 'magic' is not available"):
        await strategies.execute_strategy("magic", _request(), {"providers": ["openai"]})
    with pytest.raises(CollaborationInputError, match="Invalid configuration for parallel"):
        await strategies.execute_strategy(
            "parallel", _request(), {"providers": ["openai"], "aggregation_method": "bogus"}
        )
    with pytest.raises(CollaborationInputError, match="Unknown ParallelConfig fields: colour"):
        await strategies.execute_strategy("parallel", _request(), {"providers": ["openai"], "colour": "red"})


def test_config_from_mapping_builds_nested_sections():
    strategies = StrategyManager(provider_manager=_NoProviders(), default_timeout=42.0)

    sequential = strategies.config_from_mapping(
        "sequential", {"providers": ["openai"], "stop_conditions": {"keywords": ["done"]}}
    )
    assert isinstance(sequential.stop_conditions, StopConditions)
    assert sequential.stop_conditions.keywords == ["done"]

    parallel = strategies.config_from_mapping("parallel", {"providers": ["openai"]})
    assert parallel.timeout == 42.0
    assert strategies.config_from_mapping("parallel", {"providers": ["openai"], "timeout": 5}).timeout == 5

    iterative = strategies.config_from_mapping(
        "iterative",
        {
            "primary_provider": "openai",
            "review_providers": ["deepseek"],
            "convergence_criteria": {"quality_score": 0.9},
        },
    )
    assert iterative.convergence_criteria.quality_score == 0.9


def test_available_strategies_and_info():
    strategies = StrategyManager(provider_manager=_NoProviders())

    assert strategies.get_available_strategies() == ["sequential", "parallel", "consensus", "iterative"]
    assert strategies.get_strategy_info("consensus").max_providers == 5
    assert strategies.get_strategy_info("parallel").min_providers == 1
    with pytest.raises(CollaborationInputError):
        strategies.get_strategy_info("magic")


def test_validate_strategy_config_reports_problems():
    strategies = StrategyManager(provider_manager=_NoProviders())

    wrong_type = strategies.validate_strategy_config("parallel", SequentialConfig(providers=["openai"]))
    assert wrong_type.valid is False
    assert wrong_type.errors[0].code == "INVALID_CONFIG"

    bad_threshold = strategies.validate_strategy_config(
        "consensus", ConsensusConfig(providers=["openai", "deepseek"], consensus_threshold=1.5)
    )
    assert "consensus_threshold" in bad_threshold.message

    assert strategies.validate_strategy_config("parallel", ParallelConfig(providers=["openai"])).valid is True
    assert strategies.validate_strategy_config("magic", None).valid is False


def test_recommendations_follow_provider_count_and_complexity():
    strategies = StrategyManager(provider_manager=_NoProviders(), default_timeout=30.0)

    single = strategies.recommend_strategy(_request(), ["openai"])
    assert single.strategy == "iterative"
    assert isinstance(single.config, IterativeConfig)
    assert list(single.config.review_providers) == [ProviderName.OPENAI]

    simple = strategies.recommend_strategy(_request("Hi"), ["openai", "deepseek"])
    assert simple.strategy == "parallel"
    assert simple.config.timeout == 30.0

    medium = strategies.recommend_strategy(_request(MEDIUM_PROMPT), ["openai", "deepseek"])
    assert medium.strategy == "consensus"

    hard_three = strategies.recommend_strategy(_request(COMPLEX_PROMPT), ["openai", "deepseek", "o3"])
    assert hard_three.strategy == "sequential"
    assert isinstance(hard_three.config, SequentialConfig)

    hard_two = strategies.recommend_strategy(_request(COMPLEX_PROMPT), ["openai", "deepseek"])
    assert hard_two.strategy == "iterative"

    with pytest.raises(CollaborationInputError):
        strategies.recommend_strategy(_request())


def test_estimate_complexity_is_bounded():
    assert estimate_complexity("Hi") < 0.1
    assert estimate_complexity(COMPLEX_PROMPT) == 1.0
    assert 0.4 < estimate_complexity(MEDIUM_PROMPT) < 0.7
