"""Tests for the consensus collaboration strategy."""

import pytest

from collab_orchestrator.errors import CollaborationInputError, ProviderError
from collab_orchestrator.strategies.consensus import (
    ABORT_MESSAGE,
    Ballot,
    ConsensusConfig,
    ConsensusStrategy,
    conflict_areas,
    vote,
)
from collab_orchestrator.types import AIRequest, AIResponse, ProviderName

AGREED = "Paris is the capital of France."


def _request():
    return AIRequest(id="req-1", prompt="What is the capital of France?")


def _ballot(provider, content, confidence=0.7):
    response = AIResponse(id=provider, provider=provider, model="m", content=content, finish_reason="stop")
    return Ballot(ProviderName.parse(provider), response, confidence)


@pytest.mark.asyncio
async def test_agreement_reaches_consensus_in_first_round(make_manager, stub_provider):
    providers = [stub_provider(name, default=AGREED) for name in ("openai", "deepseek", "o3")]
    manager = await make_manager(*providers)

    result = await ConsensusStrategy(manager).execute(
        _request(), ConsensusConfig(providers=["openai", "deepseek", "o3"])
    )

    assert result.success is True
    assert result.metadata["consensus_achieved"] is True
    assert result.metadata["rounds_completed"] == 1
    assert result.metadata["final_agreement"] == 1.0
    assert result.final_result.id == "consensus-final-req-1"
    assert result.final_result.content.startswith("Consensus Summary:")
    assert "Paris is the capital of France" in result.final_result.content
    assert providers[0].calls[0].id == "req-1-round-1-openai"


@pytest.mark.asyncio
async def test_abort_resolution_fails_without_consensus(make_manager, stub_provider):
    manager = await make_manager(
        stub_provider("openai", default="apples are crunchy red fruit"),
        stub_provider("deepseek", default="quantum physics explains particles"),
    )

    result = await ConsensusStrategy(manager).execute(
        _request(),
        ConsensusConfig(providers=["openai", "deepseek"], max_rounds=1, conflict_resolution="abort"),
    )

    assert result.success is False
    assert result.error == ABORT_MESSAGE
    assert len(result.responses) == 2
    assert result.metadata["consensus_achieved"] is False
    assert result.metadata["final_agreement"] == 0.5


@pytest.mark.asyncio
async def test_revote_reprompts_with_conflict_summary(make_manager, stub_provider):
    first = stub_provider("openai", default="apples are crunchy red fruit")
    manager = await make_manager(first, stub_provider("deepseek", default="quantum physics explains particles"))

    result = await ConsensusStrategy(manager).execute(
        _request(),
        ConsensusConfig(providers=["openai", "deepseek"], max_rounds=2, conflict_resolution="revote"),
    )

    assert result.success is True
    assert result.metadata["rounds_completed"] == 2
    assert result.metadata["consensus_achieved"] is False
    assert len(first.calls) == 2
    assert first.calls[1].id == "req-1-resolution-2-round-2-openai"
    assert "Previous responses showed some disagreement" in first.calls[1].prompt
    assert result.final_result.content == "apples are crunchy red fruit"


@pytest.mark.asyncio
async def test_combine_and_expert_resolution(make_manager, stub_provider):
    manager = await make_manager(
        stub_provider("openai", default="apples are crunchy red fruit"),
        stub_provider("deepseek", default="quantum physics explains particles"),
    )
    strategy = ConsensusStrategy(manager)

    combined = await strategy.execute(_request(), ConsensusConfig(providers=["openai", "deepseek"], max_rounds=1))
    assert combined.success is True
    assert combined.final_result.content.startswith("Multiple Perspectives on the Question:")

    expert = await strategy.execute(
        _request(),
        ConsensusConfig(
            providers=["openai", "deepseek"],
            max_rounds=1,
            conflict_resolution="expert",
            expert_provider="deepseek",
        ),
    )
    assert expert.final_result.content.startswith("Expert Decision (deepseek):")
    assert "quantum physics" in expert.final_result.content


@pytest.mark.asyncio
async def test_round_without_responses_fails(make_manager, stub_provider):
    manager = await make_manager(
        stub_provider("openai", default=ProviderError("bad", "broken")),
        stub_provider("deepseek", default=ProviderError("bad", "broken")),
    )

    result = await ConsensusStrategy(manager).execute(
        _request(), ConsensusConfig(providers=["openai", "deepseek"])
    )

    assert result.success is False
    assert result.error == "No responses received in round 1"


@pytest.mark.asyncio
async def test_consensus_input_validation(make_manager, stub_provider):
    manager = await make_manager(stub_provider("openai"), stub_provider("deepseek"))
    strategy = ConsensusStrategy(manager)

    with pytest.raises(CollaborationInputError, match="At least two providers"):
        await strategy.execute(_request(), ConsensusConfig(providers=["openai"]))
    with pytest.raises(CollaborationInputError, match="Expert provider"):
        await strategy.execute(
            _request(), ConsensusConfig(providers=["openai", "deepseek"], expert_provider="o3")
        )
    with pytest.raises(CollaborationInputError, match="At least two available providers"):
        await strategy.execute(_request(), ConsensusConfig(providers=["openai", "gemini"]))


def test_voting_methods():
    ballots = [
        _ballot("openai", "the sky is blue today"),
        _ballot("deepseek", "the sky is blue today"),
        _ballot("o3", "pizza recipe with cheese"),
    ]

    majority = vote(ballots, "majority")
    assert majority.winner == "cluster_0"
    assert majority.agreement == pytest.approx(2 / 3)

    weighted = vote(ballots, "weighted")
    assert weighted.votes["cluster_0"] == pytest.approx(1.4)

    unanimous = vote(ballots[:2], "unanimous")
    assert unanimous.winner == "unanimous"
    assert vote(ballots, "unanimous").winner == "no_consensus"


def test_conflict_areas_lists_minority_keywords():
    ballots = [
        _ballot("openai", "the quick brown foxes"),
        _ballot("deepseek", "lazy sleepy dogs"),
        _ballot("o3", "lazy sleepy dogs"),
    ]

    assert conflict_areas(ballots) == ["quick", "brown", "foxes"]
