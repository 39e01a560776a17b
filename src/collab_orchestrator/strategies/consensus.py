"""Consensus strategy: parallel rounds reduced to one agreed answer by voting."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..errors import CollaborationInputError
from ..types import AIRequest, AIResponse, CollaborationResult, ProviderName
from .base import (
    CollaborationStrategy,
    StepFailure,
    aggregate_usage,
    jaccard_similarity,
    run_step,
    words,
)

VOTING_METHODS = ("majority", "weighted", "unanimous", "ranked")
CONFLICT_RESOLUTIONS = ("revote", "expert", "combine", "abort")

CLUSTER_SIMILARITY = 0.6
UNANIMOUS_AGREEMENT = 0.9
ABORT_MESSAGE = "Consensus could not be reached. Significant disagreement persists among providers."

_SENTENCE_RE = re.compile(r"[.!?]+")


@dataclass
class ConsensusConfig:
    providers: Sequence["ProviderName | str"]
    consensus_threshold: float = 0.7
    max_rounds: int = 3
    voting_method: str = "majority"
    conflict_resolution: str = "combine"
    expert_provider: Optional["ProviderName | str"] = None
    timeout: float = 60.0

    def validate(self) -> List[str]:
        problems = []
        if len(self.providers) < 2:
            problems.append("At least two providers must be specified for consensus")
        if not 0 <= self.consensus_threshold <= 1:
            problems.append("consensus_threshold must be between 0 and 1")
        if self.max_rounds < 1:
            problems.append("max_rounds must be at least 1")
        if self.voting_method not in VOTING_METHODS:
            problems.append(f"voting_method must be one of {', '.join(VOTING_METHODS)}")
        if self.conflict_resolution not in CONFLICT_RESOLUTIONS:
            problems.append(f"conflict_resolution must be one of {', '.join(CONFLICT_RESOLUTIONS)}")
        if self.expert_provider is not None:
            try:
                expert = ProviderName.parse(self.expert_provider)
                listed = {ProviderName.parse(provider) for provider in self.providers}
            except ValueError as exc:
                problems.append(str(exc))
            else:
                if expert not in listed:
                    problems.append("Expert provider must be included in the providers list")
        if self.timeout < 1:
            problems.append("timeout must be at least 1 second")
        return problems


@dataclass
class Ballot:
    provider: ProviderName
    response: AIResponse
    confidence: float


@dataclass
class VotingResult:
    winner: str
    votes: Dict[str, float]
    confidence: float
    agreement: float


@dataclass
class ConsensusRound:
    number: int
    ballots: List[Ballot]
    agreement: float
    consensus: bool
    conflict_areas: List[str] = field(default_factory=list)


class ConsensusStrategy(CollaborationStrategy):
    name = "consensus"

    def select_providers(self, config: ConsensusConfig) -> List[ProviderName]:
        providers = self.available(config.providers)
        if len(providers) < 2:
            raise CollaborationInputError("At least two available providers required for consensus")
        return providers

    async def run(
        self,
        request: AIRequest,
        config: ConsensusConfig,
        providers: List[ProviderName],
    ) -> CollaborationResult:
        rounds: List[ConsensusRound] = []
        current = request
        for number in range(1, config.max_rounds + 1):
            ballot_round = await self._execute_round(current, providers, number, config)
            if ballot_round is None:
                return self.failure(
                    f"No responses received in round {number}",
                    [ballot.response for past in rounds for ballot in past.ballots],
                    rounds_completed=len(rounds),
                )
            rounds.append(ballot_round)
            if ballot_round.consensus:
                break
            if number < config.max_rounds:
                self._logger.info(
                    "Round %d agreement %.2f below threshold; re-prompting", number, ballot_round.agreement
                )
                current = conflict_resolution_request(request, ballot_round, number + 1)

        responses = [ballot.response for past in rounds for ballot in past.ballots]
        last = rounds[-1]
        metadata: Dict[str, Any] = {
            "providers_used": [provider.value for provider in providers],
            "rounds_completed": len(rounds),
            "final_agreement": last.agreement,
            "consensus_achieved": last.consensus,
            "voting_method": config.voting_method,
            "consensus_threshold": config.consensus_threshold,
            "conflict_areas": last.conflict_areas,
            "rounds_summary": [
                {
                    "round": past.number,
                    "agreement": past.agreement,
                    "consensus": past.consensus,
                    "participants": len(past.ballots),
                }
                for past in rounds
            ],
        }

        if not last.consensus and config.conflict_resolution == "abort":
            return self.failure(ABORT_MESSAGE, responses, **metadata)

        return CollaborationResult(
            success=True,
            strategy=self.name,
            responses=responses,
            final_result=self._build_final(rounds, request, config),
            metadata=metadata,
        )

    async def _execute_round(
        self,
        request: AIRequest,
        providers: List[ProviderName],
        number: int,
        config: ConsensusConfig,
    ) -> Optional[ConsensusRound]:
        outcomes = await asyncio.gather(
            *(
                run_step(
                    self._manager,
                    provider,
                    request.derive(id=f"{request.id}-round-{number}-{provider.value}"),
                    config.timeout,
                )
                for provider in providers
            )
        )
        ballots = []
        for outcome in outcomes:
            if isinstance(outcome, StepFailure):
                self._logger.warning("Provider %s failed in round %d: %s", outcome.provider.value, number, outcome.error)
                continue
            ballots.append(Ballot(outcome.provider, outcome.response, ballot_confidence(outcome.response)))
        if not ballots:
            return None

        result = vote(ballots, config.voting_method)
        consensus = result.agreement >= config.consensus_threshold
        return ConsensusRound(
            number=number,
            ballots=ballots,
            agreement=result.agreement,
            consensus=consensus,
            conflict_areas=[] if consensus else conflict_areas(ballots),
        )

    def _build_final(self, rounds: List[ConsensusRound], request: AIRequest, config: ConsensusConfig) -> AIResponse:
        last = rounds[-1]
        if last.consensus or config.conflict_resolution == "revote":
            content = synthesize(largest_cluster(last.ballots))
        elif config.conflict_resolution == "expert":
            expert = ProviderName.parse(config.expert_provider) if config.expert_provider else None
            content = expert_resolution([ballot for past in rounds for ballot in past.ballots], expert)
        else:
            content = combine_perspectives([ballot for past in rounds for ballot in past.ballots])

        all_ballots = [ballot for past in rounds for ballot in past.ballots]
        return AIResponse(
            id=f"consensus-final-{request.id}",
            provider="consensus_final",
            model="consensus_collaboration",
            content=content,
            usage=aggregate_usage(ballot.response for ballot in all_ballots),
            latency=sum(ballot.response.latency for ballot in all_ballots),
            finish_reason="stop",
            metadata={
                "request_id": request.id,
                "consensus_achieved": last.consensus,
                "final_agreement": last.agreement,
                "resolution": "consensus" if last.consensus else config.conflict_resolution,
            },
        )


def ballot_confidence(response: AIResponse) -> float:
    confidence = 0.5
    if response.finish_reason == "stop":
        confidence += 0.2
    if 100 < len(response.content) < 2000:
        confidence += 0.1
    if response.usage.prompt_tokens:
        efficiency = response.usage.completion_tokens / response.usage.prompt_tokens
        if 0.2 < efficiency < 2:
            confidence += 0.1
    return min(1.0, confidence)


def response_quality(response: AIResponse) -> float:
    score = 0.0
    if len(response.content) > 200:
        score += 0.3
    if response.finish_reason == "stop":
        score += 0.2
    if response.latency < 10000:
        score += 0.2
    if response.usage.total_tokens and response.usage.completion_tokens / response.usage.total_tokens > 0.3:
        score += 0.3
    return score


def cluster(ballots: Sequence[Ballot]) -> List[List[Ballot]]:
    """Greedy clustering against each cluster's first member."""
    clusters: List[List[Ballot]] = []
    for ballot in ballots:
        for group in clusters:
            if jaccard_similarity(ballot.response.content, group[0].response.content) >= CLUSTER_SIMILARITY:
                group.append(ballot)
                break
        else:
            clusters.append([ballot])
    return clusters


def largest_cluster(ballots: Sequence[Ballot]) -> List[Ballot]:
    best: List[Ballot] = []
    for group in cluster(ballots):
        if len(group) > len(best):
            best = group
    return best


def mean_similarity(contents: Sequence[str]) -> float:
    if len(contents) < 2:
        return 1.0
    pairs = [
        jaccard_similarity(contents[i], contents[j])
        for i in range(len(contents))
        for j in range(i + 1, len(contents))
    ]
    return sum(pairs) / len(pairs)


def vote(ballots: Sequence[Ballot], method: str) -> VotingResult:
    if method == "weighted":
        return _weighted(ballots)
    if method == "unanimous":
        return _unanimous(ballots)
    if method == "ranked":
        return _ranked(ballots)
    return _majority(ballots)


def _cluster_confidence(group: Sequence[Ballot]) -> float:
    return sum(ballot.confidence for ballot in group) / len(group)


def _majority(ballots: Sequence[Ballot]) -> VotingResult:
    clusters = cluster(ballots)
    votes = {f"cluster_{index}": float(len(group)) for index, group in enumerate(clusters)}
    winner_index = max(range(len(clusters)), key=lambda index: (len(clusters[index]), -index))
    return VotingResult(
        winner=f"cluster_{winner_index}",
        votes=votes,
        confidence=_cluster_confidence(clusters[winner_index]),
        agreement=len(clusters[winner_index]) / len(ballots),
    )


def _weighted(ballots: Sequence[Ballot]) -> VotingResult:
    clusters = cluster(ballots)
    weights = [sum(ballot.confidence for ballot in group) for group in clusters]
    winner_index = max(range(len(clusters)), key=lambda index: (weights[index], -index))
    return VotingResult(
        winner=f"cluster_{winner_index}",
        votes={f"cluster_{index}": weight for index, weight in enumerate(weights)},
        confidence=_cluster_confidence(clusters[winner_index]),
        agreement=weights[winner_index] / len(ballots),
    )


def _unanimous(ballots: Sequence[Ballot]) -> VotingResult:
    agreement = mean_similarity([ballot.response.content for ballot in ballots])
    unanimous = agreement > UNANIMOUS_AGREEMENT
    return VotingResult(
        winner="unanimous" if unanimous else "no_consensus",
        votes={"unanimous": float(len(ballots)) if unanimous else 0.0},
        confidence=agreement,
        agreement=agreement,
    )


def _ranked(ballots: Sequence[Ballot]) -> VotingResult:
    ranked = sorted(ballots, key=lambda ballot: response_quality(ballot.response), reverse=True)
    top = ranked[: (len(ballots) + 1) // 2]
    return VotingResult(
        winner="top_ranked",
        votes={"top_ranked": float(len(top))},
        confidence=response_quality(top[0].response),
        agreement=mean_similarity([ballot.response.content for ballot in top]),
    )


def keywords(text: str, limit: int = 20) -> List[str]:
    found: Dict[str, None] = {}
    for word in words(text):
        if len(word) > 4:
            found.setdefault(word, None)
    return list(found)[:limit]


def conflict_areas(ballots: Sequence[Ballot], limit: int = 5) -> List[str]:
    """Keywords mentioned by some but fewer than half of the responses."""
    per_ballot = [keywords(ballot.response.content) for ballot in ballots]
    seen: Dict[str, None] = {}
    for group in per_ballot:
        for keyword in group:
            seen.setdefault(keyword, None)
    conflicts = []
    for keyword in seen:
        mentions = sum(1 for group in per_ballot if keyword in group)
        if 0 < mentions < len(ballots) / 2:
            conflicts.append(keyword)
    return conflicts[:limit]


def conflict_resolution_request(original: AIRequest, conflict: ConsensusRound, next_round: int) -> AIRequest:
    perspectives = "\n".join(
        f"{ballot.provider.value}: {ballot.response.content[:200]}..." for ballot in conflict.ballots
    )
    areas = ", ".join(conflict.conflict_areas) or "various topics"
    summary = (
        f"Disagreement level: {(1 - conflict.agreement) * 100:.1f}%\n"
        f"Conflict areas: {areas}\n"
        f"Different perspectives:\n{perspectives}"
    )
    prompt = (
        f"{original.prompt}\n\n"
        "Previous responses showed some disagreement. Here's a summary of the conflict areas:\n"
        f"{summary}\n\n"
        "Please provide a response that addresses these conflicts and aims for a more unified answer."
    )
    return original.derive(id=f"{original.id}-resolution-{next_round}", prompt=prompt)


def synthesize(group: Sequence[Ballot]) -> str:
    if len(group) == 1:
        return group[0].response.content
    contributions = "\n\n".join(
        f"Provider {ballot.provider.value}: {ballot.response.content[:150]}..." for ballot in group
    )
    return (
        f"Consensus Summary:\n{common_elements(group)}\n\n"
        f"Additional Perspectives:\n{contributions}\n\n"
        f"This consensus represents the agreement of {len(group)} AI providers."
    )


def common_elements(group: Sequence[Ballot]) -> str:
    sentences = [
        sentence.strip()
        for ballot in group
        for sentence in _SENTENCE_RE.split(ballot.response.content)
        if len(sentence.strip()) > 10
    ]
    common = [
        sentence
        for sentence in sentences
        if sum(1 for other in sentences if jaccard_similarity(sentence, other) > 0.7) > 1
    ]
    if not common:
        return group[0].response.content
    return ". ".join(common[:3]) + "."


def expert_resolution(ballots: Sequence[Ballot], expert: Optional[ProviderName]) -> str:
    if expert is not None:
        for ballot in reversed(ballots):
            if ballot.provider is expert:
                return (
                    f"Expert Decision ({expert.value}):\n{ballot.response.content}\n\n"
                    "Note: This decision was made by the designated expert provider to resolve conflicts."
                )
    best = ballots[0]
    for ballot in ballots[1:]:
        if response_quality(ballot.response) > response_quality(best.response):
            best = ballot
    return (
        f"Best Available Response ({best.provider.value}):\n{best.response.content}\n\n"
        "Note: Selected based on response quality metrics due to lack of consensus."
    )


def combine_perspectives(ballots: Sequence[Ballot]) -> str:
    perspectives = "\n\n---\n\n".join(
        f"Perspective {index} ({ballot.provider.value}, confidence: {ballot.confidence * 100:.1f}%):\n"
        f"{ballot.response.content}"
        for index, ballot in enumerate(ballots, start=1)
    )
    return (
        f"Multiple Perspectives on the Question:\n\n{perspectives}\n\n"
        "Summary: The AI providers offered different perspectives on this question. "
        "Consider all viewpoints when making your decision."
    )
