"""Parallel strategy: same request to every provider at once, then aggregate."""

from __future__ import annotations

import json
from dataclasses import dataclass
from statistics import mean
from typing import Any, Dict, List, Optional, Sequence

from ..types import AIRequest, AIResponse, CollaborationResult, ProviderName
from .base import (
    CollaborationStrategy,
    StepSuccess,
    aggregate_usage,
    failures,
    fan_out,
    jaccard_similarity,
    successes,
)

AGGREGATION_METHODS = ("best", "concatenate", "vote", "all")


@dataclass
class ParallelConfig:
    providers: Sequence["ProviderName | str"]
    timeout: float = 60.0
    failure_threshold: Optional[float] = None
    aggregation_method: str = "best"

    def validate(self) -> List[str]:
        problems = []
        if not self.providers:
            problems.append("At least one provider must be specified")
        if self.timeout < 1:
            problems.append("timeout must be at least 1 second")
        if self.failure_threshold is not None and not 0 <= self.failure_threshold <= 1:
            problems.append("failure_threshold must be between 0 and 1")
        if self.aggregation_method not in AGGREGATION_METHODS:
            problems.append(f"aggregation_method must be one of {', '.join(AGGREGATION_METHODS)}")
        return problems


class ParallelStrategy(CollaborationStrategy):
    name = "parallel"

    async def run(
        self,
        request: AIRequest,
        config: ParallelConfig,
        providers: List[ProviderName],
    ) -> CollaborationResult:
        outcomes = await fan_out(self._manager, providers, request, config.timeout)
        ok = successes(outcomes)
        failed = failures(outcomes)
        failure_rate = len(failed) / len(providers)
        for failure in failed:
            self._logger.warning("Provider %s failed: %s", failure.provider.value, failure.error)

        metadata: Dict[str, Any] = {
            "providers_used": [provider.value for provider in providers],
            "successful_providers": [outcome.provider.value for outcome in ok],
            "failed_providers": [outcome.provider.value for outcome in failed],
            "errors": {outcome.provider.value: outcome.error for outcome in failed},
            "failure_rate": failure_rate,
            "aggregation_method": config.aggregation_method,
        }
        responses = [outcome.response for outcome in ok]

        if not ok:
            return self.failure("All providers failed", responses, **metadata)
        if config.failure_threshold is not None and failure_rate > config.failure_threshold:
            return self.failure(f"Too many providers failed: {len(failed)}/{len(providers)}", responses, **metadata)

        return CollaborationResult(
            success=True,
            strategy=self.name,
            responses=responses,
            final_result=aggregate(ok, config.aggregation_method, request),
            metadata=metadata,
        )


def aggregate(results: List[StepSuccess], method: str, request: AIRequest) -> AIResponse:
    base = {
        "request_id": request.id,
        "aggregation_method": method,
        "source_providers": [result.provider.value for result in results],
    }
    aggregated_id = f"aggregated-{request.id}"
    if method == "concatenate":
        return _concatenate(results, aggregated_id, base)
    if method == "vote":
        return _vote(results, aggregated_id, base)
    if method == "all":
        return _combine_all(results, aggregated_id, base)
    return _select_best(results, aggregated_id, base)


def quality_score(response: AIResponse, execution_time: float) -> float:
    """Heuristic quality in [0, 1] from length, latency, finish reason and token efficiency."""
    score = 0.0
    if 50 < len(response.content) < 5000:
        score += 0.3
    if 500 < execution_time < 30000:
        score += 0.2
    if response.finish_reason == "stop":
        score += 0.3
    if response.usage.prompt_tokens:
        efficiency = response.usage.completion_tokens / response.usage.prompt_tokens
        if 0.1 < efficiency < 3:
            score += 0.2
    return score


def consistency_score(contents: Sequence[str]) -> float:
    if len(contents) < 2:
        return 1.0
    pairs = [
        jaccard_similarity(contents[i], contents[j])
        for i in range(len(contents))
        for j in range(i + 1, len(contents))
    ]
    return sum(pairs) / len(pairs)


def _select_best(results: List[StepSuccess], aggregated_id: str, base: Dict[str, Any]) -> AIResponse:
    scored = [(quality_score(result.response, result.duration_ms), result) for result in results]
    best_score, best = scored[0]
    for score, result in scored[1:]:
        if score > best_score:
            best_score, best = score, result
    metadata = dict(base)
    metadata.update(
        selected_provider=best.provider.value,
        quality_score=best_score,
        all_scores=[{"provider": result.provider.value, "score": score} for score, result in scored],
    )
    return _replace_identity(best.response, aggregated_id, metadata)


def _concatenate(results: List[StepSuccess], aggregated_id: str, base: Dict[str, Any]) -> AIResponse:
    ordered = sorted(results, key=lambda result: quality_score(result.response, result.duration_ms), reverse=True)
    content = "\n\n---\n\n".join(f"**{result.provider.value}:**\n{result.response.content}" for result in ordered)
    metadata = dict(base)
    metadata["provider_responses"] = [
        {
            "provider": result.provider.value,
            "model": result.response.model,
            "tokens": result.response.usage.total_tokens,
        }
        for result in results
    ]
    return AIResponse(
        id=aggregated_id,
        provider="parallel_aggregated",
        model="parallel_aggregation",
        content=content,
        usage=aggregate_usage(result.response for result in results),
        latency=max(result.response.latency for result in results),
        finish_reason="stop",
        metadata=metadata,
    )


def _vote(results: List[StepSuccess], aggregated_id: str, base: Dict[str, Any]) -> AIResponse:
    scores = []
    for index, result in enumerate(results):
        scores.append(
            sum(
                jaccard_similarity(result.response.content, other.response.content)
                for other_index, other in enumerate(results)
                if other_index != index
            )
        )
    winner_index = max(range(len(results)), key=lambda index: (scores[index], -index))
    winner = results[winner_index]
    metadata = dict(base)
    metadata.update(
        vote_winner=winner.provider.value,
        vote_scores=[
            {"provider": result.provider.value, "score": score}
            for result, score in zip(results, scores)
        ],
    )
    return _replace_identity(winner.response, aggregated_id, metadata)


def _combine_all(results: List[StepSuccess], aggregated_id: str, base: Dict[str, Any]) -> AIResponse:
    lengths = [len(result.response.content) for result in results]
    times = [result.duration_ms for result in results]
    structured = {
        "summary": "Combined responses from multiple AI providers:",
        "responses": [
            {
                "provider": result.provider.value,
                "model": result.response.model,
                "content": result.response.content,
                "execution_time": result.duration_ms,
                "usage": {
                    "prompt_tokens": result.response.usage.prompt_tokens,
                    "completion_tokens": result.response.usage.completion_tokens,
                    "total_tokens": result.response.usage.total_tokens,
                },
            }
            for result in results
        ],
        "analysis": {
            "content_length": {"min": min(lengths), "max": max(lengths), "avg": mean(lengths)},
            "execution_time": {"min": min(times), "max": max(times), "avg": mean(times)},
            "consistency_score": consistency_score([result.response.content for result in results]),
        },
    }
    metadata = dict(base)
    metadata.update(
        response_count=len(results),
        providers_breakdown=[
            {
                "provider": result.provider.value,
                "latency": result.response.latency,
                "tokens": result.response.usage.total_tokens,
            }
            for result in results
        ],
    )
    return AIResponse(
        id=aggregated_id,
        provider="parallel_combined",
        model="parallel_combination",
        content=json.dumps(structured, indent=2),
        usage=aggregate_usage(result.response for result in results),
        latency=max(result.response.latency for result in results),
        finish_reason="stop",
        metadata=metadata,
    )


def _replace_identity(response: AIResponse, aggregated_id: str, metadata: Dict[str, Any]) -> AIResponse:
    return AIResponse(
        id=aggregated_id,
        provider=response.provider,
        model=response.model,
        content=response.content,
        usage=response.usage,
        latency=response.latency,
        finish_reason=response.finish_reason,
        metadata=metadata,
    )
