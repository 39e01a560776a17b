"""Iterative strategy: draft, review in parallel, improve, repeat until convergence."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ..errors import CollaborationInputError
from ..types import AIRequest, AIResponse, CollaborationResult, ProviderName
from .base import (
    CollaborationStrategy,
    StepFailure,
    StepSuccess,
    aggregate_usage,
    run_step,
    words,
)

DEFAULT_REVIEW_PROMPT = (
    "Please review the following response to the original question and provide constructive feedback:"
)
DEFAULT_IMPROVE_PROMPT = "Please improve the following response based on the feedback provided:"

POSITIVE_WORDS = ("good", "excellent", "well", "accurate", "comprehensive", "clear")
NEGATIVE_WORDS = ("poor", "lacking", "unclear", "incomplete", "wrong", "confusing")

STABLE = 0.9
CONVERGED = 0.8

_BULLET_RE = re.compile(r"^[•\-\d.\s]+")


@dataclass
class ConvergenceCriteria:
    quality_score: Optional[float] = None
    stability_rounds: Optional[int] = None
    max_tokens: Optional[int] = None


@dataclass
class FeedbackPrompts:
    review: Optional[str] = None
    improve: Optional[str] = None


@dataclass
class IterativeConfig:
    primary_provider: Optional["ProviderName | str"]
    review_providers: Sequence["ProviderName | str"] = ()
    max_iterations: int = 5
    improvement_threshold: float = 0.01
    convergence_criteria: Optional[ConvergenceCriteria] = None
    feedback_prompts: Optional[FeedbackPrompts] = None
    timeout: float = 60.0

    def validate(self) -> List[str]:
        problems = []
        if not self.primary_provider:
            problems.append("Primary provider must be specified")
        if not self.review_providers:
            problems.append("At least one review provider must be specified")
        if self.max_iterations < 1:
            problems.append("max_iterations must be at least 1")
        if not 0 <= self.improvement_threshold <= 1:
            problems.append("improvement_threshold must be between 0 and 1")
        criteria = self.convergence_criteria
        if criteria is not None:
            if criteria.quality_score is not None and not 0 <= criteria.quality_score <= 1:
                problems.append("convergence_criteria.quality_score must be between 0 and 1")
            if criteria.stability_rounds is not None and criteria.stability_rounds < 2:
                problems.append("convergence_criteria.stability_rounds must be at least 2")
            if criteria.max_tokens is not None and criteria.max_tokens < 1:
                problems.append("convergence_criteria.max_tokens must be positive")
        if self.timeout < 1:
            problems.append("timeout must be at least 1 second")
        return problems


@dataclass
class Review:
    provider: ProviderName
    response: AIResponse
    feedback: str
    suggestions: List[str]


@dataclass
class IterationCycle:
    iteration: int
    primary: AIResponse
    reviews: List[Review]
    improved: Optional[AIResponse]
    quality_score: float
    improvements: List[str]
    stability: float
    improvement: float
    total_tokens: int

    @property
    def best(self) -> AIResponse:
        return self.improved or self.primary

    def responses(self) -> List[AIResponse]:
        collected = [self.primary]
        collected.extend(review.response for review in self.reviews)
        if self.improved is not None:
            collected.append(self.improved)
        return collected


@dataclass
class _Run:
    cycles: List[IterationCycle] = field(default_factory=list)
    stop_reason: Optional[str] = None
    error: Optional[str] = None


class IterativeStrategy(CollaborationStrategy):
    name = "iterative"

    def select_providers(self, config: IterativeConfig) -> List[ProviderName]:
        try:
            primary = ProviderName.parse(config.primary_provider)
        except ValueError as exc:
            raise CollaborationInputError(str(exc)) from exc
        if not self._manager.is_provider_available(primary):
            raise CollaborationInputError(f"Primary provider {primary.value} is not available")
        try:
            reviewers = self.available(config.review_providers)
        except CollaborationInputError as exc:
            raise CollaborationInputError("No review providers are available") from exc
        return [primary, *reviewers]

    async def run(
        self,
        request: AIRequest,
        config: IterativeConfig,
        providers: List[ProviderName],
    ) -> CollaborationResult:
        primary, reviewers = providers[0], providers[1:]
        run = await self._iterate(request, config, primary, reviewers)

        if not run.cycles:
            return self.failure(run.error or "No iterations completed")

        cycles = run.cycles
        responses = [response for cycle in cycles for response in cycle.responses()]
        return CollaborationResult(
            success=True,
            strategy=self.name,
            responses=responses,
            final_result=self._build_final(cycles, request),
            metadata={
                "providers_used": [provider.value for provider in providers],
                "iterations_completed": len(cycles),
                "final_quality_score": cycles[-1].quality_score,
                "convergence_achieved": has_converged(cycles, config),
                "improvement_trajectory": [cycle.quality_score for cycle in cycles],
                "stop_reason": run.stop_reason,
            },
        )

    async def _iterate(
        self,
        request: AIRequest,
        config: IterativeConfig,
        primary: ProviderName,
        reviewers: List[ProviderName],
    ) -> _Run:
        run = _Run()
        current = request
        previous_score = 0.0
        for iteration in range(1, config.max_iterations + 1):
            cycle = await self._cycle(request, current, config, primary, reviewers, iteration, run.cycles)
            if isinstance(cycle, str):
                self._logger.warning("Iteration %d aborted: %s", iteration, cycle)
                run.error = cycle
                run.stop_reason = "primary_failed"
                break

            run.cycles.append(cycle)
            run.stop_reason = stop_reason(cycle, run.cycles, config, previous_score)
            if run.stop_reason:
                self._logger.info("Stopping after iteration %d: %s", iteration, run.stop_reason)
                break
            if cycle.improved is not None:
                current = next_iteration_request(request, cycle, iteration + 1)
            previous_score = cycle.quality_score
        return run

    async def _cycle(
        self,
        original: AIRequest,
        current: AIRequest,
        config: IterativeConfig,
        primary: ProviderName,
        reviewers: List[ProviderName],
        iteration: int,
        previous: List[IterationCycle],
    ) -> "IterationCycle | str":
        prompts = config.feedback_prompts or FeedbackPrompts()

        draft = await run_step(
            self._manager,
            primary,
            current.derive(id=f"{original.id}-iter-{iteration}-primary"),
            config.timeout,
        )
        if isinstance(draft, StepFailure):
            return f"Primary provider {primary.value} failed: {draft.error}"

        reviews = await self._collect_reviews(original, draft.response, reviewers, iteration, config, prompts)

        improved = None
        if reviews:
            outcome = await run_step(
                self._manager,
                primary,
                original.derive(
                    id=f"{original.id}-iter-{iteration}-improved",
                    prompt=improvement_prompt(original, draft.response, reviews, prompts.improve),
                ),
                config.timeout,
            )
            if isinstance(outcome, StepSuccess):
                improved = outcome.response
            else:
                self._logger.warning("Improvement generation failed in iteration %d: %s", iteration, outcome.error)

        result = improved or draft.response
        return IterationCycle(
            iteration=iteration,
            primary=draft.response,
            reviews=reviews,
            improved=improved,
            quality_score=quality_score(result, reviews, iteration),
            improvements=identify_improvements(draft.response, improved, reviews),
            stability=stability([cycle.quality_score for cycle in previous]),
            improvement=max(0.0, basic_quality(improved) - basic_quality(draft.response)) if improved else 0.0,
            total_tokens=draft.response.usage.total_tokens + (improved.usage.total_tokens if improved else 0),
        )

    async def _collect_reviews(
        self,
        original: AIRequest,
        draft: AIResponse,
        reviewers: List[ProviderName],
        iteration: int,
        config: IterativeConfig,
        prompts: FeedbackPrompts,
    ) -> List[Review]:
        prompt = review_prompt(original, draft, prompts.review)
        outcomes = await asyncio.gather(
            *(
                run_step(
                    self._manager,
                    reviewer,
                    AIRequest(id=f"{original.id}-iter-{iteration}-review-{reviewer.value}", prompt=prompt),
                    config.timeout,
                )
                for reviewer in reviewers
            )
        )
        reviews = []
        for outcome in outcomes:
            if isinstance(outcome, StepFailure):
                self._logger.warning(
                    "Review from %s failed in iteration %d: %s", outcome.provider.value, iteration, outcome.error
                )
                continue
            feedback, suggestions = parse_review(outcome.response.content)
            reviews.append(Review(outcome.provider, outcome.response, feedback, suggestions))
        return reviews

    def _build_final(self, cycles: List[IterationCycle], request: AIRequest) -> AIResponse:
        last = cycles[-1]
        responses = [response for cycle in cycles for response in cycle.responses()]
        content = f"{last.best.content}\n\n--- Iterative Improvement Summary ---\n{iteration_summary(cycles)}"
        return AIResponse(
            id=f"iterative-final-{request.id}",
            provider="iterative_final",
            model="iterative_collaboration",
            content=content,
            usage=aggregate_usage(responses),
            latency=sum(response.latency for response in responses),
            finish_reason="stop",
            metadata={
                "request_id": request.id,
                "iterative_cycles": len(cycles),
                "final_quality_score": last.quality_score,
                "improvement_path": [cycle.quality_score for cycle in cycles],
                "total_improvements": sum(len(cycle.improvements) for cycle in cycles),
                "cycles_detail": [
                    {
                        "iteration": cycle.iteration,
                        "quality_score": cycle.quality_score,
                        "improvements": cycle.improvements,
                        "review_count": len(cycle.reviews),
                        "had_improvement": cycle.improved is not None,
                    }
                    for cycle in cycles
                ],
            },
        )


def review_prompt(original: AIRequest, draft: AIResponse, header: Optional[str] = None) -> str:
    return (
        f"{header or DEFAULT_REVIEW_PROMPT}\n\n"
        f"Original Question: {original.prompt}\n\n"
        f"Response to Review:\n{draft.content}\n\n"
        "Please provide:\n"
        "1. Overall assessment of the response quality\n"
        "2. Specific areas for improvement\n"
        "3. Concrete suggestions for enhancement\n"
        "4. Any missing information or perspectives\n\n"
        "Focus on being constructive and specific in your feedback."
    )


def parse_review(content: str) -> Tuple[str, List[str]]:
    """Split a review into free-form feedback and bulleted suggestions."""
    feedback: List[str] = []
    suggestions: List[str] = []
    in_suggestions = False
    for line in content.split("\n"):
        if not line.strip():
            continue
        if "suggestion" in line.lower() or "•" in line or "-" in line:
            in_suggestions = True
            suggestions.append(_BULLET_RE.sub("", line).strip())
        elif not in_suggestions:
            feedback.append(line)
    return (
        " ".join(feedback).strip() or content[:300],
        suggestions or [content[:150]],
    )


def improvement_prompt(
    original: AIRequest,
    draft: AIResponse,
    reviews: Sequence[Review],
    header: Optional[str] = None,
) -> str:
    summary = "\n\n".join(
        f"Reviewer {index} ({review.provider.value}):\n"
        f"Feedback: {review.feedback}\n"
        f"Suggestions: {'; '.join(review.suggestions)}"
        for index, review in enumerate(reviews, start=1)
    )
    return (
        f"{header or DEFAULT_IMPROVE_PROMPT}\n\n"
        f"Original Question: {original.prompt}\n\n"
        f"Your Previous Response:\n{draft.content}\n\n"
        f"Feedback from Reviewers:\n{summary}\n\n"
        "Please provide an improved response that addresses the feedback while maintaining "
        "the strengths of your original answer."
    )


def next_iteration_request(original: AIRequest, cycle: IterationCycle, iteration: int) -> AIRequest:
    suggestions = [suggestion for review in cycle.reviews for suggestion in review.suggestions][:3]
    prompt = (
        f"{original.prompt}\n\n"
        f"Previous iteration context:\n{cycle.best.content[:500]}...\n\n"
        "Key areas for further improvement:\n"
        + "\n".join(suggestions)
        + "\n\nPlease provide an enhanced response that builds upon the previous work "
        "while addressing the remaining improvement areas."
    )
    return original.derive(id=f"{original.id}-iter-{iteration}", prompt=prompt)


def basic_quality(response: AIResponse) -> float:
    quality = 0.0
    length = len(response.content)
    if 200 < length < 2000:
        quality += 0.3
    elif 2000 <= length < 4000:
        quality += 0.2
    if response.finish_reason == "stop":
        quality += 0.3
    if response.usage.prompt_tokens:
        efficiency = response.usage.completion_tokens / response.usage.prompt_tokens
        if 0.2 < efficiency < 1.5:
            quality += 0.2
    if response.latency < 15000:
        quality += 0.2
    return quality


def reviewer_assessment(reviews: Sequence[Review]) -> float:
    if not reviews:
        return 0.5
    total = 0.0
    for review in reviews:
        feedback = review.feedback.lower()
        positive = sum(1 for word in POSITIVE_WORDS if word in feedback)
        negative = sum(1 for word in NEGATIVE_WORDS if word in feedback)
        total += max(0.0, (positive - negative + 2) / 4)
    return total / len(reviews)


def completeness(response: AIResponse) -> float:
    content = response.content
    score = 0.0
    if "conclusion" in content or "summary" in content:
        score += 0.3
    if "example" in content or "instance" in content:
        score += 0.3
    if len(content.split("\n")) > 3:
        score += 0.4
    return score


def quality_score(response: AIResponse, reviews: Sequence[Review], iteration: int) -> float:
    """Weighted blend of response quality, reviewer tone, iteration maturity and structure."""
    score = (
        basic_quality(response) * 0.4
        + reviewer_assessment(reviews) * 0.3
        + min(1.0, iteration * 0.2) * 0.2
        + completeness(response) * 0.1
    )
    return max(0.0, min(1.0, score))


def variance(scores: Sequence[float]) -> float:
    if len(scores) < 2:
        return 0.0
    mean = sum(scores) / len(scores)
    return sum((score - mean) ** 2 for score in scores) / len(scores)


def stability(scores: Sequence[float]) -> float:
    """1 minus the variance of the last three scores; 0 until two scores exist."""
    if len(scores) < 2:
        return 0.0
    return max(0.0, 1 - variance(list(scores)[-3:]))


def identify_improvements(draft: AIResponse, improved: Optional[AIResponse], reviews: Sequence[Review]) -> List[str]:
    if improved is None:
        return ["No improvement generated"]
    notes = []
    change = len(improved.content) - len(draft.content)
    if change > 100:
        notes.append("Expanded content with more details")
    elif change < -100:
        notes.append("Condensed content for clarity")

    seen = {word for word in words(draft.content) if len(word) > 4}
    concepts: Dict[str, None] = {}
    for word in words(improved.content):
        if len(word) > 4 and word not in seen:
            concepts.setdefault(word, None)
    if concepts:
        notes.append(f"Added new concepts: {', '.join(list(concepts)[:3])}")

    addressed = addressed_suggestions(reviews, improved.content)
    if addressed:
        notes.append(f"Addressed reviewer suggestions: {len(addressed)} items")
    return notes or ["General refinement"]


def addressed_suggestions(reviews: Sequence[Review], content: str) -> List[str]:
    lowered = content.lower()
    addressed = []
    for review in reviews:
        for suggestion in review.suggestions:
            terms = [word for word in words(suggestion) if len(word) > 3]
            matched = sum(1 for term in terms if term in lowered)
            if terms and matched > len(terms) * 0.3:
                addressed.append(suggestion[:50])
    return addressed


def stop_reason(
    cycle: IterationCycle,
    cycles: Sequence[IterationCycle],
    config: IterativeConfig,
    previous_score: float,
) -> Optional[str]:
    criteria = config.convergence_criteria
    if criteria is not None:
        if criteria.quality_score is not None and cycle.quality_score >= criteria.quality_score:
            return "quality_score"
        if criteria.stability_rounds and len(cycles) >= criteria.stability_rounds:
            recent = [past.quality_score for past in cycles[-criteria.stability_rounds:]]
            if stability(recent) > STABLE:
                return "stability"
        if criteria.max_tokens and sum(past.total_tokens for past in cycles) > criteria.max_tokens:
            return "max_tokens"
    if abs(cycle.quality_score - previous_score) < config.improvement_threshold:
        return "no_improvement"
    return None


def has_converged(cycles: Sequence[IterationCycle], config: IterativeConfig) -> bool:
    if len(cycles) < 2:
        return False
    last = cycles[-1]
    criteria = config.convergence_criteria
    if criteria is not None and criteria.quality_score is not None and last.quality_score >= criteria.quality_score:
        return True
    return last.stability > CONVERGED


def iteration_summary(cycles: Sequence[IterationCycle]) -> str:
    blocks = [
        f"Iteration {cycle.iteration}: Quality {cycle.quality_score * 100:.1f}%\n"
        f"  - Improvements: {', '.join(cycle.improvements)}\n"
        f"  - Reviews: {len(cycle.reviews)} reviewers\n"
        f"  - Stability: {cycle.stability * 100:.1f}%"
        for cycle in cycles
    ]
    overall = cycles[-1].quality_score - cycles[0].quality_score if len(cycles) > 1 else 0.0
    final = (
        "\nOverall Process:\n"
        f"- Total iterations: {len(cycles)}\n"
        f"- Quality improvement: {overall * 100:.1f}%\n"
        f"- Final stability: {cycles[-1].stability * 100:.1f}%\n"
        f"- Total tokens used: {sum(cycle.total_tokens for cycle in cycles)}"
    )
    return "\n\n".join(blocks) + final
