"""Sequential strategy: chain providers, feeding each answer into the next prompt."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..types import AIRequest, AIResponse, CollaborationResult, ProviderName
from .base import (
    CollaborationStrategy,
    StepFailure,
    aggregate_usage,
    response_confidence,
    run_step,
    words,
)

DEFAULT_CONTINUATION_PROMPT = "Based on the previous response, please continue and improve upon the answer:"
CONTEXT_MODES = ("full", "summary", "last_only")


@dataclass
class StopConditions:
    max_tokens: Optional[int] = None
    keywords: Sequence[str] = ()
    confidence: Optional[float] = None


@dataclass
class SequentialConfig:
    providers: Sequence["ProviderName | str"]
    max_steps: Optional[int] = None
    continuation_prompt: str = DEFAULT_CONTINUATION_PROMPT
    stop_conditions: Optional[StopConditions] = None
    context_preservation: str = "full"

    def validate(self) -> List[str]:
        problems = []
        if not self.providers:
            problems.append("At least one provider must be specified")
        if self.max_steps is not None and self.max_steps < 1:
            problems.append("max_steps must be at least 1")
        if self.context_preservation not in CONTEXT_MODES:
            problems.append(f"context_preservation must be one of {', '.join(CONTEXT_MODES)}")
        stop = self.stop_conditions
        if stop is not None:
            if stop.max_tokens is not None and stop.max_tokens < 100:
                problems.append("stop_conditions.max_tokens must be at least 100")
            if stop.confidence is not None and not 0 <= stop.confidence <= 1:
                problems.append("stop_conditions.confidence must be between 0 and 1")
        return problems


@dataclass
class SequentialStep:
    number: int
    provider: ProviderName
    request: AIRequest
    response: AIResponse
    execution_time: float
    context: str


@dataclass
class _Run:
    steps: List[SequentialStep] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)
    stop_reason: Optional[str] = None


class SequentialStrategy(CollaborationStrategy):
    name = "sequential"

    async def run(
        self,
        request: AIRequest,
        config: SequentialConfig,
        providers: List[ProviderName],
    ) -> CollaborationResult:
        max_steps = config.max_steps or len(providers)
        run = await self._execute_steps(request, config, providers[:max_steps])

        if not run.steps:
            return self.failure("No steps were successfully executed", failed_steps=run.failed)

        steps = run.steps
        return CollaborationResult(
            success=True,
            strategy=self.name,
            responses=[step.response for step in steps],
            final_result=self._build_final_response(steps, request),
            metadata={
                "providers_used": [step.provider.value for step in steps],
                "step_count": len(steps),
                "context_preservation": config.context_preservation,
                "stop_reason": run.stop_reason,
                "failed_steps": run.failed,
                "steps_summary": [
                    {
                        "step": step.number,
                        "provider": step.provider.value,
                        "tokens": step.response.usage.total_tokens,
                        "execution_time": step.execution_time,
                    }
                    for step in steps
                ],
            },
        )

    async def _execute_steps(
        self,
        initial: AIRequest,
        config: SequentialConfig,
        providers: Sequence[ProviderName],
    ) -> _Run:
        run = _Run()
        context = ""
        for number, provider in enumerate(providers, start=1):
            step_request = initial
            if number > 1:
                step_request = build_contextual_request(initial, context, config.continuation_prompt, number)

            outcome = await run_step(self._manager, provider, step_request)
            if isinstance(outcome, StepFailure):
                self._logger.warning("Step %d with provider %s failed: %s", number, provider.value, outcome.error)
                run.failed.append({"step": number, "provider": provider.value, "error": outcome.error})
                continue

            run.steps.append(
                SequentialStep(
                    number=number,
                    provider=provider,
                    request=step_request,
                    response=outcome.response,
                    execution_time=outcome.duration_ms,
                    context=context,
                )
            )
            context = update_context(context, outcome.response, config.context_preservation)
            run.stop_reason = stop_reason(outcome.response, config.stop_conditions, context)
            if run.stop_reason:
                self._logger.info("Stopping after step %d: %s", number, run.stop_reason)
                break
        return run

    def _build_final_response(self, steps: List[SequentialStep], request: AIRequest) -> AIResponse:
        last = steps[-1]
        total_time = sum(step.execution_time for step in steps)
        content = f"{last.response.content}\n\n--- Evolution Summary ---\n{evolution_summary(steps)}"
        return AIResponse(
            id=f"sequential-final-{request.id}",
            provider="sequential_final",
            model="sequential_collaboration",
            content=content,
            usage=aggregate_usage(step.response for step in steps),
            latency=total_time,
            finish_reason=last.response.finish_reason or "stop",
            metadata={
                "request_id": request.id,
                "sequential_steps": len(steps),
                "providers_sequence": [step.provider.value for step in steps],
                "total_execution_time": total_time,
                "steps_detail": [
                    {
                        "step": step.number,
                        "provider": step.provider.value,
                        "model": step.response.model,
                        "tokens": step.response.usage.total_tokens,
                        "execution_time": step.execution_time,
                        "finish_reason": step.response.finish_reason,
                    }
                    for step in steps
                ],
            },
        )


def build_contextual_request(original: AIRequest, context: str, continuation: str, number: int) -> AIRequest:
    if number == 2:
        prompt = f"{original.prompt}\n\n{continuation}\n\nPrevious context:\n{context}"
    else:
        prompt = f"{continuation}\n\nContext so far:\n{context}\n\nPlease provide the next iteration or improvement."
    return original.derive(id=f"{original.id}-step-{number}", prompt=prompt)


def update_context(context: str, response: AIResponse, mode: str) -> str:
    if mode == "summary":
        summary = summarize(response.content)
        if context:
            return f"{context}\n\n--- Summary from {response.provider} ---\n{summary}"
        return f"Summary from {response.provider}:\n{summary}"
    if mode == "last_only":
        return f"Latest response from {response.provider}:\n{response.content}"
    if context:
        return f"{context}\n\n--- Next Response ({response.provider}) ---\n{response.content}"
    return f"Response from {response.provider}:\n{response.content}"


def summarize(content: str) -> str:
    """Keep the first and last paragraph of a response."""
    paragraphs = [paragraph for paragraph in content.split("\n\n") if paragraph.strip()]
    if len(paragraphs) <= 2:
        return content
    return f"{paragraphs[0]}\n\n[...summary of {len(paragraphs) - 2} paragraphs...]\n\n{paragraphs[-1]}"


def stop_reason(response: AIResponse, conditions: Optional[StopConditions], context: str) -> Optional[str]:
    """Return why the chain should halt after ``response``, or ``None`` to continue."""
    if conditions is None:
        return None

    if conditions.max_tokens:
        # Roughly four characters per token.
        estimated = (len(context) + len(response.content)) / 4
        if estimated > conditions.max_tokens:
            return "max_tokens"

    if conditions.keywords:
        content = response.content.lower()
        if any(keyword.lower() in content for keyword in conditions.keywords):
            return "keyword"

    if conditions.confidence is not None and response_confidence(response) >= conditions.confidence:
        return "confidence"

    return None


def evolution_summary(steps: List[SequentialStep]) -> str:
    blocks = []
    for index, step in enumerate(steps):
        lines = [
            f"Step {step.number} ({step.provider.value}):",
            f"- Tokens: {step.response.usage.total_tokens}",
            f"- Time: {round(step.execution_time)}ms",
            f"- Content length: {len(step.response.content)} chars",
        ]
        if index > 0:
            lines.append(f"- Improvement: {analyze_improvement(steps[index - 1], step)}")
        blocks.append("\n".join(lines))

    total_tokens = sum(step.response.usage.total_tokens for step in steps)
    total_time = sum(step.execution_time for step in steps)
    unique = len({step.provider for step in steps})
    final = (
        "\nFinal Analysis:\n"
        f"- Total steps: {len(steps)}\n"
        f"- Total tokens: {total_tokens}\n"
        f"- Total time: {round(total_time)}ms\n"
        f"- Provider diversity: {unique} unique providers"
    )
    return "\n\n".join(blocks) + final


def analyze_improvement(previous: SequentialStep, current: SequentialStep) -> str:
    before = previous.response.content
    after = current.response.content
    notes = []

    if len(after) > len(before) * 1.2:
        notes.append("expanded content")
    elif len(after) < len(before) * 0.8:
        notes.append("condensed content")

    novel = new_words(before, after)
    if novel:
        notes.append(f"added new concepts: {', '.join(novel[:3])}")

    if current.execution_time < previous.execution_time * 0.8:
        notes.append("faster execution")

    return ", ".join(notes) if notes else "refined approach"


def new_words(before: str, after: str, limit: int = 10) -> List[str]:
    """Words longer than three characters that appear in ``after`` but not ``before``."""
    seen = {word for word in words(before) if len(word) > 3}
    found: Dict[str, None] = {}
    for word in words(after):
        if len(word) > 3 and word not in seen:
            found.setdefault(word, None)
    return list(found)[:limit]
