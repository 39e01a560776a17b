"""Shared building blocks for collaboration strategies."""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from time import perf_counter
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence, Union

from ..errors import CollaborationInputError
from ..metrics import COLLABORATION_SCOPE, MetricsEvent
from ..types import AIRequest, AIResponse, CollaborationResult, ProviderName, TokenUsage, utc_now

if TYPE_CHECKING:
    from ..manager import ProviderManager

CONFIDENCE_KEYWORDS = (
    "definitely",
    "certainly",
    "clearly",
    "obviously",
    "precisely",
    "exactly",
    "conclusively",
    "undoubtedly",
)
UNCERTAINTY_KEYWORDS = (
    "maybe",
    "perhaps",
    "possibly",
    "might",
    "could",
    "uncertain",
    "unsure",
    "unclear",
    "ambiguous",
)

_WORD_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class StepSuccess:
    provider: ProviderName
    response: AIResponse
    duration_ms: float

    ok = True


@dataclass(frozen=True)
class StepFailure:
    provider: ProviderName
    error: str
    duration_ms: float
    exception: Optional[BaseException] = None

    ok = False


StepOutcome = Union[StepSuccess, StepFailure]


async def run_step(
    manager: "ProviderManager",
    provider: ProviderName,
    request: AIRequest,
    timeout: Optional[float] = None,
) -> StepOutcome:
    """Execute one provider call and report the outcome as a value instead of raising."""
    start = perf_counter()
    try:
        call = manager.execute_request(provider, request)
        if timeout is not None:
            response = await asyncio.wait_for(call, timeout)
        else:
            response = await call
    except asyncio.TimeoutError as exc:
        return StepFailure(
            provider,
            f"Provider {provider.value} timed out after {timeout}s",
            _elapsed(start),
            exc,
        )
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        return StepFailure(provider, str(exc), _elapsed(start), exc)
    return StepSuccess(provider, response, _elapsed(start))


async def fan_out(
    manager: "ProviderManager",
    providers: Sequence[ProviderName],
    request: AIRequest,
    timeout: Optional[float] = None,
) -> List[StepOutcome]:
    """Run the same request against every provider concurrently.

    Outcomes come back in the order of ``providers`` regardless of completion
    order; one provider failing or timing out never cancels the others.
    """
    return list(await asyncio.gather(*(run_step(manager, provider, request, timeout) for provider in providers)))


def successes(outcomes: Iterable[StepOutcome]) -> List[StepSuccess]:
    return [outcome for outcome in outcomes if isinstance(outcome, StepSuccess)]


def failures(outcomes: Iterable[StepOutcome]) -> List[StepFailure]:
    return [outcome for outcome in outcomes if isinstance(outcome, StepFailure)]


def words(text: str) -> List[str]:
    return [word for word in _WORD_RE.split(text.lower()) if word]


def jaccard_similarity(left: str, right: str) -> float:
    """Word-set overlap in [0, 1]; two empty texts count as identical."""
    left_words = set(words(left))
    right_words = set(words(right))
    union = left_words | right_words
    if not union:
        return 1.0
    return len(left_words & right_words) / len(union)


def aggregate_usage(responses: Iterable[AIResponse]) -> TokenUsage:
    return TokenUsage.sum(response.usage for response in responses)


def response_confidence(response: AIResponse) -> float:
    """Heuristic confidence score for a single response, clamped to [0, 1]."""
    confidence = 0.5
    if response.finish_reason == "stop":
        confidence += 0.3
    elif response.finish_reason == "length":
        confidence += 0.1

    content = response.content.lower()
    confident = sum(1 for keyword in CONFIDENCE_KEYWORDS if keyword in content)
    uncertain = sum(1 for keyword in UNCERTAINTY_KEYWORDS if keyword in content)
    confidence += confident * 0.05 - uncertain * 0.05
    return max(0.0, min(1.0, confidence))


def provider_values(providers: Iterable[ProviderName]) -> List[str]:
    return [provider.value for provider in providers]


class CollaborationStrategy(ABC):
    """Template for strategies: input validation, timing, metrics and the failure boundary."""

    name: str

    def __init__(self, manager: "ProviderManager") -> None:
        self._manager = manager
        self._logger = logging.getLogger(f"collab_orchestrator.strategies.{self.name}")

    async def execute(self, request: AIRequest, config: Any) -> CollaborationResult:
        problems = config.validate()
        if problems:
            raise CollaborationInputError("; ".join(problems))
        providers = self.select_providers(config)

        start = perf_counter()
        try:
            result = await self.run(request, config, providers)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.exception("%s collaboration %s failed", self.name, request.id)
            result = self.failure(str(exc))

        result.metadata.setdefault("request_id", request.id)
        result.metadata.setdefault("timestamp", utc_now().isoformat())
        result.metadata["execution_time"] = _elapsed(start)
        self._manager.metrics.record(
            MetricsEvent(
                scope=COLLABORATION_SCOPE,
                name=self.name,
                request_id=request.id,
                status="success" if result.success else "error",
                duration_ms=result.metadata["execution_time"],
                attempts=len(result.responses),
                total_tokens=aggregate_usage(result.responses).total_tokens,
            )
        )
        return result

    def select_providers(self, config: Any) -> List[ProviderName]:
        return self.available(config.providers)

    def available(self, requested: Sequence["ProviderName | str"]) -> List[ProviderName]:
        """Keep the requested providers that are initialized, in the requested order."""
        if not requested:
            raise CollaborationInputError("At least one provider must be specified")
        available = set(self._manager.get_available_providers())
        selected: List[ProviderName] = []
        for raw in requested:
            try:
                provider = ProviderName.parse(raw)
            except ValueError as exc:
                raise CollaborationInputError(str(exc)) from exc
            if provider in available:
                selected.append(provider)
            else:
                self._logger.warning("Provider %s is not available; skipping", provider.value)
        if not selected:
            raise CollaborationInputError("No available providers found")
        return selected

    def failure(
        self,
        error: str,
        responses: Optional[List[AIResponse]] = None,
        **metadata: Any,
    ) -> CollaborationResult:
        details: Dict[str, Any] = dict(metadata)
        details["error"] = error
        return CollaborationResult(
            success=False,
            strategy=self.name,
            responses=list(responses or []),
            metadata=details,
        )

    @abstractmethod
    async def run(
        self,
        request: AIRequest,
        config: Any,
        providers: List[ProviderName],
    ) -> CollaborationResult:
        """Execute the strategy against the already validated providers."""


def _elapsed(start: float) -> float:
    return (perf_counter() - start) * 1000
