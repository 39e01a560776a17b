"""Provider registry and lifecycle manager.

The manager is the single layer that applies rate limiting and retry around
adapter calls; adapters and strategies do neither.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from time import perf_counter
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .cache import ResponseCache, make_key
from .errors import (
    AggregateProviderError,
    CollaborationInputError,
    ProviderDisposalError,
    ProviderError,
    ProviderInitializationError,
    ProviderNotInitializedError,
    ProviderNotRegisteredError,
    ProviderRequestError,
    RateLimitExceededError,
)
from .metrics import PROVIDER_SCOPE, LoggingMetricsCollector, MetricsCollector, MetricsEvent
from .providers.base import ProviderAdapter, ProviderConfig
from .rate_limiter import RateLimiter
from .retry import DEFAULT_RETRY_POLICY, RetryExecutor, RetryPolicy
from .types import (
    AIRequest,
    AIResponse,
    CollaborationResult,
    HealthStatus,
    ProviderCapabilities,
    ProviderName,
    ProviderState,
    ProviderStats,
    ProviderStatus,
    ValidationResult,
    utc_now,
)

LOGGER = logging.getLogger("collab_orchestrator.manager")

ProviderKey = Union[ProviderName, str]


class ProviderManager:
    """Own the configured adapters, their lifecycle state and their statistics."""

    def __init__(
        self,
        adapters: Iterable[ProviderAdapter] = (),
        *,
        rate_limiter: Optional[RateLimiter] = None,
        retry_executor: Optional[RetryExecutor] = None,
        retry_policy: Optional[RetryPolicy] = None,
        cache: Optional[ResponseCache] = None,
        cache_ttl: Optional[float] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self._adapters: Dict[ProviderName, ProviderAdapter] = {}
        self._states: Dict[ProviderName, ProviderState] = {}
        self._configs: Dict[ProviderName, ProviderConfig] = {}
        self._stats: Dict[ProviderName, ProviderStats] = {}
        self._rate_limiter = rate_limiter or RateLimiter()
        self._retry_executor = retry_executor or RetryExecutor()
        self._retry_policy = retry_policy or DEFAULT_RETRY_POLICY
        self._cache = cache
        self._cache_ttl = cache_ttl
        self._metrics = metrics or LoggingMetricsCollector()
        for adapter in adapters:
            self.register_provider(adapter)

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    # Registration and lifecycle

    def register_provider(self, adapter: ProviderAdapter) -> None:
        name = ProviderName.parse(adapter.name)
        if name in self._adapters:
            raise ValueError(f"Provider {name.value} is already registered")
        self._adapters[name] = adapter
        self._states[name] = ProviderState.REGISTERED
        self._stats[name] = ProviderStats()

    def get_provider(self, name: ProviderKey) -> ProviderAdapter:
        return self._adapters[self._resolve(name)]

    def get_provider_state(self, name: ProviderKey) -> ProviderState:
        return self._states[self._resolve(name)]

    def registered_providers(self) -> List[ProviderName]:
        return list(self._adapters)

    async def initialize_provider(self, name: ProviderKey, config: ProviderConfig) -> None:
        provider = self._resolve(name)
        previous = self._states[provider]
        if previous is ProviderState.INITIALIZED:
            LOGGER.debug("Provider %s already initialized", provider.value)
            return

        self._states[provider] = ProviderState.INITIALIZING
        try:
            await self._adapters[provider].initialize(config)
        except asyncio.CancelledError:
            self._states[provider] = previous
            raise
        except Exception as exc:
            self._states[provider] = previous
            LOGGER.warning("Initialization failed for %s: %s", provider.value, exc)
            raise ProviderInitializationError(provider.value, str(exc)) from exc

        self._configs[provider] = config
        self._states[provider] = ProviderState.INITIALIZED
        LOGGER.info("Provider %s initialized", provider.value)

    async def initialize_all_providers(self, configs: Mapping[ProviderKey, ProviderConfig]) -> None:
        """Initialize every enabled, registered provider; raise once all have settled."""
        targets = []
        for raw_name, config in configs.items():
            try:
                provider = self._resolve(raw_name)
            except ProviderNotRegisteredError:
                LOGGER.warning("Skipping configuration for unregistered provider %s", raw_name)
                continue
            if not config.enabled:
                LOGGER.info("Provider %s disabled by configuration", provider.value)
                continue
            targets.append(self.initialize_provider(provider, config))

        results = await asyncio.gather(*targets, return_exceptions=True)
        errors = [result for result in results if isinstance(result, BaseException)]
        if errors:
            raise AggregateProviderError("initialize providers", errors)

    async def dispose_provider(self, name: ProviderKey) -> None:
        provider = self._resolve(name)
        if self._states[provider] is not ProviderState.INITIALIZED:
            return
        try:
            await self._adapters[provider].dispose()
        except Exception as exc:
            raise ProviderDisposalError(provider.value, str(exc)) from exc
        finally:
            self._states[provider] = ProviderState.DISPOSED
        LOGGER.info("Provider %s disposed", provider.value)

    async def dispose_all_providers(self) -> None:
        initialized = self.get_available_providers()
        results = await asyncio.gather(
            *(self.dispose_provider(provider) for provider in initialized),
            return_exceptions=True,
        )
        errors = [result for result in results if isinstance(result, BaseException)]
        if errors:
            raise AggregateProviderError("dispose all providers", errors)

    # Request execution

    async def execute_request(self, name: ProviderKey, request: AIRequest) -> AIResponse:
        provider = self._resolve(name)
        if self._states[provider] is not ProviderState.INITIALIZED:
            raise ProviderNotInitializedError(provider.value)

        cache_key = None
        if self._cache is not None:
            cache_key = make_key(provider.value, request)
            cached = self._cache.get(cache_key)
            if cached is not None:
                LOGGER.debug("Cache hit for %s request %s", provider.value, request.id)
                return cached.with_metadata(cached=True, request_id=request.id)

        adapter = self._adapters[provider]
        stats = self._stats[provider]
        attempts = 0

        async def _attempt() -> AIResponse:
            nonlocal attempts
            attempts += 1
            if not self._rate_limiter.consume_token(provider.value):
                stats.rate_limit_hits += 1
                limit = self._rate_limiter.check_limit(provider.value)
                raise RateLimitExceededError(provider.value, limit.retry_after)
            return await adapter.generate_response(request)

        def _on_retry(attempt: int, error: BaseException, delay: float) -> None:
            stats.retry_count += 1

        start = perf_counter()
        stats.total_requests += 1
        try:
            response = await self._retry_executor.execute_with_retry(
                _attempt,
                self._policy_for(provider),
                on_retry=_on_retry,
            )
        except asyncio.CancelledError:
            stats.failed_requests += 1
            stats.last_error_time = utc_now()
            raise
        except Exception as exc:
            stats.failed_requests += 1
            stats.last_error_time = utc_now()
            wrapped = ProviderRequestError(provider.value, exc)
            self._record(provider, request, "error", start, attempts, wrapped)
            raise wrapped from exc

        latency = (perf_counter() - start) * 1000
        stats.successful_requests += 1
        stats.last_request_time = utc_now()
        stats.average_latency = (
            stats.average_latency * (stats.successful_requests - 1) + latency
        ) / stats.successful_requests
        self._record(provider, request, "success", start, attempts, None, response.usage.total_tokens)

        if self._cache is not None and cache_key is not None:
            self._cache.set(cache_key, response, ttl_seconds=self._cache_ttl, tags=(provider.value, response.model))
        return response

    async def execute_collaboration(
        self,
        strategy: str,
        providers: Sequence[ProviderKey],
        request: AIRequest,
    ) -> CollaborationResult:
        """Fallback aggregator: try every listed provider independently."""
        if not providers:
            raise CollaborationInputError("At least one provider must be specified")

        start = perf_counter()

        async def _run(name: ProviderKey):
            try:
                return name, await self.execute_request(name, request), None
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                return name, None, str(exc)

        outcomes = await asyncio.gather(*(_run(name) for name in providers))
        responses = [response for _, response, _ in outcomes if response is not None]
        results = [
            {
                "provider": str(getattr(name, "value", name)),
                "success": response is not None,
                **({"error": error} if error is not None else {}),
            }
            for name, response, error in outcomes
        ]
        success = bool(responses)
        metadata = {
            "request_id": request.id,
            "execution_time": (perf_counter() - start) * 1000,
            "results": results,
            "summary": f"Executed {strategy} strategy with {len(outcomes)} providers",
        }
        if not success:
            metadata["error"] = "; ".join(result["error"] for result in results if "error" in result)
        return CollaborationResult(
            success=success,
            strategy=strategy,
            responses=responses,
            final_result=responses[0] if responses else None,
            metadata=metadata,
        )

    # Health and statistics

    async def get_provider_health(self, name: ProviderKey) -> HealthStatus:
        provider = self._resolve(name)
        try:
            return await self._adapters[provider].get_health_status()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.warning("Health probe raised for %s: %s", provider.value, exc)
            return HealthStatus.unhealthy("HEALTH_CHECK_ERROR", str(exc))

    async def get_all_providers_health(self) -> Dict[ProviderName, HealthStatus]:
        names = list(self._adapters)
        statuses = await asyncio.gather(*(self.get_provider_health(name) for name in names))
        return dict(zip(names, statuses))

    def get_provider_stats(self, name: ProviderKey) -> ProviderStats:
        return self._stats[self._resolve(name)].copy()

    def get_all_providers_stats(self) -> Dict[ProviderName, ProviderStats]:
        return {name: stats.copy() for name, stats in self._stats.items()}

    # Queries

    def get_available_providers(self) -> List[ProviderName]:
        return [name for name, state in self._states.items() if state is ProviderState.INITIALIZED]

    def is_provider_available(self, name: ProviderKey) -> bool:
        try:
            return self._states[self._resolve(name)] is ProviderState.INITIALIZED
        except ProviderNotRegisteredError:
            return False

    def get_provider_capabilities(self, name: ProviderKey) -> ProviderCapabilities:
        return self.get_provider(name).capabilities

    def find_providers_by_capability(self, flag: str) -> List[ProviderName]:
        return [
            name
            for name in self.get_available_providers()
            if self._adapters[name].capabilities.has(flag)
        ]

    def get_best_provider_for_model(self, model: str) -> Optional[ProviderName]:
        for name in self.get_available_providers():
            if model in self._adapters[name].capabilities.models:
                return name
        return None

    def validate_request(self, name: ProviderKey, request: AIRequest) -> ValidationResult:
        return self.get_provider(name).validate_request(request)

    def get_providers_status(self) -> Dict[ProviderName, ProviderStatus]:
        return {
            name: ProviderStatus(
                registered=True,
                initialized=self._states[name] is ProviderState.INITIALIZED,
                healthy=adapter.is_healthy(),
            )
            for name, adapter in self._adapters.items()
        }

    # Internals

    def _resolve(self, name: ProviderKey) -> ProviderName:
        try:
            provider = ProviderName.parse(name)
        except ValueError as exc:
            raise ProviderNotRegisteredError(str(name)) from exc
        if provider not in self._adapters:
            raise ProviderNotRegisteredError(provider.value)
        return provider

    def _policy_for(self, provider: ProviderName) -> RetryPolicy:
        config = self._configs.get(provider)
        if config is None or config.max_retries is None:
            return self._retry_policy
        return replace(self._retry_policy, max_retries=config.max_retries)

    def _record(
        self,
        provider: ProviderName,
        request: AIRequest,
        status: str,
        start: float,
        attempts: int,
        error: Optional[ProviderError],
        total_tokens: int = 0,
    ) -> None:
        self._metrics.record(
            MetricsEvent(
                scope=PROVIDER_SCOPE,
                name=provider.value,
                request_id=request.id,
                status=status,
                duration_ms=(perf_counter() - start) * 1000,
                attempts=attempts,
                total_tokens=total_tokens,
                retryable=error.retryable if error is not None else None,
                error_code=error.code if error is not None else None,
            )
        )
