"""Runtime wiring for the collaboration orchestrator."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from .cache import ResponseCache
from .config import ConfigError, OrchestratorConfig
from .errors import AggregateProviderError, CollaborationInputError
from .manager import ProviderManager
from .metrics import LoggingMetricsCollector, MetricsCollector, PrometheusMetricsCollector
from .providers import create_adapter
from .rate_limiter import RateLimiter
from .strategy_manager import StrategyManager
from .types import AIRequest, CollaborationResult, HealthStatus, ProviderName, ProviderStatus

LOGGER = logging.getLogger("collab_orchestrator.runtime")


def _level_for(name: str) -> int:
    level = getattr(logging, name.upper(), logging.INFO)
    if isinstance(level, int):
        return level
    return logging.INFO


def create_metrics_collector(config: OrchestratorConfig) -> MetricsCollector:
    if config.metrics_backend == "prometheus":
        return PrometheusMetricsCollector(port=config.metrics_port)
    return LoggingMetricsCollector()


def create_manager(config: OrchestratorConfig, metrics: MetricsCollector) -> ProviderManager:
    """Register an adapter for every enabled provider."""
    adapters = []
    for name in config.providers:
        try:
            adapters.append(create_adapter(name))
        except ValueError as exc:
            raise ConfigError(f"Unsupported provider: {name.value}") from exc
    return ProviderManager(
        adapters,
        rate_limiter=RateLimiter(config.rate_limit_capacity, config.rate_limit_refill_rate),
        retry_policy=config.retry_policy(),
        cache=ResponseCache() if config.cache_enabled else None,
        cache_ttl=config.cache_ttl,
        metrics=metrics,
    )


def default_strategy_config(strategy: str, providers: Sequence[ProviderName]) -> Dict[str, Any]:
    if strategy == "iterative":
        primary, reviewers = providers[0], list(providers[1:]) or [providers[0]]
        return {"primary_provider": primary, "review_providers": reviewers}
    return {"providers": list(providers)}


class OrchestratorRuntime:
    """Own the provider manager and strategy manager for one process."""

    def __init__(
        self,
        config: OrchestratorConfig,
        manager: Optional[ProviderManager] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.config = config
        logging.getLogger("collab_orchestrator").setLevel(_level_for(config.log_level))

        self._metrics = metrics or create_metrics_collector(config)
        self.manager = manager or create_manager(config, self._metrics)
        self.strategies = StrategyManager(self.manager, default_timeout=config.strategy_timeout)
        self._started = False

    async def start(self) -> None:
        """Initialize every configured provider; tolerate partial failure."""
        if self._started:
            return
        try:
            await self.manager.initialize_all_providers(self.config.provider_configs())
        except AggregateProviderError as exc:
            if not self.manager.get_available_providers():
                raise
            LOGGER.warning("Some providers failed to initialize: %s", exc)
        self._started = True
        LOGGER.info(
            "Orchestrator started with providers=%s",
            ",".join(provider.value for provider in self.manager.get_available_providers()),
        )

    async def stop(self) -> None:
        """Dispose providers and release clients."""
        if not self._started:
            return
        try:
            await self.manager.dispose_all_providers()
        except AggregateProviderError:
            LOGGER.debug("Provider cleanup failed", exc_info=True)
        finally:
            self._started = False
            LOGGER.info("Orchestrator stopped")

    async def collaborate(
        self,
        request: AIRequest,
        strategy: Optional[str] = None,
        providers: Optional[Sequence["ProviderName | str"]] = None,
        options: Optional[Mapping[str, Any]] = None,
    ) -> CollaborationResult:
        """Run one collaboration with defaults filled in from configuration."""
        strategy = strategy or self.config.default_strategy
        if providers:
            try:
                selected = [ProviderName.parse(provider) for provider in providers]
            except ValueError as exc:
                raise CollaborationInputError(str(exc)) from exc
        else:
            selected = self.manager.get_available_providers()
        if not selected:
            raise CollaborationInputError("No available providers found")
        data = default_strategy_config(strategy, selected)
        if options:
            data.update(options)
        return await self.strategies.execute_strategy(strategy, request, data)

    async def health(self) -> Dict[ProviderName, HealthStatus]:
        return await self.manager.get_all_providers_health()

    def status(self) -> Dict[ProviderName, ProviderStatus]:
        return self.manager.get_providers_status()


async def perform_healthcheck(
    config: OrchestratorConfig,
    runtime_factory: Optional[Callable[[OrchestratorConfig], OrchestratorRuntime]] = None,
) -> bool:
    """Initialize providers and report whether at least one answers its health probe."""
    runtime_factory = runtime_factory or OrchestratorRuntime
    runtime = runtime_factory(config)
    try:
        await runtime.start()
        statuses = await runtime.health()
    except Exception as exc:
        LOGGER.warning("Healthcheck failed: %s", exc)
        return False
    finally:
        await runtime.stop()

    for provider, status in statuses.items():
        if status.healthy:
            LOGGER.info("Provider %s healthy (latency=%.1fms)", provider.value, status.latency or 0.0)
        else:
            message = status.last_error.message if status.last_error else "unknown"
            LOGGER.warning("Provider %s unhealthy: %s", provider.value, message)
    return any(status.healthy for status in statuses.values())
