"""Configuration utilities for the collaboration orchestrator."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv

from .providers.base import ProviderConfig
from .retry import RetryPolicy
from .types import ProviderName

# Load secrets from home directory first, then fall back to local lookups.
load_dotenv(Path.home() / ".env", override=False)
load_dotenv(override=False)

STRATEGY_NAMES = ("sequential", "parallel", "consensus", "iterative")


class ConfigError(ValueError):
    """Raised when configuration values are invalid or missing."""


def _as_bool(value: str) -> bool:
    return value.lower() in {"1", "true", "yes", "on"}


def _require(value: Optional[str], name: str) -> str:
    if value is None or value.strip() == "":
        raise ConfigError(f"{name} is required but was not provided")
    return value


def _provider_from_env(name: ProviderName, env: Mapping[str, str]) -> Optional[ProviderConfig]:
    prefix = f"COLLAB_{name.name}"
    if not _as_bool(env.get(f"{prefix}_ENABLED", "false")):
        return None

    api_key = env.get(f"{prefix}_API_KEY")
    if name is not ProviderName.LLMSTUDIO:
        api_key = _require(api_key, f"{prefix}_API_KEY")

    try:
        timeout = float(env.get(f"{prefix}_TIMEOUT", "60.0"))
        raw_retries = env.get(f"{prefix}_MAX_RETRIES")
        max_retries = int(raw_retries) if raw_retries else None
    except ValueError as exc:
        raise ConfigError(f"Invalid numeric configuration for {name.value}: {exc}") from exc

    if timeout < 1:
        raise ConfigError(f"{prefix}_TIMEOUT must be >= 1")
    if max_retries is not None and max_retries < 0:
        raise ConfigError(f"{prefix}_MAX_RETRIES must be >= 0")

    return ProviderConfig(
        api_key=api_key,
        base_url=env.get(f"{prefix}_BASE_URL") or None,
        timeout=timeout,
        max_retries=max_retries,
        default_model=env.get(f"{prefix}_DEFAULT_MODEL") or None,
        enabled=True,
    )


@dataclass(frozen=True)
class OrchestratorConfig:
    """Runtime configuration for the orchestrator."""

    providers: Dict[ProviderName, ProviderConfig]
    rate_limit_capacity: int
    rate_limit_refill_rate: float
    retry_max: int
    retry_base_delay: float
    retry_max_delay: float
    retry_backoff_factor: float
    strategy_timeout: float
    default_strategy: str
    cache_enabled: bool
    cache_ttl: Optional[float]
    metrics_backend: str
    metrics_port: Optional[int]
    log_level: str

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "OrchestratorConfig":
        """Build configuration from environment variables."""
        env = env or os.environ

        providers: Dict[ProviderName, ProviderConfig] = {}
        for name in ProviderName:
            provider = _provider_from_env(name, env)
            if provider is not None:
                providers[name] = provider
        if not providers:
            raise ConfigError("At least one provider must be enabled (set COLLAB_<PROVIDER>_ENABLED=true)")

        default_strategy = env.get("COLLAB_DEFAULT_STRATEGY", "sequential").strip().lower()

        try:
            rate_limit_capacity = int(env.get("COLLAB_RATE_LIMIT_CAPACITY", "100"))
            rate_limit_refill_rate = float(env.get("COLLAB_RATE_LIMIT_REFILL_RATE", "10.0"))
            retry_max = int(env.get("COLLAB_RETRY_MAX", "3"))
            retry_base_delay = float(env.get("COLLAB_RETRY_BASE_DELAY", "1.0"))
            retry_max_delay = float(env.get("COLLAB_RETRY_MAX_DELAY", "30.0"))
            retry_backoff_factor = float(env.get("COLLAB_RETRY_BACKOFF_FACTOR", "2.0"))
            strategy_timeout = float(env.get("COLLAB_STRATEGY_TIMEOUT", "60.0"))
            cache_enabled = _as_bool(env.get("COLLAB_CACHE_ENABLED", "false"))
            cache_ttl_raw = env.get("COLLAB_CACHE_TTL")
            cache_ttl = float(cache_ttl_raw) if cache_ttl_raw else 300.0
            metrics_backend = env.get("COLLAB_METRICS_BACKEND", "logging").strip().lower()
            metrics_port_raw = env.get("COLLAB_METRICS_PORT")
            metrics_port = int(metrics_port_raw) if metrics_port_raw else None
            log_level = env.get("COLLAB_LOG_LEVEL", "INFO").upper()
        except ValueError as exc:
            raise ConfigError(f"Invalid numeric configuration: {exc}") from exc

        if rate_limit_capacity < 1:
            raise ConfigError("COLLAB_RATE_LIMIT_CAPACITY must be >= 1")
        if rate_limit_refill_rate <= 0:
            raise ConfigError("COLLAB_RATE_LIMIT_REFILL_RATE must be > 0")
        if retry_max < 0:
            raise ConfigError("COLLAB_RETRY_MAX must be >= 0")
        if retry_base_delay < 0:
            raise ConfigError("COLLAB_RETRY_BASE_DELAY must be >= 0")
        if retry_max_delay < retry_base_delay:
            raise ConfigError("COLLAB_RETRY_MAX_DELAY must be >= COLLAB_RETRY_BASE_DELAY")
        if retry_backoff_factor < 1:
            raise ConfigError("COLLAB_RETRY_BACKOFF_FACTOR must be >= 1")
        if strategy_timeout <= 0:
            raise ConfigError("COLLAB_STRATEGY_TIMEOUT must be > 0")
        if default_strategy not in STRATEGY_NAMES:
            raise ConfigError(f"COLLAB_DEFAULT_STRATEGY must be one of {', '.join(STRATEGY_NAMES)}")
        if cache_ttl <= 0:
            raise ConfigError("COLLAB_CACHE_TTL must be > 0")
        if metrics_backend not in {"logging", "prometheus"}:
            raise ConfigError("COLLAB_METRICS_BACKEND must be 'logging' or 'prometheus'")
        if metrics_port is not None and metrics_port < 0:
            raise ConfigError("COLLAB_METRICS_PORT must be >= 0 when provided")

        return cls(
            providers=providers,
            rate_limit_capacity=rate_limit_capacity,
            rate_limit_refill_rate=rate_limit_refill_rate,
            retry_max=retry_max,
            retry_base_delay=retry_base_delay,
            retry_max_delay=retry_max_delay,
            retry_backoff_factor=retry_backoff_factor,
            strategy_timeout=strategy_timeout,
            default_strategy=default_strategy,
            cache_enabled=cache_enabled,
            cache_ttl=cache_ttl,
            metrics_backend=metrics_backend,
            metrics_port=metrics_port,
            log_level=log_level,
        )

    def provider_configs(self) -> Dict[ProviderName, ProviderConfig]:
        """Return the enabled provider configurations keyed by provider."""
        return dict(self.providers)

    def retry_policy(self) -> RetryPolicy:
        """Global backoff policy; a provider's own ``max_retries``, when set, overrides the attempt budget."""
        return RetryPolicy(
            max_retries=self.retry_max,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
            backoff_factor=self.retry_backoff_factor,
        )
