"""Tests for Collab Orchestrator configuration handling."""

import pytest

from collab_orchestrator.config import ConfigError, OrchestratorConfig
from collab_orchestrator.types import ProviderName


def _baseline_env(**overrides):
    env = {
        "COLLAB_OPENAI_ENABLED": "true",
        "COLLAB_OPENAI_API_KEY": "test-key",
    }
    env.update(overrides)
    return env


def test_config_from_env_with_defaults():
    """A single enabled provider produces a valid configuration."""
    config = OrchestratorConfig.from_env(_baseline_env())

    assert list(config.providers) == [ProviderName.OPENAI]
    provider = config.providers[ProviderName.OPENAI]
    assert provider.api_key == "test-key"
    assert provider.base_url is None
    assert provider.timeout == 60.0
    assert provider.max_retries is None
    assert config.rate_limit_capacity == 100
    assert config.rate_limit_refill_rate == 10.0
    assert config.default_strategy == "sequential"
    assert config.strategy_timeout == 60.0
    assert config.cache_enabled is False
    assert config.cache_ttl == 300.0
    assert config.metrics_backend == "logging"
    assert config.metrics_port is None
    assert config.log_level == "INFO"

    policy = config.retry_policy()
    assert policy.max_retries == 3
    assert policy.base_delay == 1.0
    assert policy.max_delay == 30.0


def test_config_from_env_overrides():
    """Custom environment values should override defaults."""
    config = OrchestratorConfig.from_env(
        _baseline_env(
            COLLAB_DEEPSEEK_ENABLED="yes",
            COLLAB_DEEPSEEK_API_KEY="ds-key",
            COLLAB_DEEPSEEK_BASE_URL="https://deepseek.internal/v1",
            COLLAB_DEEPSEEK_TIMEOUT="15",
            COLLAB_DEEPSEEK_MAX_RETRIES="1",
            COLLAB_DEEPSEEK_DEFAULT_MODEL="deepseek-chat",
            COLLAB_LLMSTUDIO_ENABLED="1",
            COLLAB_RATE_LIMIT_CAPACITY="5",
            COLLAB_RATE_LIMIT_REFILL_RATE="0.5",
            COLLAB_RETRY_MAX="4",
            COLLAB_RETRY_BASE_DELAY="0.25",
            COLLAB_RETRY_MAX_DELAY="8",
            COLLAB_RETRY_BACKOFF_FACTOR="3",
            COLLAB_STRATEGY_TIMEOUT="90",
            COLLAB_DEFAULT_STRATEGY="Consensus",
            COLLAB_CACHE_ENABLED="on",
            COLLAB_CACHE_TTL="120",
            COLLAB_METRICS_BACKEND="prometheus",
            COLLAB_METRICS_PORT="9100",
            COLLAB_LOG_LEVEL="debug",
        )
    )

    assert set(config.providers) == {ProviderName.OPENAI, ProviderName.DEEPSEEK, ProviderName.LLMSTUDIO}
    deepseek = config.providers[ProviderName.DEEPSEEK]
    assert deepseek.base_url == "https://deepseek.internal/v1"
    assert deepseek.timeout == 15.0
    assert deepseek.max_retries == 1
    assert deepseek.default_model == "deepseek-chat"
    assert config.providers[ProviderName.LLMSTUDIO].api_key is None
    assert config.rate_limit_capacity == 5
    assert config.rate_limit_refill_rate == pytest.approx(0.5)
    assert config.retry_policy().backoff_factor == 3.0
    assert config.retry_policy().max_retries == 4
    assert config.providers[ProviderName.OPENAI].max_retries is None
    assert config.strategy_timeout == 90.0
    assert config.default_strategy == "consensus"
    assert config.cache_enabled is True
    assert config.cache_ttl == 120.0
    assert config.metrics_backend == "prometheus"
    assert config.metrics_port == 9100
    assert config.log_level == "DEBUG"
    assert config.provider_configs() == config.providers


def test_config_missing_api_key():
    """Enabled providers other than LM Studio need an API key."""
    with pytest.raises(ConfigError) as exc:
        OrchestratorConfig.from_env(_baseline_env(COLLAB_DEEPSEEK_ENABLED="true"))

    assert "COLLAB_DEEPSEEK_API_KEY" in str(exc.value)


def test_config_requires_an_enabled_provider():
    with pytest.raises(ConfigError) as exc:
        OrchestratorConfig.from_env({"COLLAB_OPENAI_ENABLED": "false"})

    assert "At least one provider" in str(exc.value)


@pytest.mark.parametrize(
    "env_key, value",
    [
        ("COLLAB_RATE_LIMIT_CAPACITY", "0"),
        ("COLLAB_RATE_LIMIT_REFILL_RATE", "0"),
        ("COLLAB_RETRY_MAX", "-1"),
        ("COLLAB_RETRY_BACKOFF_FACTOR", "0.5"),
        ("COLLAB_STRATEGY_TIMEOUT", "0"),
        ("COLLAB_DEFAULT_STRATEGY", "magic"),
        ("COLLAB_CACHE_TTL", "-5"),
        ("COLLAB_METRICS_BACKEND", "statsd"),
        ("COLLAB_OPENAI_TIMEOUT", "0.5"),
    ],
)
def test_config_validation_bounds(env_key, value):
    """Invalid bounds should trigger ConfigError naming the variable."""
    with pytest.raises(ConfigError) as exc:
        OrchestratorConfig.from_env(_baseline_env(**{env_key: value}))

    assert env_key in str(exc.value)


def test_config_rejects_non_numeric_values():
    with pytest.raises(ConfigError) as exc:
        OrchestratorConfig.from_env(_baseline_env(COLLAB_RETRY_MAX="many"))

    assert "Invalid numeric configuration" in str(exc.value)
