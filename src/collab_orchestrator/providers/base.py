"""Provider abstractions for LLM integrations."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from ..errors import ErrorCategory, ProviderError
from ..types import (
    AIRequest,
    AIResponse,
    HealthStatus,
    ProviderCapabilities,
    ProviderName,
    ProviderStats,
    ValidationIssue,
    ValidationResult,
    utc_now,
)


@dataclass(frozen=True)
class ProviderConfig:
    """Per-provider settings passed through to ``initialize``."""

    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = 60.0
    max_retries: Optional[int] = None
    default_model: Optional[str] = None
    enabled: bool = True
    options: Dict[str, Any] = field(default_factory=dict)


class ProviderAdapter(Protocol):
    """Protocol describing provider behaviour consumed by the manager."""

    name: ProviderName
    capabilities: ProviderCapabilities

    async def initialize(self, config: ProviderConfig) -> None:
        """Prepare clients; raise on invalid configuration."""

    async def generate_response(self, request: AIRequest) -> AIResponse:
        """Produce a model response for the given request."""

    def validate_request(self, request: AIRequest) -> ValidationResult:
        """Check the request against provider capabilities."""

    async def get_health_status(self) -> HealthStatus:
        """Probe provider availability; must report failures instead of raising."""

    def get_stats(self) -> ProviderStats:
        """Return adapter-local counters."""

    async def dispose(self) -> None:
        """Release clients."""

    def is_healthy(self) -> bool:
        """Cheap synchronous availability check."""


class BaseProvider(ABC):
    """Common adapter behaviour: config and request validation, health, local stats.

    Retry and rate limiting are applied by the provider manager, not here.
    """

    name: ProviderName
    capabilities: ProviderCapabilities
    requires_api_key = True

    def __init__(self) -> None:
        self.config = ProviderConfig()
        self._initialized = False
        self._initialized_at: Optional[float] = None
        self._stats = ProviderStats()
        self._logger = logging.getLogger(f"collab_orchestrator.providers.{self.name.value}")

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self, config: ProviderConfig) -> None:
        self._validate_config(config)
        self.config = config
        await self.initialize_provider()
        self._initialized = True
        self._initialized_at = time.monotonic()

    async def generate_response(self, request: AIRequest) -> AIResponse:
        if not self._initialized:
            raise ProviderError(
                code="not_initialized",
                message=f"Provider {self.name.value} is not initialized",
                category=ErrorCategory.INVALID_REQUEST,
            )

        validation = self.validate_request(request)
        if not validation.valid:
            raise ProviderError(
                code="invalid_request",
                message=f"Request validation failed: {validation.message}",
                category=ErrorCategory.INVALID_REQUEST,
                details={"fields": [issue.field for issue in validation.errors]},
            )

        start = time.perf_counter()
        self._stats.total_requests += 1
        try:
            response = await self.call_provider(request)
        except Exception:
            self._stats.failed_requests += 1
            self._stats.last_error_time = utc_now()
            raise
        latency = (time.perf_counter() - start) * 1000
        self._stats.successful_requests += 1
        self._stats.last_request_time = utc_now()
        count = self._stats.successful_requests
        self._stats.average_latency = (self._stats.average_latency * (count - 1) + latency) / count
        return response

    def validate_request(self, request: AIRequest) -> ValidationResult:
        errors: List[ValidationIssue] = []
        if not request.id or not request.id.strip():
            errors.append(
                ValidationIssue("id", "Request ID is required", "REQUIRED_FIELD", "non-empty string", request.id)
            )
        if not request.prompt or not request.prompt.strip():
            errors.append(
                ValidationIssue("prompt", "Prompt is required", "REQUIRED_FIELD", "non-empty string", request.prompt)
            )
        if request.model and request.model not in self.capabilities.models:
            errors.append(
                ValidationIssue(
                    "model",
                    f"Model '{request.model}' is not supported by {self.name.value}",
                    "INVALID_MODEL",
                    list(self.capabilities.models),
                    request.model,
                )
            )
        if request.max_tokens and request.max_tokens > self.capabilities.max_tokens:
            errors.append(
                ValidationIssue(
                    "max_tokens",
                    f"Max tokens {request.max_tokens} exceeds limit of {self.capabilities.max_tokens}",
                    "EXCEEDS_LIMIT",
                    f"<= {self.capabilities.max_tokens}",
                    request.max_tokens,
                )
            )
        return ValidationResult(valid=not errors, errors=tuple(errors))

    async def get_health_status(self) -> HealthStatus:
        if not self._initialized:
            return HealthStatus.unhealthy("NOT_INITIALIZED", f"Provider {self.name.value} is not initialized")
        start = time.perf_counter()
        try:
            await self.perform_health_check()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.warning("Health check failed for %s: %s", self.name.value, exc)
            return HealthStatus.unhealthy("HEALTH_CHECK_FAILED", str(exc))
        return HealthStatus(
            healthy=True,
            latency=(time.perf_counter() - start) * 1000,
            uptime=self._uptime(),
        )

    def get_stats(self) -> ProviderStats:
        return self._stats.copy()

    def reset_stats(self) -> None:
        self._stats = ProviderStats()

    async def dispose(self) -> None:
        try:
            await self.dispose_provider()
        finally:
            self._initialized = False
            self._initialized_at = None
            self.reset_stats()

    def is_healthy(self) -> bool:
        return self._initialized

    @abstractmethod
    async def call_provider(self, request: AIRequest) -> AIResponse:
        """Translate the request to the vendor API and back."""

    async def initialize_provider(self) -> None:
        return None

    async def dispose_provider(self) -> None:
        return None

    async def perform_health_check(self) -> None:
        return None

    def _validate_config(self, config: ProviderConfig) -> None:
        if self.requires_api_key and (not config.api_key or not config.api_key.strip()):
            raise ProviderError("invalid_config", "API key is required", category=ErrorCategory.AUTHENTICATION)
        if config.timeout < 1:
            raise ProviderError("invalid_config", "Timeout must be at least 1 second")
        if config.max_retries is not None and config.max_retries < 0:
            raise ProviderError("invalid_config", "Max retries must be non-negative")

    def _uptime(self) -> Optional[float]:
        if self._initialized_at is None:
            return None
        return time.monotonic() - self._initialized_at
