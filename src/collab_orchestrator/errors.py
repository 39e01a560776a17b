"""Exception hierarchy for the orchestration engine."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterable, Optional


class ErrorCategory(str, Enum):
    """Structured classification used to decide retryability."""

    TIMEOUT = "timeout"
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    AUTHENTICATION = "authentication"
    INVALID_REQUEST = "invalid_request"
    UNKNOWN = "unknown"


TRANSIENT_CATEGORIES = frozenset(
    {
        ErrorCategory.TIMEOUT,
        ErrorCategory.NETWORK,
        ErrorCategory.RATE_LIMIT,
        ErrorCategory.SERVER_ERROR,
    }
)


class OrchestratorError(Exception):
    """Base class for errors raised by the orchestration core."""


class ProviderError(OrchestratorError):
    """Standard error raised by provider adapters."""

    def __init__(
        self,
        code: str,
        message: str,
        retryable: bool = False,
        *,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable
        self.category = category
        self.details = details or {}


class ProviderNotRegisteredError(OrchestratorError):
    def __init__(self, provider: str):
        super().__init__(f"Provider {provider} is not registered")
        self.provider = provider


class ProviderNotInitializedError(OrchestratorError):
    def __init__(self, provider: str):
        super().__init__(f"Provider {provider} is not initialized")
        self.provider = provider


class ProviderInitializationError(OrchestratorError):
    def __init__(self, provider: str, reason: str):
        super().__init__(f"Failed to initialize {provider} provider: {reason}")
        self.provider = provider
        self.reason = reason


class ProviderDisposalError(OrchestratorError):
    def __init__(self, provider: str, reason: str):
        super().__init__(f"Failed to dispose {provider} provider: {reason}")
        self.provider = provider
        self.reason = reason


class ProviderRequestError(ProviderError):
    """Adapter failure wrapped with the name of the provider that raised it."""

    def __init__(self, provider: str, cause: BaseException):
        if isinstance(cause, ProviderError):
            code, retryable, category, details = cause.code, cause.retryable, cause.category, cause.details
        else:
            code, retryable, category, details = "provider_error", False, ErrorCategory.UNKNOWN, {}
        super().__init__(
            code,
            f"Request execution failed for {provider}: {cause}",
            retryable,
            category=category,
            details=details,
        )
        self.provider = provider
        self.cause = cause


class RateLimitExceededError(ProviderError):
    def __init__(self, provider: str, retry_after_ms: Optional[int]):
        super().__init__(
            "rate_limited",
            f"Rate limit exceeded for {provider}. Retry after: {retry_after_ms}ms",
            True,
            category=ErrorCategory.RATE_LIMIT,
            details={"retry_after_ms": retry_after_ms},
        )
        self.provider = provider
        self.retry_after_ms = retry_after_ms


class AggregateProviderError(OrchestratorError):
    """Raised after a batch operation settles with one or more failures."""

    def __init__(self, operation: str, errors: Iterable[BaseException]):
        self.errors = list(errors)
        joined = "; ".join(str(error) for error in self.errors)
        super().__init__(f"Failed to {operation}: {joined}")
        self.operation = operation


class CollaborationInputError(OrchestratorError, ValueError):
    """Invalid collaboration input: no providers given, none available, or bad config."""
