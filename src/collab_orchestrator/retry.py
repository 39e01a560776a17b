"""Bounded exponential-backoff retry around async operations."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from .errors import TRANSIENT_CATEGORIES, ErrorCategory, ProviderError

LOGGER = logging.getLogger("collab_orchestrator.retry")

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]
RetryHook = Callable[[int, BaseException, float], None]

TRANSIENT_MARKERS = (
    "ECONNRESET",
    "ECONNREFUSED",
    "ETIMEDOUT",
    "ENOTFOUND",
    "NETWORK_ERROR",
    "RATE_LIMITED",
    "TEMPORARY_ERROR",
    "Temporary error",
    "Retryable error",
    "Timeout error",
)


def classify_error(error: BaseException) -> ErrorCategory:
    """Map an exception onto a structured error category."""
    if isinstance(error, ProviderError) and error.category is not ErrorCategory.UNKNOWN:
        return error.category
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return ErrorCategory.TIMEOUT
    if isinstance(error, (ConnectionError, httpx.NetworkError)):
        return ErrorCategory.NETWORK
    return ErrorCategory.UNKNOWN


def is_transient_error(error: BaseException) -> bool:
    """Default retry predicate."""
    if isinstance(error, ProviderError) and error.retryable:
        return True
    if classify_error(error) in TRANSIENT_CATEGORIES:
        return True
    text = f"{type(error).__name__} {error}"
    return any(marker in text for marker in TRANSIENT_MARKERS)


def get_retry_delay(attempt: int, base_delay: float, max_delay: float, backoff_factor: float) -> float:
    """Delay before retry ``attempt`` (1-indexed), clamped to [base_delay, max_delay]."""
    exponential = base_delay * (backoff_factor ** (attempt - 1))
    return min(max(exponential, base_delay), max_delay)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings; delays are in seconds."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    retry_condition: Callable[[BaseException], bool] = is_transient_error

    def delay_for(self, attempt: int) -> float:
        return get_retry_delay(attempt, self.base_delay, self.max_delay, self.backoff_factor)


DEFAULT_RETRY_POLICY = RetryPolicy()


class RetryExecutor:
    """Stateless retry combinator; safe to share between concurrent tasks."""

    def __init__(self, *, sleep: SleepFn = asyncio.sleep) -> None:
        self._sleep = sleep

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: Optional[RetryPolicy] = None,
        *,
        on_retry: Optional[RetryHook] = None,
    ) -> T:
        policy = policy or DEFAULT_RETRY_POLICY
        attempt = 0
        while True:
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if attempt >= policy.max_retries or not policy.retry_condition(exc):
                    raise
                delay = policy.delay_for(attempt + 1)
                LOGGER.warning(
                    "Retrying after error: %s (attempt=%s/%s, delay=%.3fs)",
                    exc,
                    attempt + 1,
                    policy.max_retries,
                    delay,
                )
                if on_retry is not None:
                    on_retry(attempt + 1, exc, delay)
                await self._sleep(delay)
                attempt += 1

    get_retry_delay = staticmethod(get_retry_delay)
