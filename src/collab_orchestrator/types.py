"""Core value types shared by the provider manager and collaboration strategies."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProviderName(str, Enum):
    """Closed set of providers the orchestrator knows about."""

    DEEPSEEK = "deepseek"
    OPENAI = "openai"
    O3 = "o3"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    LLMSTUDIO = "llmstudio"

    @classmethod
    def parse(cls, value: "str | ProviderName") -> "ProviderName":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown provider: {value}") from exc


class ProviderState(str, Enum):
    """Lifecycle of a provider inside the manager."""

    REGISTERED = "registered"
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"
    DISPOSED = "disposed"


CAPABILITY_FLAGS = (
    "supports_streaming",
    "supports_functions",
    "supports_vision",
    "supports_web_search",
)


@dataclass(frozen=True)
class ProviderCapabilities:
    """Static description of what a provider can do."""

    models: Tuple[str, ...]
    max_tokens: int
    supports_streaming: bool = False
    supports_functions: bool = False
    supports_vision: bool = False
    supports_web_search: bool = False
    languages: Tuple[str, ...] = ("en",)

    def has(self, flag: str) -> bool:
        if flag not in CAPABILITY_FLAGS:
            raise ValueError(f"Unknown capability flag: {flag}")
        return bool(getattr(self, flag))


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    @classmethod
    def sum(cls, usages: Iterable["TokenUsage"]) -> "TokenUsage":
        total = cls()
        for usage in usages:
            total = total + usage
        return total


@dataclass(frozen=True)
class AIRequest:
    """Immutable generation request; strategies derive new values instead of mutating."""

    id: str
    prompt: str
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    stop: Optional[Tuple[str, ...]] = None
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    def derive(self, **changes: Any) -> "AIRequest":
        return replace(self, **changes)

    def generation_options(self) -> Dict[str, Any]:
        """Return the optional generation parameters that were actually set."""
        options = {
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "top_p": self.top_p,
            "frequency_penalty": self.frequency_penalty,
            "presence_penalty": self.presence_penalty,
            "stop": list(self.stop) if self.stop else None,
        }
        return {key: value for key, value in options.items() if value is not None}


@dataclass(frozen=True)
class AIResponse:
    """Output of exactly one adapter invocation, or a synthesized strategy result."""

    id: str
    provider: str
    model: str
    content: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    latency: float = 0.0
    finish_reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    def with_metadata(self, **extra: Any) -> "AIResponse":
        merged = dict(self.metadata)
        merged.update(extra)
        return replace(self, metadata=merged)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ErrorDetail:
    code: str
    message: str
    timestamp: datetime = field(default_factory=utc_now)
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class HealthStatus:
    healthy: bool
    latency: Optional[float] = None
    uptime: Optional[float] = None
    last_error: Optional[ErrorDetail] = None

    @classmethod
    def unhealthy(cls, code: str, message: str) -> "HealthStatus":
        return cls(healthy=False, last_error=ErrorDetail(code=code, message=message))


@dataclass(frozen=True)
class ValidationIssue:
    field: str
    message: str
    code: str
    expected: Any = None
    actual: Any = None


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: Tuple[ValidationIssue, ...] = ()

    @property
    def message(self) -> str:
        return ", ".join(issue.message for issue in self.errors) or "Invalid request"


@dataclass
class ProviderStats:
    """Cumulative counters for one provider; copied before leaving the manager."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    retry_count: int = 0
    rate_limit_hits: int = 0
    average_latency: float = 0.0
    last_request_time: Optional[datetime] = None
    last_error_time: Optional[datetime] = None

    @property
    def error_count(self) -> int:
        return self.failed_requests

    def copy(self) -> "ProviderStats":
        return replace(self)


@dataclass(frozen=True)
class ProviderStatus:
    registered: bool
    initialized: bool
    healthy: bool


@dataclass
class CollaborationResult:
    """Outcome of one top-level collaboration call."""

    success: bool
    strategy: str
    responses: List[AIResponse] = field(default_factory=list)
    final_result: Optional[AIResponse] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def error(self) -> Optional[str]:
        return self.metadata.get("error")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "strategy": self.strategy,
            "responses": [response.to_dict() for response in self.responses],
            "final_result": self.final_result.to_dict() if self.final_result else None,
            "metadata": dict(self.metadata),
        }
