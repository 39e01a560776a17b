"""OpenAI-compatible provider adapter (OpenAI, o3, DeepSeek, LM Studio)."""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    BadRequestError,
    PermissionDeniedError,
    RateLimitError,
)

from ..errors import ErrorCategory, ProviderError
from ..types import AIRequest, AIResponse, ProviderCapabilities, ProviderName, TokenUsage
from .base import BaseProvider

_LANGUAGES = ("en", "ja", "zh", "es", "fr", "de", "ko")

PROVIDER_CAPABILITIES: Dict[ProviderName, ProviderCapabilities] = {
    ProviderName.OPENAI: ProviderCapabilities(
        models=("gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-4", "gpt-3.5-turbo"),
        max_tokens=128000,
        supports_streaming=True,
        supports_functions=True,
        supports_vision=True,
        languages=_LANGUAGES,
    ),
    ProviderName.O3: ProviderCapabilities(
        models=("o3-mini", "o3"),
        max_tokens=128000,
        supports_streaming=True,
        languages=_LANGUAGES,
    ),
    ProviderName.DEEPSEEK: ProviderCapabilities(
        models=("deepseek-chat", "deepseek-coder", "deepseek-reasoner"),
        max_tokens=32768,
        supports_streaming=True,
        languages=_LANGUAGES,
    ),
    ProviderName.LLMSTUDIO: ProviderCapabilities(
        models=("qwen/qwen2.5-coder-32b", "llama3.2-3b", "phi-3.5", "codellama", "mistral-7b"),
        max_tokens=32768,
        supports_streaming=True,
        languages=_LANGUAGES,
    ),
}

DEFAULT_BASE_URLS: Dict[ProviderName, Optional[str]] = {
    ProviderName.OPENAI: None,
    ProviderName.O3: None,
    ProviderName.DEEPSEEK: "https://api.deepseek.com/v1",
    ProviderName.LLMSTUDIO: "http://localhost:1234/v1",
}


def _categorize(exc: BaseException) -> ErrorCategory:
    if isinstance(exc, APITimeoutError):
        return ErrorCategory.TIMEOUT
    if isinstance(exc, APIConnectionError):
        return ErrorCategory.NETWORK
    if isinstance(exc, RateLimitError):
        return ErrorCategory.RATE_LIMIT
    if isinstance(exc, (AuthenticationError, PermissionDeniedError)):
        return ErrorCategory.AUTHENTICATION
    if isinstance(exc, BadRequestError):
        return ErrorCategory.INVALID_REQUEST
    status = _status_of(exc)
    if status is not None and status >= 500:
        return ErrorCategory.SERVER_ERROR
    return ErrorCategory.UNKNOWN


def _status_of(exc: BaseException) -> Optional[int]:
    if isinstance(exc, APIStatusError):
        return exc.status_code
    status = getattr(exc, "status", None)
    return status if isinstance(status, int) else None


def _is_retryable(category: ErrorCategory) -> bool:
    return category in {
        ErrorCategory.TIMEOUT,
        ErrorCategory.NETWORK,
        ErrorCategory.RATE_LIMIT,
        ErrorCategory.SERVER_ERROR,
    }


class OpenAICompatibleProvider(BaseProvider):
    """Adapter for the Chat Completions API and servers that mimic it."""

    def __init__(self, name: ProviderName = ProviderName.OPENAI) -> None:
        if name not in PROVIDER_CAPABILITIES:
            raise ValueError(f"{name.value} is not served by the OpenAI-compatible adapter")
        self.name = name
        self.capabilities = PROVIDER_CAPABILITIES[name]
        self.requires_api_key = name is not ProviderName.LLMSTUDIO
        super().__init__()
        self._client: Optional[AsyncOpenAI] = None

    async def initialize_provider(self) -> None:
        self._client = AsyncOpenAI(
            api_key=self.config.api_key or "not-needed",
            base_url=self.config.base_url or DEFAULT_BASE_URLS[self.name],
            timeout=self.config.timeout,
            # Retries are owned by the provider manager.
            max_retries=0,
        )

    def _require_client(self) -> AsyncOpenAI:
        if self._client is None:
            raise ProviderError("not_initialized", f"{self.name.value} client is not initialized")
        return self._client

    async def call_provider(self, request: AIRequest) -> AIResponse:
        client = self._require_client()
        model = request.model or self.config.default_model or self.capabilities.models[0]
        options: Dict[str, Any] = dict(self.config.options)
        options.update(request.generation_options())

        start = time.perf_counter()
        try:
            response = await client.chat.completions.create(
                model=model,
                messages=self._build_messages(request),
                **options,
            )
        except APIError as exc:
            category = _categorize(exc)
            raise ProviderError(
                code=getattr(exc, "code", None) or f"{self.name.value}_error",
                message=str(exc),
                retryable=_is_retryable(category),
                category=category,
                details={"status_code": _status_of(exc)},
            ) from exc

        latency = (time.perf_counter() - start) * 1000
        choice = response.choices[0]
        content = getattr(choice.message, "content", "") or ""
        usage = TokenUsage()
        if response.usage:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )

        return AIResponse(
            id=response.id or request.id,
            provider=self.name.value,
            model=response.model or model,
            content=content,
            usage=usage,
            latency=latency,
            finish_reason=getattr(choice, "finish_reason", None),
            metadata={"request_id": request.id},
        )

    async def perform_health_check(self) -> None:
        await self._require_client().models.list()

    async def dispose_provider(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await client.close()

    def _build_messages(self, request: AIRequest) -> List[Dict[str, str]]:
        messages: List[Dict[str, str]] = []
        system_prompt = request.metadata.get("system_prompt")
        if isinstance(system_prompt, str) and system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": request.prompt})
        return messages
