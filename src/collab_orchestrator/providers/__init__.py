"""Provider registry exports."""

from ..errors import ProviderError
from ..types import ProviderName
from .base import BaseProvider, ProviderAdapter, ProviderConfig
from .openai import PROVIDER_CAPABILITIES, OpenAICompatibleProvider


def create_adapter(name: "ProviderName | str") -> BaseProvider:
    """Instantiate the adapter that serves ``name``."""
    provider = ProviderName.parse(name)
    if provider in PROVIDER_CAPABILITIES:
        return OpenAICompatibleProvider(provider)
    raise ValueError(f"No adapter available for provider: {provider.value}")


__all__ = [
    "BaseProvider",
    "OpenAICompatibleProvider",
    "PROVIDER_CAPABILITIES",
    "ProviderAdapter",
    "ProviderConfig",
    "ProviderError",
    "create_adapter",
]
