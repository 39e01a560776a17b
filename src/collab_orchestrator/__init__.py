"""Collab Orchestrator - coordinate multiple AI providers under collaboration strategies."""

from .config import ConfigError, OrchestratorConfig  # noqa: F401
from .manager import ProviderManager  # noqa: F401
from .runtime import OrchestratorRuntime  # noqa: F401
from .strategy_manager import StrategyManager  # noqa: F401
from .types import AIRequest, AIResponse, CollaborationResult, ProviderName  # noqa: F401

__all__ = [
    "AIRequest",
    "AIResponse",
    "CollaborationResult",
    "ConfigError",
    "OrchestratorConfig",
    "OrchestratorRuntime",
    "ProviderManager",
    "ProviderName",
    "StrategyManager",
    "__version__",
]

__version__ = "0.1.0"
