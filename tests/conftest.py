"""Shared test fixtures for Collab Orchestrator."""

import asyncio
import sys
from pathlib import Path

import pytest

# Ensure the source directory is importable without installing the package.
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from collab_orchestrator.manager import ProviderManager  # noqa: E402
from collab_orchestrator.providers.base import BaseProvider, ProviderConfig  # noqa: E402
from collab_orchestrator.retry import RetryExecutor, RetryPolicy  # noqa: E402
from collab_orchestrator.types import (  # noqa: E402
    AIResponse,
    ProviderCapabilities,
    ProviderName,
    TokenUsage,
)


class StubProvider(BaseProvider):
    """Scripted adapter: replies are consumed in order, then ``default`` repeats.

    A reply may be a string, an ``AIResponse``, an exception to raise, or a
    callable receiving the request.
    """

    requires_api_key = False

    def __init__(
        self,
        name,
        replies=None,
        *,
        default="ok",
        finish_reason="stop",
        delay=0.0,
        models=("stub-model",),
        fail_init=False,
        fail_dispose=False,
    ):
        self.name = ProviderName.parse(name)
        self.capabilities = ProviderCapabilities(models=tuple(models), max_tokens=4096, supports_streaming=True)
        super().__init__()
        self.replies = list(replies or [])
        self.default = default
        self.finish_reason = finish_reason
        self.delay = delay
        self.fail_init = fail_init
        self.fail_dispose = fail_dispose
        self.calls = []
        self.init_calls = 0

    async def initialize_provider(self):
        self.init_calls += 1
        if self.fail_init:
            raise RuntimeError(f"{self.name.value} init boom")

    async def dispose_provider(self):
        if self.fail_dispose:
            raise RuntimeError(f"{self.name.value} dispose boom")

    async def call_provider(self, request):
        self.calls.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = reply(request)
        if isinstance(reply, AIResponse):
            return reply
        return AIResponse(
            id=f"{self.name.value}-{len(self.calls)}",
            provider=self.name.value,
            model="stub-model",
            content=reply,
            usage=TokenUsage(prompt_tokens=10, completion_tokens=20, total_tokens=30),
            latency=5.0,
            finish_reason=self.finish_reason,
        )


class RecordingMetrics:
    def __init__(self):
        self.events = []

    def record(self, event):
        self.events.append(event)


async def _no_sleep(delay):
    return None


@pytest.fixture
def stub_provider():
    return StubProvider


@pytest.fixture
def make_manager():
    """Build a manager around stub adapters and initialize every one that can be."""

    async def _factory(*adapters, max_retries=0, initialize=True, **kwargs):
        kwargs.setdefault("retry_policy", RetryPolicy(max_retries=max_retries, base_delay=0.0, max_delay=0.0))
        kwargs.setdefault("metrics", RecordingMetrics())
        manager = ProviderManager(
            adapters,
            retry_executor=RetryExecutor(sleep=_no_sleep),
            **kwargs,
        )
        if initialize:
            for adapter in adapters:
                if not adapter.fail_init:
                    await manager.initialize_provider(adapter.name, ProviderConfig(max_retries=max_retries))
        return manager

    return _factory
