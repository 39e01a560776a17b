"""Metrics collection primitives for provider calls and collaborations."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Optional, Protocol

from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server

PROVIDER_SCOPE = "provider"
COLLABORATION_SCOPE = "collaboration"


@dataclass
class MetricsEvent:
    """Structured metrics payload.

    ``scope`` is ``"provider"`` for a single adapter call and ``"collaboration"``
    for a strategy run; ``name`` is the provider or strategy name. For a
    provider call ``attempts`` counts retries too, for a collaboration it is the
    number of responses gathered.
    """

    scope: str
    name: str
    request_id: str
    status: str
    duration_ms: float
    attempts: int = 1
    total_tokens: int = 0
    retryable: Optional[bool] = None
    error_code: Optional[str] = None


class MetricsCollector(Protocol):
    """Protocol for collecting metrics events."""

    def record(self, event: MetricsEvent) -> None:
        """Persist or emit the metrics event."""


class LoggingMetricsCollector(MetricsCollector):
    """Default metrics collector that logs structured events."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger("collab_orchestrator.metrics")

    def record(self, event: MetricsEvent) -> None:
        payload = asdict(event)
        payload["duration_ms"] = round(event.duration_ms, 3)
        self._logger.info("orchestrator_metrics", extra={"metrics": payload})


class PrometheusMetricsCollector(MetricsCollector):
    """Metrics collector backed by Prometheus client library.

    Every series carries both ``scope`` and ``name`` so a strategy and a
    provider that happen to share a name stay apart.
    """

    def __init__(
        self,
        *,
        port: Optional[int] = None,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        self._registry = registry or CollectorRegistry()
        self._events = Counter(
            "collab_events_total",
            "Provider call and collaboration outcomes",
            ["scope", "name", "status", "retryable", "error_code"],
            registry=self._registry,
        )
        self._duration = Histogram(
            "collab_duration_seconds",
            "Provider call and collaboration wall time",
            ["scope", "name", "status"],
            registry=self._registry,
        )
        self._attempts = Histogram(
            "collab_attempts",
            "Attempts per provider call, responses per collaboration",
            ["scope", "name", "status"],
            registry=self._registry,
            buckets=(1, 2, 3, 4, 5, 10),
        )
        self._tokens = Counter(
            "collab_tokens_total",
            "Tokens reported by providers",
            ["scope", "name"],
            registry=self._registry,
        )
        if port is not None:
            start_http_server(port, registry=self._registry)

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record(self, event: MetricsEvent) -> None:
        series = {"scope": event.scope, "name": event.name}
        retryable = "unknown" if event.retryable is None else str(bool(event.retryable)).lower()

        self._events.labels(
            status=event.status,
            retryable=retryable,
            error_code=event.error_code or "none",
            **series,
        ).inc()
        self._duration.labels(status=event.status, **series).observe(max(event.duration_ms / 1000.0, 0.0))
        self._attempts.labels(status=event.status, **series).observe(max(float(event.attempts), 0.0))
        if event.total_tokens > 0:
            self._tokens.labels(**series).inc(event.total_tokens)
