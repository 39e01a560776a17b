"""Unit tests for metrics collectors."""

from prometheus_client import CollectorRegistry

from collab_orchestrator.metrics import (
    LoggingMetricsCollector,
    MetricsEvent,
    PrometheusMetricsCollector,
)


def test_logging_metrics_collector_logs():
    logs = {}

    class _Logger:
        def info(self, name, extra=None):
            logs["name"] = name
            logs["extra"] = extra

    collector = LoggingMetricsCollector(logger=_Logger())
    collector.record(
        MetricsEvent(
            scope="provider",
            name="openai",
            request_id="req-1",
            status="success",
            duration_ms=12.5,
        )
    )

    assert logs["name"] == "orchestrator_metrics"
    assert logs["extra"]["metrics"]["status"] == "success"
    assert logs["extra"]["metrics"]["name"] == "openai"


def test_prometheus_metrics_collector_records_values():
    registry = CollectorRegistry()
    collector = PrometheusMetricsCollector(registry=registry)

    collector.record(
        MetricsEvent(
            scope="provider",
            name="openai",
            request_id="req-1",
            status="success",
            duration_ms=100.0,
        )
    )
    collector.record(
        MetricsEvent(
            scope="provider",
            name="deepseek",
            request_id="req-2",
            status="error",
            duration_ms=200.0,
            attempts=3,
            retryable=False,
            error_code="rate_limited",
        )
    )
    collector.record(
        MetricsEvent(
            scope="collaboration",
            name="parallel",
            request_id="req-3",
            status="success",
            duration_ms=300.0,
            attempts=2,
        )
    )

    success_total = registry.get_sample_value(
        "collab_events_total",
        labels={
            "scope": "provider",
            "name": "openai",
            "status": "success",
            "retryable": "unknown",
            "error_code": "none",
        },
    )
    assert success_total == 1.0

    error_total = registry.get_sample_value(
        "collab_events_total",
        labels={
            "scope": "provider",
            "name": "deepseek",
            "status": "error",
            "retryable": "false",
            "error_code": "rate_limited",
        },
    )
    assert error_total == 1.0

    duration_sum = registry.get_sample_value(
        "collab_duration_seconds_sum",
        labels={"scope": "collaboration", "name": "parallel", "status": "success"},
    )
    assert duration_sum == 0.3

    attempts_sum = registry.get_sample_value(
        "collab_attempts_sum",
        labels={"scope": "provider", "name": "deepseek", "status": "error"},
    )
    assert attempts_sum == 3.0

    responses_sum = registry.get_sample_value(
        "collab_attempts_sum",
        labels={"scope": "collaboration", "name": "parallel", "status": "success"},
    )
    assert responses_sum == 2.0
    assert collector.registry is registry


def test_prometheus_series_are_split_by_scope_and_count_tokens():
    registry = CollectorRegistry()
    collector = PrometheusMetricsCollector(registry=registry)

    collector.record(
        MetricsEvent(scope="provider", name="shared", request_id="r1", status="success", duration_ms=1.0, total_tokens=30)
    )
    collector.record(
        MetricsEvent(
            scope="collaboration",
            name="shared",
            request_id="r1",
            status="success",
            duration_ms=1.0,
            attempts=4,
            total_tokens=90,
        )
    )
    collector.record(MetricsEvent(scope="provider", name="shared", request_id="r2", status="error", duration_ms=1.0))

    provider_attempts = registry.get_sample_value(
        "collab_attempts_count", labels={"scope": "provider", "name": "shared", "status": "success"}
    )
    collaboration_attempts = registry.get_sample_value(
        "collab_attempts_sum", labels={"scope": "collaboration", "name": "shared", "status": "success"}
    )
    assert provider_attempts == 1.0
    assert collaboration_attempts == 4.0
    assert registry.get_sample_value("collab_tokens_total", labels={"scope": "provider", "name": "shared"}) == 30.0
    assert registry.get_sample_value("collab_tokens_total", labels={"scope": "collaboration", "name": "shared"}) == 90.0


def test_logging_metrics_collector_includes_tokens():
    logs = {}

    class _Logger:
        def info(self, name, extra=None):
            logs["extra"] = extra

    LoggingMetricsCollector(logger=_Logger()).record(
        MetricsEvent(scope="collaboration", name="parallel", request_id="r", status="success", duration_ms=1.23456, total_tokens=60)
    )

    assert logs["extra"]["metrics"]["total_tokens"] == 60
    assert logs["extra"]["metrics"]["duration_ms"] == 1.235
    assert logs["extra"]["metrics"]["scope"] == "collaboration"
