"""CLI command tests for Collab Orchestrator."""

import json

from typer.testing import CliRunner

from collab_orchestrator.cli import app
from collab_orchestrator.config import ConfigError
from collab_orchestrator.errors import CollaborationInputError
from collab_orchestrator.manager import ProviderManager
from collab_orchestrator.runtime import OrchestratorRuntime
from collab_orchestrator.types import AIResponse, CollaborationResult, HealthStatus, ProviderName, ProviderStatus


def _baseline_env():
    return {
        "COLLAB_OPENAI_ENABLED": "true",
        "COLLAB_OPENAI_API_KEY": "test-key",
    }


def _fake_runtime(calls, result=None, error=None):
    class FakeRuntime:
        def __init__(self, config):
            calls.append(("init", config.default_strategy))

        async def start(self):
            calls.append(("start",))

        async def stop(self):
            calls.append(("stop",))

        async def collaborate(self, request, strategy=None, providers=None, options=None):
            calls.append(("collaborate", request.prompt, strategy, providers, options))
            if error is not None:
                raise error
            return result

        async def health(self):
            return {
                ProviderName.OPENAI: HealthStatus(healthy=True),
                ProviderName.DEEPSEEK: HealthStatus.unhealthy("HEALTH_CHECK_FAILED", "connection refused"),
            }

        def status(self):
            return {
                ProviderName.OPENAI: ProviderStatus(registered=True, initialized=True, healthy=True),
                ProviderName.DEEPSEEK: ProviderStatus(registered=True, initialized=False, healthy=False),
            }

    return FakeRuntime


def _result(success=True):
    final = AIResponse(id="final", provider="parallel_aggregated", model="m", content="the answer")
    metadata = {} if success else {"error": "All providers failed"}
    return CollaborationResult(
        success=success,
        strategy="parallel",
        responses=[final],
        final_result=final if success else None,
        metadata=metadata,
    )


def test_cli_collaborate_prints_final_answer(monkeypatch):
    """`collab-orchestrator collaborate` should run one collaboration through the runtime."""
    runner = CliRunner()
    calls = []
    monkeypatch.setattr("collab_orchestrator.cli.OrchestratorRuntime", _fake_runtime(calls, _result()))

    result = runner.invoke(
        app,
        ["collaborate", "What is 2+2?", "--strategy", "parallel", "-p", "openai", "-p", "deepseek"],
        env=_baseline_env(),
    )

    assert result.exit_code == 0
    assert "the answer" in result.stdout
    assert calls[0] == ("init", "sequential")
    assert calls[1] == ("start",)
    assert calls[2] == ("collaborate", "What is 2+2?", "parallel", ["openai", "deepseek"], {})
    assert calls[-1] == ("stop",)


def test_cli_collaborate_json_output(monkeypatch):
    runner = CliRunner()
    monkeypatch.setattr("collab_orchestrator.cli.OrchestratorRuntime", _fake_runtime([], _result()))

    result = runner.invoke(app, ["collaborate", "hi", "--json"], env=_baseline_env())

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["success"] is True
    assert payload["final_result"]["content"] == "the answer"


def test_cli_collaborate_passes_options(monkeypatch):
    runner = CliRunner()
    calls = []
    monkeypatch.setattr("collab_orchestrator.cli.OrchestratorRuntime", _fake_runtime(calls, _result()))

    result = runner.invoke(
        app,
        ["collaborate", "hi", "--options", '{"aggregation_method": "vote"}'],
        env=_baseline_env(),
    )

    assert result.exit_code == 0
    assert calls[2][4] == {"aggregation_method": "vote"}


def test_cli_collaborate_rejects_bad_options(monkeypatch):
    runner = CliRunner()
    monkeypatch.setattr("collab_orchestrator.cli.OrchestratorRuntime", _fake_runtime([], _result()))

    result = runner.invoke(app, ["collaborate", "hi", "--options", "[1, 2]"], env=_baseline_env())

    assert result.exit_code == 2


def test_cli_collaborate_failure_exits_non_zero(monkeypatch):
    runner = CliRunner()
    monkeypatch.setattr("collab_orchestrator.cli.OrchestratorRuntime", _fake_runtime([], _result(success=False)))

    result = runner.invoke(app, ["collaborate", "hi"], env=_baseline_env())

    assert result.exit_code == 1
    assert "all providers failed" in result.output.lower()


def test_cli_collaborate_input_error_exits_two(monkeypatch):
    runner = CliRunner()
    calls = []
    error = CollaborationInputError("No available providers found")
    monkeypatch.setattr("collab_orchestrator.cli.OrchestratorRuntime", _fake_runtime(calls, error=error))

    result = runner.invoke(app, ["collaborate", "hi"], env=_baseline_env())

    assert result.exit_code == 2
    assert "no available providers" in result.output.lower()
    assert calls[-1] == ("stop",)


def test_cli_healthcheck(monkeypatch):
    """`collab-orchestrator healthcheck` should report status based on runtime check."""
    runner = CliRunner()

    async def fake_healthcheck(config):
        return True

    monkeypatch.setattr("collab_orchestrator.cli.perform_healthcheck", fake_healthcheck)

    result = runner.invoke(app, ["healthcheck"], env=_baseline_env())

    assert result.exit_code == 0
    assert "healthy" in result.stdout.lower()


def test_cli_healthcheck_failure(monkeypatch):
    """Healthcheck failures should exit non-zero."""
    runner = CliRunner()

    async def _failing_healthcheck(config):
        return False

    monkeypatch.setattr("collab_orchestrator.cli.perform_healthcheck", _failing_healthcheck)

    result = runner.invoke(app, ["healthcheck"], env=_baseline_env())

    assert result.exit_code == 1
    assert "unhealthy" in result.stdout.lower()


def test_cli_configuration_error(monkeypatch):
    """Configuration errors should surface with exit code 2."""
    runner = CliRunner()

    def _raise_config_error():
        raise ConfigError("bad config")

    monkeypatch.setattr(
        "collab_orchestrator.cli.OrchestratorConfig.from_env",
        classmethod(lambda cls: _raise_config_error()),
    )

    result = runner.invoke(app, ["healthcheck"])

    assert result.exit_code == 2
    assert "configuration error" in result.output.lower()


def test_cli_status_lists_provider_health(monkeypatch):
    runner = CliRunner()
    monkeypatch.setattr("collab_orchestrator.cli.OrchestratorRuntime", _fake_runtime([]))

    result = runner.invoke(app, ["status"], env=_baseline_env())

    assert result.exit_code == 0
    assert "openai (initialized): healthy" in result.stdout
    assert "deepseek (not initialized): unhealthy (connection refused)" in result.stdout


def test_cli_strategies_lists_all_strategies():
    runner = CliRunner()

    result = runner.invoke(app, ["strategies"])

    assert result.exit_code == 0
    for name in ("sequential", "parallel", "consensus", "iterative"):
        assert f"{name}:" in result.stdout


def test_cli_collaborate_unknown_provider_exits_two(monkeypatch, stub_provider):
    runner = CliRunner()
    monkeypatch.setattr(
        "collab_orchestrator.cli.OrchestratorRuntime",
        lambda config: OrchestratorRuntime(config, manager=ProviderManager([stub_provider("openai")])),
    )

    result = runner.invoke(app, ["collaborate", "hi", "-p", "bogus"], env=_baseline_env())

    assert result.exit_code == 2
    assert "unknown provider: bogus" in result.output.lower()
