"""CLI entry point for the collaboration orchestrator."""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, Dict, List, Optional

import typer

from .config import ConfigError, OrchestratorConfig
from .errors import CollaborationInputError, OrchestratorError
from .runtime import OrchestratorRuntime, perform_healthcheck
from .strategies import STRATEGIES
from .strategy_manager import STRATEGY_INFO
from .types import AIRequest, CollaborationResult

app = typer.Typer(help="Coordinate multiple AI providers under collaboration strategies.")


def _load_config() -> OrchestratorConfig:
    try:
        return OrchestratorConfig.from_env()
    except ConfigError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc


def _parse_options(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        options = json.loads(raw)
    except json.JSONDecodeError as exc:
        typer.secho(f"Invalid --options JSON: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc
    if not isinstance(options, dict):
        typer.secho("--options must be a JSON object", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)
    return options


@app.command()
def collaborate(
    prompt: str = typer.Argument(..., help="Prompt to send to the providers."),
    strategy: Optional[str] = typer.Option(None, "--strategy", "-s", help="Collaboration strategy."),
    provider: List[str] = typer.Option([], "--provider", "-p", help="Provider to include; repeatable."),
    model: Optional[str] = typer.Option(None, help="Model override."),
    max_tokens: Optional[int] = typer.Option(None, help="Maximum tokens per response."),
    temperature: Optional[float] = typer.Option(None, help="Sampling temperature."),
    options: Optional[str] = typer.Option(None, help="Strategy options as a JSON object."),
    as_json: bool = typer.Option(False, "--json", help="Print the full result as JSON."),
) -> None:
    """Run one collaboration and print the final answer."""
    config = _load_config()
    strategy_options = _parse_options(options)
    request = AIRequest(
        id=uuid.uuid4().hex,
        prompt=prompt,
        model=model,
        max_tokens=max_tokens,
        temperature=temperature,
    )
    runtime = OrchestratorRuntime(config)

    async def _runner() -> CollaborationResult:
        await runtime.start()
        try:
            return await runtime.collaborate(request, strategy, list(provider) or None, strategy_options)
        finally:
            await runtime.stop()

    try:
        result = asyncio.run(_runner())
    except CollaborationInputError as exc:
        typer.secho(f"Invalid collaboration request: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc
    except OrchestratorError as exc:
        typer.secho(f"Collaboration failed: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2, default=str))
    elif result.final_result is not None:
        typer.echo(result.final_result.content)

    if not result.success:
        typer.secho(f"Collaboration failed: {result.error}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


@app.command()
def healthcheck() -> None:
    """Initialize the configured providers and report whether any is healthy."""
    config = _load_config()

    async def _runner() -> bool:
        return await perform_healthcheck(config)

    healthy = asyncio.run(_runner())
    if not healthy:
        typer.secho("Orchestrator is unhealthy", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.secho("Orchestrator is healthy", fg=typer.colors.GREEN)


@app.command()
def status() -> None:
    """Show lifecycle state and health for every configured provider."""
    config = _load_config()
    runtime = OrchestratorRuntime(config)

    async def _runner():
        await runtime.start()
        try:
            return runtime.status(), await runtime.health()
        finally:
            await runtime.stop()

    try:
        lifecycle, statuses = asyncio.run(_runner())
    except OrchestratorError as exc:
        typer.secho(f"Status check failed: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    for name, health in statuses.items():
        state = "initialized" if name in lifecycle and lifecycle[name].initialized else "not initialized"
        if health.healthy:
            typer.secho(f"{name.value} ({state}): healthy", fg=typer.colors.GREEN)
        else:
            reason = health.last_error.message if health.last_error else "unknown"
            typer.secho(f"{name.value} ({state}): unhealthy ({reason})", fg=typer.colors.RED)


@app.command()
def strategies() -> None:
    """List the available collaboration strategies."""
    for name in STRATEGIES:
        info = STRATEGY_INFO[name]
        typer.echo(f"{name}: {info.description} (min providers: {info.min_providers})")


def main() -> None:
    """Entry point for console script."""
    app()


if __name__ == "__main__":
    main()
