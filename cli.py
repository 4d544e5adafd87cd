#!/usr/bin/env python
"""CLI entry point for aichain."""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from aichain import __version__
from aichain import config as settings
from aichain.auth import resolve
from aichain.context import Context, Message, MessageRole
from aichain.errors import (
    AuthError,
    ConfigError,
    ParseError,
    TransformError,
    UnknownProviderError,
)
from aichain.loader import load_pipelines_config
from aichain.pipeline import (
    CircuitBreak,
    ContinueOnError,
    FailFast,
    Pipeline,
    PipelineExecutor,
    PipelineResult,
    RetryThenFallback,
    StepOutcome,
    format_pipeline,
    parse,
)
from aichain.providers import default_registry

STRATEGIES = ["fail_fast", "continue_on_error", "retry_then_fallback", "circuit_break"]


def _build_strategy(
    name: str, max_retries: int, backoff: float, threshold: int, cooldown: float
):
    if name == "continue_on_error":
        return ContinueOnError()
    if name == "retry_then_fallback":
        return RetryThenFallback(max_retries=max_retries, backoff_base=backoff)
    if name == "circuit_break":
        return CircuitBreak(failure_threshold=threshold, cooldown=cooldown)
    return FailFast()


def _read_input(text: Optional[str]) -> str:
    if text == "-":
        return sys.stdin.read()
    return text or ""


def _format_parse_error(chain: str, error: ParseError) -> str:
    caret = " " * error.position + "^"
    return f"{error}\n  {chain}\n  {caret}"


def _echo_outcome(outcome: StepOutcome) -> None:
    icon = {"succeeded": "✅", "degraded": "⚠️ ", "failed": "❌"}[outcome.status.value]
    line = f"{icon} [{outcome.index}] {outcome.step} ({outcome.attempts} attempt(s))"
    if outcome.error is not None:
        line += f": {outcome.error}"
    click.echo(line, err=True)


def _echo_result(result: PipelineResult, as_json: bool, streamed: bool) -> None:
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    click.echo("=" * 60, err=True)
    if result.completed:
        suffix = " (degraded)" if result.is_degraded else ""
        click.echo(f"Pipeline completed{suffix}", err=True)
    else:
        click.echo(f"Pipeline aborted: {result.error}", err=True)

    output = result.final_output
    if output is not None and not streamed:
        click.echo(output)


def _build_executor(
    timeout: Optional[float], credentials=None, verbose: bool = False, api_keys=None
) -> PipelineExecutor:
    configured = settings.discover_configured_methods(
        config_credentials=credentials, api_keys=api_keys
    )
    return PipelineExecutor(
        default_registry(),
        configured,
        step_timeout=timeout,
        on_step=_echo_outcome if verbose else None,
    )


def _build_context(files: Tuple[str, ...] = (), context_path: Optional[str] = None) -> Context:
    """Run context with files in scope and, optionally, a context file as system text."""
    context = Context()
    for path in files:
        context.add_file(path)
    if context_path:
        try:
            text = Path(context_path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise click.ClickException(f"Cannot read context file {context_path}: {e}")
        context.add_message(Message(role=MessageRole.SYSTEM, content=text))
    return context


def _execute(
    executor: PipelineExecutor,
    pipeline: Pipeline,
    initial_input: str,
    stream: bool,
    as_json: bool,
    context: Context,
) -> None:
    def on_chunk(index: int, chunk: str) -> None:
        if index == len(pipeline) - 1:
            click.echo(chunk, nl=False)

    async def run():
        return await executor.run(
            pipeline,
            initial_input,
            context,
            stream=stream,
            on_chunk=on_chunk if stream and not as_json else None,
        )

    try:
        result = asyncio.run(run())
    except (UnknownProviderError, TransformError) as e:
        raise click.ClickException(str(e))

    if stream and not as_json:
        click.echo()
    _echo_result(result, as_json, streamed=stream)
    if result.aborted:
        sys.exit(1)


@click.group()
@click.option("--log-level", default=None, help="Logging level (default: LOG_LEVEL or WARNING)")
def cli(log_level: Optional[str]):
    """aichain - Chain AI coding agents (Claude, Gemini, Codex) into pipelines."""
    settings.setup_logging(log_level)


@cli.command()
@click.argument("chain")
@click.option("--input", "-i", "input_text", default=None, help="Input for the first step ('-' reads stdin)")
@click.option(
    "--strategy",
    type=click.Choice(STRATEGIES),
    default="fail_fast",
    help="What a failed step does to the run",
)
@click.option("--max-retries", type=int, default=3, help="retry_then_fallback: retries per step")
@click.option("--backoff", type=float, default=0.5, help="retry_then_fallback: base delay in seconds")
@click.option("--threshold", type=int, default=3, help="circuit_break: consecutive failures to open")
@click.option("--cooldown", type=float, default=60.0, help="circuit_break: seconds before retrying")
@click.option("--timeout", type=float, default=settings.STEP_TIMEOUT, help="Per step timeout in seconds")
@click.option("--file", "-f", "files", multiple=True, help="File to put in scope (repeatable)")
@click.option(
    "--context", "context_path", type=click.Path(exists=True, dir_okay=False),
    help="File whose contents are given to every agent as system context",
)
@click.option("--stream", is_flag=True, help="Stream the last step's output")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.option("--verbose", "-v", is_flag=True, help="Report every step")
def run(
    chain: str,
    input_text: Optional[str],
    strategy: str,
    max_retries: int,
    backoff: float,
    threshold: int,
    cooldown: float,
    timeout: Optional[float],
    files: Tuple[str, ...],
    context_path: Optional[str],
    stream: bool,
    as_json: bool,
    verbose: bool,
):
    """Run a chain, e.g. "claude:design -> codex:implement -> gemini:review"."""
    try:
        error_strategy = _build_strategy(strategy, max_retries, backoff, threshold, cooldown)
        pipeline = parse(chain, error_strategy)
    except ParseError as e:
        raise click.ClickException(_format_parse_error(chain, e))
    except ValueError as e:
        raise click.BadParameter(str(e))

    if verbose:
        click.echo(f"Running: {format_pipeline(pipeline)}", err=True)
    executor = _build_executor(timeout, verbose=verbose)
    _execute(
        executor, pipeline, _read_input(input_text), stream, as_json,
        _build_context(files, context_path),
    )


@cli.command()
@click.argument("name")
@click.option("--config", "config_path", default=None, help="Pipelines file (default: AICHAIN_PIPELINES_FILE)")
@click.option("--input", "-i", "input_text", default=None, help="Input for the first step ('-' reads stdin)")
@click.option("--timeout", type=float, default=settings.STEP_TIMEOUT, help="Per step timeout in seconds")
@click.option("--file", "-f", "files", multiple=True, help="File to put in scope (repeatable)")
@click.option(
    "--context", "context_path", type=click.Path(exists=True, dir_okay=False),
    help="File whose contents are given to every agent as system context",
)
@click.option("--stream", is_flag=True, help="Stream the last step's output")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.option("--verbose", "-v", is_flag=True, help="Report every step")
def pipeline(
    name: str,
    config_path: Optional[str],
    input_text: Optional[str],
    timeout: Optional[float],
    files: Tuple[str, ...],
    context_path: Optional[str],
    stream: bool,
    as_json: bool,
    verbose: bool,
):
    """Run a named pipeline from the pipelines file."""
    path = config_path or settings.PIPELINES_FILE
    try:
        pipelines = load_pipelines_config(path)
        definition = pipelines.get(name)
    except FileNotFoundError:
        raise click.ClickException(f"Pipelines file not found: {path}")
    except ConfigError as e:
        raise click.ClickException(str(e))
    except KeyError as e:
        raise click.ClickException(e.args[0])

    if verbose:
        click.echo(f"Running '{name}': {format_pipeline(definition.pipeline)}", err=True)
    executor = _build_executor(timeout, credentials=pipelines.credentials, verbose=verbose)
    _execute(
        executor, definition.pipeline, _read_input(input_text), stream, as_json,
        _build_context(files, context_path),
    )


@cli.command()
@click.argument("prompt")
@click.option(
    "--provider", "-p", "providers", multiple=True, default=("claude",),
    help="Provider to ask (repeat to ask several concurrently)",
)
@click.option("--timeout", type=float, default=settings.STEP_TIMEOUT, help="Per call timeout in seconds")
@click.option(
    "--context", "context_path", type=click.Path(exists=True, dir_okay=False),
    help="File whose contents are given to every agent as system context",
)
@click.option("--api-key", default=None, help="API key for the provider; takes priority over every other credential")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
def execute(
    prompt: str,
    providers: Tuple[str, ...],
    timeout: Optional[float],
    context_path: Optional[str],
    api_key: Optional[str],
    as_json: bool,
):
    """Send one prompt to one or more providers."""
    api_keys = None
    if api_key:
        if len(set(providers)) > 1:
            raise click.UsageError("--api-key can only be used with a single --provider")
        api_keys = {providers[0]: api_key}
    executor = _build_executor(timeout, api_keys=api_keys)
    context = _build_context(context_path=context_path)

    async def run():
        return await executor.fan_out(list(providers), _read_input(prompt), context)

    try:
        results = asyncio.run(run())
    except UnknownProviderError as e:
        raise click.ClickException(str(e))

    if as_json:
        click.echo(json.dumps({pid: r.to_dict() for pid, r in results.items()}, indent=2))
        return

    failed = False
    for provider_id, result in results.items():
        outcome = result.outcomes[0]
        if len(results) > 1:
            click.echo(f"\n=== {provider_id} ===")
        if outcome.succeeded:
            click.echo(outcome.output)
        else:
            failed = True
            click.echo(f"❌ {provider_id}: {outcome.error}", err=True)
    if failed:
        sys.exit(1)


@cli.command("list-providers")
def list_providers():
    """List registered providers and their settings."""
    registry = default_registry()
    for provider_id in registry.provider_ids():
        provider_config = registry.get_config(provider_id)
        click.echo(
            f"{provider_id:8} model={provider_config.model or '-'} "
            f"cli={provider_config.cli_binary or provider_id}"
        )


@cli.command("check-auth")
@click.argument("providers", nargs=-1)
@click.option("--config", "config_path", default=None, help="Pipelines file with credentials")
def check_auth(providers: Tuple[str, ...], config_path: Optional[str]):
    """Show which auth method each provider would use."""
    credentials = {}
    if config_path:
        try:
            credentials = load_pipelines_config(config_path).credentials
        except (FileNotFoundError, ConfigError) as e:
            raise click.ClickException(str(e))

    configured = settings.discover_configured_methods(config_credentials=credentials)
    provider_ids = providers or tuple(default_registry().provider_ids())

    missing = False
    for provider_id in provider_ids:
        try:
            method = resolve(provider_id, configured)
        except AuthError as e:
            missing = True
            click.echo(f"❌ {provider_id}: {e}")
            continue
        click.echo(f"✅ {provider_id}: {method.describe()}")
    if missing:
        sys.exit(1)


@cli.command()
def version():
    """Show version information."""
    click.echo(f"aichain {__version__}")


if __name__ == "__main__":
    cli()
