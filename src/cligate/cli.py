"""CLI entrypoint.

Primary command:
- cligate call <provider>   (JSON on stdin -> JSON on stdout)

Utilities:
- cligate providers
- cligate doctor
- cligate breaker status|reset

CONTRACT
- Inputs: Command line arguments (parsed by Typer), one JSON object on stdin
- Outputs (required):
  - `call`: exactly one JSON object on stdout; exit 0 only on success,
    1 on provider failure, 2 on invalid request
  - Other commands: rich tables on stdout
- Invariants:
  - stdout carries only the JSON response for `call`; logs go to stderr
  - Provider names are validated before any state is touched
- Failure:
  - Unknown provider / bad config raise Typer errors (exit 2)
"""

from __future__ import annotations

import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from . import __version__
from .breaker import BreakerStore
from .config import ConfigError, GatewayConfig, load_config
from .doctor import doctor_report
from .gateway import EXIT_INVALID_REQUEST, Gateway, handle_payload, invalid_request
from .util.events import EventLog

MAX_INPUT_BYTES = 10 * 1024 * 1024

app = typer.Typer(add_completion=False, help="Gateway for AI provider CLIs with failure classification and a circuit breaker.")
breaker_app = typer.Typer(add_completion=False, help="Inspect or reset circuit breaker state.")
app.add_typer(breaker_app, name="breaker")

console = Console()


def _version_callback(value: bool):
    if value:
        console.print(f"cligate version: {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version."
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging on stderr."),
):
    _configure_logging(verbose)


_CONFIG_OPTION = typer.Option(
    None,
    "--config",
    help="Config YAML file (default: ~/.cligate/config.yaml if present).",
)
_STATE_DIR_OPTION = typer.Option(
    None,
    "--state-dir",
    help="Breaker state directory (overrides config).",
)
_EVENTS_OPTION = typer.Option(
    None,
    "--events",
    help="Append one JSON line per call to this file.",
)


def _load(config: Path | None, state_dir: Path | None = None, events: Path | None = None) -> GatewayConfig:
    try:
        cfg = load_config(config)
    except ConfigError as e:
        raise typer.BadParameter(str(e), param_hint="--config") from e
    if state_dir is not None:
        cfg = replace(cfg, state_dir=state_dir)
    if events is not None:
        cfg = replace(cfg, events_path=events)
    return cfg


def _check_provider(cfg: GatewayConfig, provider: str) -> None:
    try:
        cfg.provider(provider)
    except ConfigError as e:
        raise typer.BadParameter(str(e), param_hint="PROVIDER") from e


def _read_input(input_file: Path | None) -> bytes:
    if input_file is not None:
        if not input_file.exists():
            raise typer.BadParameter(f"Input file not found: {input_file}")
        return input_file.read_bytes()
    return typer.get_binary_stream("stdin").read(MAX_INPUT_BYTES + 1)


@app.command()
def call(
    provider: str = typer.Argument(..., help="Provider id (see `cligate providers`)."),
    input_file: Path | None = typer.Option(None, "--input", help="Read the JSON payload from a file instead of stdin."),
    config: Path | None = _CONFIG_OPTION,
    state_dir: Path | None = _STATE_DIR_OPTION,
    events: Path | None = _EVENTS_OPTION,
) -> None:
    """Forward one JSON prompt to a provider CLI and print a JSON result."""
    cfg = _load(config, state_dir, events)
    _check_provider(cfg, provider)

    raw = _read_input(input_file)
    if len(raw) > MAX_INPUT_BYTES:
        typer.echo(invalid_request(provider, "Input too large (>10MB)").to_json())
        raise typer.Exit(code=EXIT_INVALID_REQUEST)
    try:
        data = json.loads(raw.decode("utf-8") or "{}")
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        typer.echo(invalid_request(provider, f"Failed to parse JSON input: {e}").to_json())
        raise typer.Exit(code=EXIT_INVALID_REQUEST)

    gateway = Gateway.from_config(cfg)
    out, code = asyncio.run(handle_payload(gateway, provider, data))
    typer.echo(out)
    if code != 0:
        raise typer.Exit(code=code)


@app.command()
def providers(config: Path | None = _CONFIG_OPTION) -> None:
    """List configured providers."""
    cfg = _load(config)
    table = Table(title="cligate providers")
    table.add_column("Provider")
    table.add_column("Executable")
    table.add_column("Timeout")
    table.add_column("Model flag")
    for name, d in sorted(cfg.providers.items()):
        table.add_row(name, d.executable, f"{d.timeout_s:g}s", d.model_flag or "-")
    console.print(table)


@app.command()
def doctor(
    config: Path | None = _CONFIG_OPTION,
    state_dir: Path | None = _STATE_DIR_OPTION,
    probe_versions: bool = typer.Option(False, "--probe", help="Probe `--version` of each CLI."),
) -> None:
    """Environment and preflight checks."""
    cfg = _load(config, state_dir)
    report = doctor_report(cfg, Gateway.from_config(cfg).breaker, verbose=probe_versions)
    table = Table(title="cligate doctor")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Details")
    for item in report.items:
        table.add_row(item.name, item.status, item.details)
    console.print(table)
    if report.ok:
        console.print("[green]OK[/green]")
    else:
        raise typer.Exit(code=2)


def _check_breaker_provider(cfg: GatewayConfig, store: BreakerStore, provider: str) -> None:
    # State left behind by a provider removed from the config is still addressable.
    if provider not in cfg.providers and provider not in store.backend.provider_ids():
        _check_provider(cfg, provider)


@breaker_app.command("status")
def breaker_status(
    provider: str | None = typer.Argument(None, help="Provider id (default: all)."),
    config: Path | None = _CONFIG_OPTION,
    state_dir: Path | None = _STATE_DIR_OPTION,
) -> None:
    cfg = _load(config, state_dir)
    store = Gateway.from_config(cfg).breaker
    names = sorted(set(cfg.providers) | set(store.backend.provider_ids()))
    if provider is not None:
        _check_breaker_provider(cfg, store, provider)
        names = [provider]
    table = Table(title="cligate breaker")
    table.add_column("Provider")
    table.add_column("State")
    table.add_column("Recent failures")
    table.add_column("Remaining")
    for name in names:
        status = store.is_open(name)
        label = name if name in cfg.providers else f"{name} (not configured)"
        table.add_row(
            label,
            "[red]open[/red]" if status.open else "closed",
            str(status.recent_failures),
            f"{status.remaining_minutes} min" if status.open else "-",
        )
    console.print(table)


@breaker_app.command("reset")
def breaker_reset(
    provider: str = typer.Argument(..., help="Provider id."),
    config: Path | None = _CONFIG_OPTION,
    state_dir: Path | None = _STATE_DIR_OPTION,
    events: Path | None = _EVENTS_OPTION,
) -> None:
    """Clear stored failures for a provider."""
    cfg = _load(config, state_dir, events)
    store = Gateway.from_config(cfg).breaker
    _check_breaker_provider(cfg, store, provider)
    store.reset(provider)
    if cfg.events_path:
        EventLog(cfg.events_path).emit(event="breaker_reset", provider=provider)
    console.print(f"[green]Breaker reset for[/green] {provider}")


if __name__ == "__main__":
    app()
