"""Command line interface for streaming recommendation workflows."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import List, NoReturn, Optional

import typer

from stratflow.cli_utils.render import SnapshotRenderer, echo_lines, format_snapshot
from stratflow.config import StratflowConfig, load_config
from stratflow.dispatch import reduce
from stratflow.engine import WorkflowEngine, registry_from_config
from stratflow.errors import StratflowError
from stratflow.models import Snapshot
from stratflow.session import FileSessionStore
from stratflow.transports import BaseTransport, get_transport

app = typer.Typer(help="CLI for stratflow recommendation workflows")

EXIT_FAILED = 2
EXIT_INCOMPLETE = 3


def _fail(message: str) -> NoReturn:
    typer.secho(message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _load(config_path: Optional[Path], preset: Optional[str] = None) -> StratflowConfig:
    try:
        config = load_config(str(config_path) if config_path else None)
    except StratflowError as e:
        _fail(str(e))
    if preset:
        config.engine.preset = preset
        config.engine.stages = None
    return config


def _exit_code(snapshot: Snapshot) -> int:
    if snapshot.status == "completed":
        return 0
    if snapshot.status == "failed":
        return EXIT_FAILED
    return EXIT_INCOMPLETE


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level (defaults to the configured level)"
    ),
) -> None:
    """Stratflow CLI entry point."""
    if log_level is None:
        try:
            log_level = load_config().log_level
        except StratflowError:
            log_level = "INFO"
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _stream_run(
    subject_id: str,
    transport: BaseTransport,
    config: StratflowConfig,
    show_output: bool,
) -> Snapshot:
    engine = WorkflowEngine(
        transport,
        registry=registry_from_config(config.engine),
        session=FileSessionStore(config.session_file),
        config=config.engine,
        on_session_end=lambda: typer.secho(
            "Session expired. Please log in again.", fg=typer.colors.RED
        ),
    )
    engine.subscribe(SnapshotRenderer(engine.registry, show_output=show_output))
    try:
        await engine.start_run(subject_id)
        return await engine.wait_closed()
    finally:
        await engine.dispose()


@app.command("run")
def run(
    subject_id: str,
    backend: Optional[str] = typer.Option(None, help="Transport backend: sse or redis"),
    preset: Optional[str] = typer.Option(None, help="Stage layout preset"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Config file"),
    show_output: bool = typer.Option(False, "--show-output", help="Print stage narratives"),
) -> None:
    """
    Request a recommendation for a strategy and follow it live.

    Prints each stage as it starts, completes or fails, then the final
    recommendation.

    Example:
        stratflow run 64f1c0ffee --show-output
    """
    config = _load(config_path, preset)
    name = (backend or os.getenv("STRATFLOW_TRANSPORT") or config.transport.backend).lower()
    if name == "inmemory":
        _fail("The inmemory backend has no event source; use sse or redis")
    try:
        transport = get_transport(name, config=config)
        snapshot = asyncio.run(_stream_run(subject_id, transport, config, show_output))
    except (StratflowError, ValueError, ImportError) as e:
        _fail(str(e))
    raise typer.Exit(code=_exit_code(snapshot))


def _read_events(path: Path) -> List[dict]:
    events = []
    for number, line in enumerate(path.read_text().splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        if line.startswith("data:"):
            line = line[len("data:"):].strip()
        try:
            events.append(json.loads(line))
        except json.JSONDecodeError as e:
            _fail(f"{path}:{number}: invalid JSON ({e})")
    return events


@app.command("replay")
def replay(
    path: Path,
    preset: Optional[str] = typer.Option(None, help="Stage layout preset"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Config file"),
    show_output: bool = typer.Option(False, "--show-output", help="Print stage narratives"),
) -> None:
    """
    Replay a recorded event stream (one JSON event per line) and show the result.

    Example:
        stratflow replay run.jsonl --preset five_stage
    """
    if not path.exists():
        _fail(f"File not found: {path}")
    config = _load(config_path, preset)
    try:
        registry = registry_from_config(config.engine)
        snapshot = reduce(
            registry,
            _read_events(path),
            subject_id=path.stem,
            step_base=config.engine.step_base,
        )
    except (StratflowError, ValueError) as e:
        _fail(str(e))
    echo_lines(format_snapshot(registry, snapshot, show_output=show_output))
    raise typer.Exit(code=_exit_code(snapshot))


@app.command("stages")
def stages(
    preset: Optional[str] = typer.Option(None, help="Stage layout preset"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Config file"),
) -> None:
    """List the pipeline stages a run goes through."""
    config = _load(config_path, preset)
    try:
        registry = registry_from_config(config.engine)
    except StratflowError as e:
        _fail(str(e))
    for definition in registry:
        typer.echo(f"{definition.index + 1}. {definition.name} - {definition.description}")


@app.command("login")
def login(
    token: str,
    config_path: Optional[Path] = typer.Option(None, "--config", help="Config file"),
) -> None:
    """Store an auth token for later runs."""
    config = _load(config_path)
    FileSessionStore(config.session_file).save(token)
    typer.echo("Token saved.")


@app.command("logout")
def logout(
    config_path: Optional[Path] = typer.Option(None, "--config", help="Config file"),
) -> None:
    """Forget the stored auth token."""
    config = _load(config_path)
    FileSessionStore(config.session_file).end_session()
    typer.echo("Logged out.")


if __name__ == "__main__":  # pragma: no cover
    app()
