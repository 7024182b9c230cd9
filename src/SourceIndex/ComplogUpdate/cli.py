"""Typer-based CLI for the compiler-log update engine."""

import json
import logging
import time
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from SourceIndex.ComplogUpdate.bootstrap import build_runtime
from SourceIndex.ComplogUpdate.config import (
    ComplogUpdateConfig,
    export_config_schema,
    load_config,
    validate_config_file,
)
from SourceIndex.ComplogUpdate.logging_config import setup_logging
from SourceIndex.ComplogUpdate.service import PollRoundSummary
from SourceIndex.ComplogUpdate.store import ContentStore

console = Console()
app = typer.Typer(help="SourceIndex compiler-log update engine")

_CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to config file",
    envvar="SIDX_CONFIG",
)


def _load(config: Optional[str], verbose: bool = False, **overrides: object) -> ComplogUpdateConfig:
    cli_overrides: dict = {k: v for k, v in overrides.items() if v is not None}
    if verbose:
        cli_overrides["logging"] = {"level": "DEBUG"}
    cfg = load_config(path=config, cli_overrides=cli_overrides)
    setup_logging(cfg.logging)
    return cfg


def _summary_table(summary: PollRoundSummary) -> Table:
    table = Table(title=f"Poll round {summary.round_id}")
    table.add_column("Source", style="cyan")
    table.add_column("Outcome", style="green")
    table.add_column("Detail", style="magenta")

    for name in summary.changed:
        table.add_row(name, "[green]changed[/green]", "")
    for name in summary.unchanged:
        table.add_row(name, "unchanged", "")
    for name, message in summary.failed.items():
        table.add_row(name, "[red]failed[/red]", escape(message))
    return table


@app.command()
def run(
    config: Optional[str] = _CONFIG_OPTION,
    interval: Optional[float] = typer.Option(
        None, "--interval", help="Seconds between poll rounds"
    ),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose"),
) -> None:
    """Poll sources continuously until interrupted."""
    try:
        poll_override = {"interval_s": interval} if interval is not None else None
        cfg = _load(config, verbose, poll=poll_override)
        runtime = build_runtime(cfg)
    except Exception as e:
        console.print(f"[red]✗ Error: {escape(str(e))}[/red]")
        if verbose:
            raise
        raise typer.Exit(code=1)

    console.print(
        Panel(
            f"[bold green]✓ Config loaded[/bold green]\n"
            f"Hash: {cfg.config_hash()[:8]}...\n"
            f"Sources: {len(runtime.sources)}\n"
            f"Interval: {cfg.poll.interval_s:g}s\n"
            f"Current index: {runtime.publication.current.name or '(none)'}",
            title="ComplogUpdate",
        )
    )

    with runtime:
        runtime.service.start()
        try:
            while runtime.service.is_running:
                time.sleep(0.5)
        except KeyboardInterrupt:
            console.print("[yellow]Stopping...[/yellow]")
        runtime.service.stop(timeout=30)
        runtime.publication.wait_for_cleanup(timeout=30)


@app.command("poll-once")
def poll_once(
    config: Optional[str] = _CONFIG_OPTION,
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose"),
) -> None:
    """Run a single poll round and print what it did."""
    try:
        cfg = _load(config, verbose)
        with build_runtime(cfg) as runtime:
            summary = runtime.service.run_once()
            runtime.publication.wait_for_cleanup(timeout=30)
    except Exception as e:
        console.print(f"[red]✗ Error: {escape(str(e))}[/red]")
        if verbose:
            raise
        raise typer.Exit(code=1)

    console.print(_summary_table(summary))
    if summary.published_index:
        console.print(f"[green]✓ Published index {summary.published_index}[/green]")
    elif summary.regeneration_error:
        console.print(f"[red]✗ Regeneration failed: {escape(summary.regeneration_error)}[/red]")
    else:
        console.print("[cyan]No regeneration needed[/cyan]")

    if summary.failed:
        raise typer.Exit(code=2)


@app.command()
def status(
    config: Optional[str] = _CONFIG_OPTION,
) -> None:
    """Show stored version keys and the current index without polling."""
    try:
        cfg = load_config(path=config)
    except Exception as e:
        console.print(f"[red]✗ Error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)

    store = ContentStore(Path(cfg.root_dir).expanduser())

    table = Table(title="Sources")
    table.add_column("Order", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Kind", style="yellow")
    table.add_column("Version key", style="magenta")

    for idx, source in enumerate(cfg.sources, 1):
        key = store.read_version_key(source.name)
        table.add_row(str(idx), source.name, source.kind.value, key or "[red]never ingested[/red]")

    console.print(table)
    console.print(f"\n[cyan]Current index: {store.read_current_index_name() or '(none)'}[/cyan]")


@app.command()
def validate_config(
    config: str = typer.Argument(..., help="Path to config file"),
) -> None:
    """Validate a config file."""
    try:
        validate_config_file(config)
        console.print("[green]✓ Config valid[/green]")
    except Exception as e:
        console.print(f"[red]✗ Invalid: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)


@app.command()
def schema() -> None:
    """Print the configuration JSON schema."""
    typer.echo(json.dumps(export_config_schema(), indent=2))


def main() -> None:
    """Entry point for the ``sourceindex-complog`` script."""
    logging.captureWarnings(True)
    app()


if __name__ == "__main__":
    main()
