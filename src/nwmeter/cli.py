#!/usr/bin/env python3
"""
Command-line interface for the combat meter.
"""

import json
import logging
import sys
import time
from pathlib import Path

import click
from rich.console import Console, Group
from rich.live import Live
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from .analyzer.displays import DisplayBuilder
from .analyzer.metrics import MetricsCalculator
from .config.loader import ConfigLoader
from .exceptions import ConfigurationError, MeterError
from .persistence import load_registry, save_registry
from .streaming.processor import MeterProcessor, MeterSnapshot

# Set up rich console for pretty output
console = Console()

logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(console=console, rich_tracebacks=True)],
)
logger = logging.getLogger(__name__)


def _build_processor(ctx: click.Context) -> MeterProcessor:
    settings = ctx.obj["settings"]
    registry = None
    if settings.players_file:
        registry = load_registry(settings.players_file, settings.main_player_timeout_seconds)
    return MeterProcessor(settings, registry=registry, spells=ctx.obj["spells"])


def _save_players(processor: MeterProcessor):
    players_file = processor.settings.players_file
    if players_file:
        save_registry(processor.registry, players_file)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--config", "config_path", type=click.Path(), help="YAML settings file")
@click.pass_context
def cli(ctx, verbose, config_path):
    """Neverwinter Nights combat meter"""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    loader = ConfigLoader()
    try:
        config = loader.load_config(config_path)
        settings = loader.apply_config(config)
        settings.validate()
    except (ConfigurationError, ValueError) as e:
        raise click.ClickException(str(e))

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["spells"] = loader.spell_rules(config)
    if verbose:
        settings.log_configuration()


@cli.command()
@click.argument("log_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.option("--output", "-o", type=click.Path(), help="Write JSON results to a file")
@click.pass_context
def parse(ctx, log_file, as_json, output):
    """Read a whole chat log and summarize its encounters."""
    processor = _build_processor(ctx)
    log_path = Path(log_file)

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task(f"[cyan]Reading {log_path.name}...", total=None)
            processor.backfill(log_path)
    except MeterError as e:
        raise click.ClickException(str(e))

    processor.finalize()
    snapshot = processor.snapshot()
    _save_players(processor)

    if as_json or output:
        payload = json.dumps(snapshot.to_dict(), indent=2)
        if output:
            Path(output).write_text(payload, encoding="utf-8")
            console.print(f"[green]Results written to {output}[/green]")
        else:
            click.echo(payload)
        return

    display_summary(snapshot, processor)


def display_summary(snapshot: MeterSnapshot, processor: MeterProcessor):
    """Print encounter and session tables."""
    if not snapshot.encounters:
        console.print("[yellow]No encounters found.[/yellow]")
        return

    console.print(DisplayBuilder.create_encounters_table(snapshot.encounters))

    totals = processor.session_totals()
    summary = MetricsCalculator.summarize_session(snapshot.encounters, totals)
    console.print(
        DisplayBuilder.create_combatant_table(
            totals.values(), title="Session", elapsed=summary["combat_time"] or None
        )
    )
    console.print(
        f"[cyan]Encounters:[/cyan] {summary['encounters']}  "
        f"[cyan]Combat time:[/cyan] {summary['combat_time']:.0f}s  "
        f"[cyan]Total damage:[/cyan] {summary['total_damage']}"
    )
    if snapshot.main_player:
        console.print(f"[cyan]Main player:[/cyan] {escape(snapshot.main_player.display_name)}")

    stats = processor.get_stats()
    if stats.get("decode_errors"):
        console.print(f"[yellow]Skipped {stats['decode_errors']} undecodable lines[/yellow]")


def _live_view(snapshot: MeterSnapshot):
    parts = []
    encounter = snapshot.current_encounter
    if encounter is None and snapshot.encounters:
        encounter = snapshot.encounters[-1]
    if encounter is not None:
        parts.append(DisplayBuilder.create_encounter_panel(encounter, snapshot.encounter_active))
    else:
        parts.append("[dim]Waiting for combat...[/dim]")

    buffs = snapshot.active_buffs()
    if buffs:
        parts.append(DisplayBuilder.create_buff_table(buffs, snapshot.taken_at, snapshot.warning_seconds))
    if snapshot.main_player:
        parts.append(f"[cyan]Main player:[/cyan] {escape(snapshot.main_player.display_name)}")
    return Group(*parts)


@cli.command()
@click.argument("log_file", type=click.Path(dir_okay=False))
@click.option("--history", is_flag=True, help="Read the existing log before tailing")
@click.option("--refresh", default=0.5, type=float, help="Seconds between screen updates")
@click.pass_context
def watch(ctx, log_file, history, refresh):
    """Follow a chat log live."""
    processor = _build_processor(ctx)

    try:
        watcher = processor.watch(log_file, backfill=history)
    except (MeterError, FileNotFoundError) as e:
        raise click.ClickException(str(e))

    console.print(f"[bold green]Watching[/bold green] {log_file} (Ctrl+C to stop)")
    try:
        with Live(_live_view(processor.snapshot()), console=console, refresh_per_second=4) as live:
            while watcher.is_running:
                time.sleep(refresh)
                live.update(_live_view(processor.snapshot()))
    except KeyboardInterrupt:
        pass
    finally:
        processor.stop()
        _save_players(processor)

    if watcher.fatal_error is not None:
        console.print(f"[red]{watcher.fatal_error}[/red]")
        sys.exit(1)


@cli.command()
@click.option("--file", "players_file", type=click.Path(), help="Player file to show")
@click.pass_context
def players(ctx, players_file):
    """Show players remembered from earlier sessions."""
    settings = ctx.obj["settings"]
    path = players_file or settings.players_file
    if not path:
        raise click.ClickException("No player file configured (set NWMETER_PLAYERS_FILE or --file)")

    try:
        registry = load_registry(path)
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    identities = registry.identities()
    if not identities:
        console.print("[yellow]No players recorded.[/yellow]")
        return
    console.print(DisplayBuilder.create_players_table(identities))


if __name__ == "__main__":
    cli()
