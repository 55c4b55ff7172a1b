"""CLI entry point for RTCSifter."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from rtcsifter.config import CONFIG_JSON_PATH, EngineConfig, load_config, save_config
from rtcsifter.errors import RTCSifterError
from rtcsifter.session.assembler import SessionAssembler
from rtcsifter.storage.export import export_session, session_to_dict
from rtcsifter.storage.models import ComponentMetadataHint

console = Console(force_terminal=True)


def _get_config(ctx) -> EngineConfig:
    """Get the engine config from context."""
    return ctx.obj["config"]


def _fmt_ts(ms) -> str:
    if ms is None:
        return "-"
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]


def _fail(ctx, error):
    console.print(f"[red]Error:[/red] {error}")
    ctx.exit(1)


def _assemble(ctx, dumps_dir, hint_path=None):
    """Assemble a session, exiting with an error message on failure."""
    config = _get_config(ctx)
    hint = None
    if hint_path:
        try:
            hint = ComponentMetadataHint.from_dict(json.loads(Path(hint_path).read_text()))
        except (OSError, ValueError, KeyError) as e:
            _fail(ctx, f"Could not read hint file {hint_path}: {e}")

    assembler = SessionAssembler(config)
    try:
        session = assembler.assemble(dumps_dir or config.dumps_dir, hint=hint)
    except RTCSifterError as e:
        _fail(ctx, e)
    return assembler, session


@click.group()
@click.option(
    "--config", "config_path",
    default=None,
    help=f"Config file (default: {CONFIG_JSON_PATH.name} in the project root)",
    type=click.Path(path_type=Path),
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, config_path, verbose):
    """RTCSifter - Reconstruct conference sessions from RTC stats dumps."""
    ctx.ensure_object(dict)

    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.INFO, format="%(message)s")

    try:
        ctx.obj["config"] = load_config(config_path)
    except ValueError as e:
        _fail(ctx, e)
    ctx.obj["config_path"] = config_path or CONFIG_JSON_PATH


# ---------------------------------------------------------------------------
# Session Assembly Commands
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("dumps_dir", required=False, type=click.Path(path_type=Path))
@click.option("--hint", "hint_path", type=click.Path(exists=True), help="Component metadata hint (JSON)")
@click.option("--json", "as_json", is_flag=True, help="Print the whole session as JSON")
@click.pass_context
def assemble(ctx, dumps_dir, hint_path, as_json):
    """Assemble the session recorded in a dumps directory."""
    _, session = _assemble(ctx, dumps_dir, hint_path)

    if as_json:
        click.echo(json.dumps(session_to_dict(session), indent=2, ensure_ascii=False))
        return

    console.print()
    console.print(f"[bold]Session {session.session_id}[/bold]")
    console.print(f"  Start: {_fmt_ts(session.start_time)}")
    console.print(f"  End:   {_fmt_ts(session.end_time)}")
    if session.metadata.get("shard"):
        console.print(f"  Shard: {session.metadata['shard']} ({session.metadata.get('region') or '-'})")
    console.print()

    table = Table(title="Participants")
    table.add_column("Participant", style="cyan")
    table.add_column("Name")
    table.add_column("Joined")
    table.add_column("Left")
    table.add_column("Sessions", justify="right")
    table.add_column("Client")
    table.add_column("Audio", justify="right")
    table.add_column("Video", justify="right")
    for p in session.participants:
        client = p.client_info
        table.add_row(
            p.participant_id,
            p.display_name,
            _fmt_ts(p.join_time),
            _fmt_ts(p.leave_time),
            str(len(p.session_map)),
            f"{client.browser} / {client.os}" if client else "-",
            f"{p.quality_metrics.audio_quality:.1f}",
            f"{p.quality_metrics.video_quality:.1f}",
        )
    console.print(table)

    metrics = session.metrics
    console.print()
    console.print(f"Events: [bold]{len(session.events)}[/bold]")
    console.print(f"Duration: [bold]{metrics.duration / 1000:.0f}s[/bold]")
    console.print(f"Network issues: [bold]{len(metrics.network_issues)}[/bold]")
    console.print(f"Dominant speaker changes: [bold]{metrics.dominant_speaker_changes}[/bold]")
    console.print(f"Screenshare: [bold]{metrics.screenshare_duration / 1000:.0f}s[/bold]")
    bridges = session.metadata.get("bridge_instances") or []
    focus = session.metadata.get("focus_instances") or []
    if bridges or focus:
        console.print(f"Bridges: {', '.join(bridges) or '-'}  Focus: {', '.join(focus) or '-'}")
    if session.metadata.get("skipped_files"):
        console.print(f"[yellow]Skipped {session.metadata['skipped_files']} unattributable dump files[/yellow]")


@cli.command(name="export")
@click.argument("dumps_dir", required=False, type=click.Path(path_type=Path))
@click.option("--output", "-o", default=None, help="Output directory", type=click.Path(path_type=Path))
@click.pass_context
def export_cmd(ctx, dumps_dir, output):
    """Export an assembled session as JSON files."""
    _, session = _assemble(ctx, dumps_dir)
    output_dir = output or _get_config(ctx).exports_dir / session.session_id

    summary = export_session(session, output_dir)
    console.print(f"[green]Exported session {summary['session_id']} to {output_dir}[/green]")
    console.print(f"  Participants: {summary['participants']}")
    console.print(f"  Events: {summary['events']}")


@cli.command()
@click.argument("dumps_dir", required=False, type=click.Path(path_type=Path))
@click.pass_context
def replay(ctx, dumps_dir):
    """Replay an assembled timeline through the streaming correlation engine."""
    from rtcsifter.streaming.correlation import EventCorrelationEngine
    from rtcsifter.streaming.replay import replay_session

    _, session = _assemble(ctx, dumps_dir)

    finalized = []
    with EventCorrelationEngine(
        _get_config(ctx),
        on_session_finalized=finalized.append,
        start_sweeper=False,
    ) as engine:
        pushed = replay_session(engine, session)

    console.print(f"Replayed [bold]{pushed}[/bold] events")
    table = Table(title="Finalized Sessions")
    table.add_column("Session", style="cyan")
    table.add_column("Participants", justify="right")
    table.add_column("Events", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Network issues", justify="right")
    for s in finalized:
        table.add_row(
            s.session_id,
            str(s.metrics.total_participants),
            str(len(s.events)),
            f"{s.metrics.duration / 1000:.0f}s",
            str(len(s.metrics.network_issues)),
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Participant Lookup Commands
# ---------------------------------------------------------------------------


@cli.group(name="participant")
def participant_group():
    """Inspect one participant's raw data."""
    pass


@participant_group.command(name="logs")
@click.argument("dumps_dir", type=click.Path(path_type=Path))
@click.argument("name")
@click.option("--limit", "-n", default=50, help="Max lines to show")
@click.option("--level", default=None, help="Only show this log level")
@click.pass_context
def participant_logs(ctx, dumps_dir, name, limit, level):
    """Show merged console logs for a participant."""
    assembler, _ = _assemble(ctx, dumps_dir)
    result = assembler.participant_console_logs(name)

    if not result.file_exists:
        console.print(f"[yellow]No console logs found for {name}.[/yellow]")
        return

    logs = result.logs
    if level:
        logs = [log for log in logs if log["level"].upper() == level.upper()]

    console.print(
        f"[bold]{result.display_name}[/bold] - {len(logs)} lines "
        f"from {len(result.session_ids)} sessions"
    )
    for log in logs[:limit]:
        style = {"ERROR": "red", "WARN": "yellow", "DEBUG": "dim"}.get(log["level"].upper(), "")
        line = f"{_fmt_ts(log['timestamp'])} [{log['level']}] [{log['component']}] {log['message']}"
        console.print(line, style=style or None, markup=False, highlight=False)
    if len(logs) > limit:
        console.print(f"[dim]... {len(logs) - limit} more[/dim]")


@participant_group.command(name="stats")
@click.argument("dumps_dir", type=click.Path(path_type=Path))
@click.argument("name")
@click.pass_context
def participant_stats(ctx, dumps_dir, name):
    """Show raw getstats records for a participant as JSON."""
    assembler, _ = _assemble(ctx, dumps_dir)
    click.echo(json.dumps(assembler.participant_raw_stats(name), indent=2, ensure_ascii=False))


@participant_group.command(name="connection")
@click.argument("dumps_dir", type=click.Path(path_type=Path))
@click.argument("name")
@click.pass_context
def participant_connection(ctx, dumps_dir, name):
    """Show WebRTC connection state changes for a participant."""
    assembler, _ = _assemble(ctx, dumps_dir)
    events = assembler.participant_connection_events(name)

    table = Table(title=f"Connection Events: {name}")
    table.add_column("Time", style="cyan")
    table.add_column("Event")
    table.add_column("Connection")
    table.add_column("Value")
    table.add_column("Endpoint", style="dim")
    for e in events:
        table.add_row(
            _fmt_ts(e["timestamp"]), e["event_type"], e["connection_id"] or "-",
            str(e["data"])[:60], e["endpoint_id"],
        )
    console.print(table)


@participant_group.command(name="media")
@click.argument("dumps_dir", type=click.Path(path_type=Path))
@click.argument("name")
@click.pass_context
def participant_media(ctx, dumps_dir, name):
    """Show media track events for a participant."""
    assembler, _ = _assemble(ctx, dumps_dir)
    events = assembler.participant_media_events(name)

    table = Table(title=f"Media Events: {name}")
    table.add_column("Time", style="cyan")
    table.add_column("Event")
    table.add_column("Media")
    table.add_column("Track")
    table.add_column("Endpoint", style="dim")
    for e in events:
        table.add_row(
            _fmt_ts(e["timestamp"]), e["event_type"], e["media_type"],
            e["track_id"] or "-", e["endpoint_id"],
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Bridge / Focus Lookup Commands
# ---------------------------------------------------------------------------


@cli.group(name="component")
def component_group():
    """Inspect a bridge (JVB) or focus (Jicofo) component."""
    pass


def _show_component(data, kind, component_id):
    if data is None:
        console.print(f"[yellow]No {kind} found with id {component_id}.[/yellow]")
        return
    click.echo(json.dumps(data, indent=2, ensure_ascii=False))


@component_group.command(name="bridge")
@click.argument("dumps_dir", type=click.Path(path_type=Path))
@click.argument("bridge_id")
@click.pass_context
def component_bridge(ctx, dumps_dir, bridge_id):
    """Show a bridge's identity and dump entries as JSON."""
    assembler, _ = _assemble(ctx, dumps_dir)
    _show_component(assembler.bridge_data(bridge_id), "bridge", bridge_id)


@component_group.command(name="focus")
@click.argument("dumps_dir", type=click.Path(path_type=Path))
@click.argument("focus_id")
@click.pass_context
def component_focus(ctx, dumps_dir, focus_id):
    """Show a focus component's identity and dump entries as JSON."""
    assembler, _ = _assemble(ctx, dumps_dir)
    _show_component(assembler.focus_data(focus_id), "focus", focus_id)


# ---------------------------------------------------------------------------
# Config Commands
# ---------------------------------------------------------------------------


@cli.group(name="config")
def config_group():
    """Show or create the engine config file."""
    pass


@config_group.command(name="show")
@click.pass_context
def config_show(ctx):
    """Show the effective engine settings."""
    config = _get_config(ctx)
    table = Table(title="Engine Config")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in config.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)


@config_group.command(name="init")
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
@click.pass_context
def config_init(ctx, force):
    """Write the default settings to the config file."""
    path = ctx.obj["config_path"]
    if path.exists() and not force:
        console.print(f"[yellow]Config already exists:[/yellow] {path} (use --force to overwrite)")
        return
    written = save_config(EngineConfig(), path)
    console.print(f"[green]Wrote config:[/green] {written}")


if __name__ == "__main__":
    cli()
