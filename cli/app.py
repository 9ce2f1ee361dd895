from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_collection, render_snapshots


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the fleet telemetry aggregator service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Aggregator API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Maximum seconds to wait for a collection run.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, request_timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("collect")
def collect_command(
    ctx: typer.Context,
    device_ids: List[str] = typer.Argument(..., help="Telemetry device identifiers."),
    start: datetime = typer.Option(..., "--start", formats=["%Y-%m-%d"], help="First reported day."),
    end: datetime = typer.Option(..., "--end", formats=["%Y-%m-%d"], help="Last reported day."),
    lookback: Optional[int] = typer.Option(
        None,
        "--lookback",
        min=0,
        help="Days fetched before --start to seed daily deltas.",
    ),
) -> None:
    """Collect daily readings and print the fleet summary."""
    state = _get_state(ctx)
    lookback_days = lookback if lookback is not None else state.config.lookback_days
    typer.echo(
        f"Collecting {len(device_ids)} device(s) from {start.date()} to {end.date()} "
        f"(lookback={lookback_days}d) via {state.config.base_url} ..."
    )
    payload = state.client.collect(device_ids, start.date(), end.date(), lookback_days)
    typer.echo()
    render_collection(payload)


@app.command("snapshots")
def snapshots_command(ctx: typer.Context) -> None:
    """Show the last known cumulative reading per device."""
    state = _get_state(ctx)
    render_snapshots(state.client.list_snapshots())


@app.command("cleanup")
def cleanup_command(
    ctx: typer.Context,
    max_age_days: Optional[int] = typer.Option(
        None,
        "--max-age-days",
        min=0,
        help="Remove snapshots saved longer ago than this (server default when omitted).",
    ),
) -> None:
    """Remove stale snapshots."""
    state = _get_state(ctx)
    removed = state.client.cleanup_snapshots(max_age_days)
    typer.secho(f"Removed {len(removed)} snapshot(s).", fg=typer.colors.GREEN)
    for device_id in removed:
        typer.echo(f"  - {device_id}")


@app.command("reset")
def reset_command(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Clear every stored snapshot."""
    state = _get_state(ctx)
    if not yes:
        typer.confirm("Delete all stored snapshots?", abort=True)
    state.client.reset_snapshots()
    typer.secho("Snapshot store reset.", fg=typer.colors.GREEN)
