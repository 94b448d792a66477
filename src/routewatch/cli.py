"""Click CLI for routewatch — inspect route activity in a vehicle snapshot."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from routewatch.config.hierarchy import load_config_hierarchy

console = Console()
error_console = Console(stderr=True)


def _setup_logging(verbosity: int) -> None:
    """Configure logging based on verbosity level."""
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=error_console, show_time=False, show_path=False)],
    )


def _snapshot_options(fn: Any) -> Any:
    options = [
        click.argument("snapshot", type=click.Path(exists=True, dir_okay=False)),
        click.option("--lat", type=float, default=None, help="Reference point latitude."),
        click.option("--lon", type=float, default=None, help="Reference point longitude."),
        click.option("--busy-threshold", type=int, default=None, help="Vehicles for a busy route."),
        click.option("--distance", type=int, default=None, help="Busy-route radius in meters."),
        click.option(
            "--stale-after", type=float, default=None, help="Drop vehicles older than N seconds."
        ),
        click.option("-v", "--verbose", count=True, help="Increase verbosity (-v info, -vv debug)."),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


@click.group()
@click.version_option(package_name="routewatch")
def cli() -> None:
    """routewatch — busy/quiet route analysis for live transit vehicles."""


@cli.command()
@_snapshot_options
def analyze(
    snapshot: str,
    lat: float | None,
    lon: float | None,
    busy_threshold: int | None,
    distance: int | None,
    stale_after: float | None,
    verbose: int,
) -> None:
    """Classify routes in SNAPSHOT and show what the distance filter keeps."""
    _setup_logging(verbose)
    watch, vehicles, references = _load(snapshot, lat, lon, busy_threshold, distance, stale_after)

    activity = watch.analyze_route_activity(vehicles)
    result = watch.filter_with_metadata(vehicles, activity, reference_points=references)

    table = Table(title="Route Activity", show_header=True)
    table.add_column("Route", style="cyan")
    table.add_column("Vehicles")
    table.add_column("Classification")
    table.add_column("Shown")
    shown: dict[str, int] = {}
    for vehicle in result.vehicles:
        shown[vehicle.route_id] = shown.get(vehicle.route_id, 0) + 1
    for route_id, info in activity.items():
        style = "yellow" if info.classification == "busy" else "green"
        table.add_row(
            route_id,
            str(info.vehicle_count),
            f"[{style}]{info.classification.value}[/{style}]",
            str(shown.get(route_id, 0)),
        )
    console.print(table)

    feedback = result.feedback
    console.print(
        f"Kept {len(result.vehicles)} of {len(vehicles)} vehicles "
        f"({feedback.distance_filtered_vehicles} filtered by distance)"
    )
    if result.filtering_skipped:
        console.print("[yellow]No reference point given; distance filter not applied.[/yellow]")
    if feedback.empty_state_message:
        console.print(f"[yellow]{feedback.empty_state_message}[/yellow]")


@cli.group()
def config() -> None:
    """Configuration commands."""


@config.command("show")
def config_show() -> None:
    """Show the resolved configuration hierarchy."""
    settings = load_config_hierarchy()

    table = Table(title="Resolved Configuration", show_header=True)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key in sorted(settings):
        table.add_row(key, repr(settings[key]))
    console.print(table)


@cli.command("export")
@_snapshot_options
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["json", "csv"]),
    default="json",
    show_default=True,
    help="Export format.",
)
def export(
    snapshot: str,
    lat: float | None,
    lon: float | None,
    busy_threshold: int | None,
    distance: int | None,
    stale_after: float | None,
    verbose: int,
    fmt: str,
) -> None:
    """Analyze SNAPSHOT and print the debug export."""
    _setup_logging(verbose)
    watch, vehicles, references = _load(snapshot, lat, lon, busy_threshold, distance, stale_after)
    watch.update_config({"enable_debug_logging": True})
    activity = watch.analyze_route_activity(vehicles)
    watch.filter_vehicles(vehicles, activity, reference_points=references)
    click.echo(watch.export_debug_data(fmt))


def _load(
    snapshot: str,
    lat: float | None,
    lon: float | None,
    busy_threshold: int | None,
    distance: int | None,
    stale_after: float | None,
) -> tuple[Any, list[Any], list[Any]]:
    """Read a snapshot file and build a RouteWatch for it."""
    from routewatch.core import RouteWatch
    from routewatch.errors.exceptions import ValidationFailure
    from routewatch.ingest import parse_coordinates, parse_station, parse_vehicles

    try:
        payload = json.loads(Path(snapshot).read_text())
    except (OSError, json.JSONDecodeError) as e:
        error_console.print(f"[red]Error:[/red] cannot read snapshot: {e}")
        sys.exit(1)

    raw_vehicles = payload.get("vehicles", []) if isinstance(payload, dict) else payload
    vehicles, failures = parse_vehicles(raw_vehicles)
    if failures:
        error_console.print(f"[yellow]Skipped {len(failures)} malformed vehicle(s).[/yellow]")

    references: list[Any] = []
    try:
        if lat is not None and lon is not None:
            references.append(parse_coordinates({"latitude": lat, "longitude": lon}))
        elif isinstance(payload, dict):
            references.extend(parse_station(s) for s in payload.get("stations", []))
    except ValidationFailure as e:
        error_console.print(f"[red]Error:[/red] {e.message}")
        sys.exit(1)

    watch = RouteWatch.from_config_hierarchy(
        busy_route_threshold=busy_threshold,
        distance_filter_threshold=distance,
        stale_vehicle_seconds=stale_after,
    )
    return watch, vehicles, references


def main() -> None:
    """Entry point for the CLI."""
    cli()
