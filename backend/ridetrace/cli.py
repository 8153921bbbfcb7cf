"""RideTrace CLI: SimRa ride import and street usage analysis.

Commands:
  import    — import new ride files (and map-match them if a road network is configured)
  match     — map-match stored rides that have no matching result yet
  status    — database contents and the last import run
  segments  — most used street segments, optional CSV/Parquet export
"""
from __future__ import annotations

import logging
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ridetrace.config import settings


app = typer.Typer(
    name="ridetrace",
    help="SimRa bicycle ride import and street usage analysis.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
):
    logging.basicConfig(
        level=(log_level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build_matching(session_factory):
    """Matcher pool and segment aggregator over the configured road network.

    Returns (None, None) when OSM_FILE is not set.
    """
    if not settings.OSM_FILE:
        return None, None

    from ridetrace.modules.map_matching import MatcherPool
    from ridetrace.modules.road_network import OsmRoadNetwork, create_matcher_pool_factory
    from ridetrace.modules.segment_aggregator import SegmentAggregator

    with console.status("[bold]Loading road network..."):
        network = OsmRoadNetwork.load(settings.OSM_FILE, settings.GRAPH_CACHE_DIR)
    pool = MatcherPool(create_matcher_pool_factory(network, settings.MATCH_MAX_SNAP_METERS))
    aggregator = SegmentAggregator(session_factory, network=network)
    return pool, aggregator


def _summary_table(title: str, rows: dict) -> Table:
    table = Table(title=title)
    table.add_column("", style="bold")
    table.add_column("Count", justify="right")
    for key, value in rows.items():
        table.add_row(key.replace("_", " "), f"{value:,}")
    return table


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("import")
def import_command(
    root: Optional[str] = typer.Argument(None, help="SimRa export root (default: IMPORT_ROOT)"),
    workers: Optional[int] = typer.Option(None, "--workers", min=1, help="Worker threads (default: IMPORT_WORKERS)"),
    no_match: bool = typer.Option(False, "--no-match", help="Import only, skip map matching"),
):
    """Import new SimRa ride files."""
    from ridetrace.database import init_db, SessionLocal
    from ridetrace.modules.importer import import_rides

    init_db()

    pool = aggregator = None
    if no_match:
        console.print("[dim]Map matching disabled for this run.[/dim]")
    else:
        try:
            pool, aggregator = _build_matching(SessionLocal)
        except (FileNotFoundError, ValueError) as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)
        if pool is None:
            console.print("[yellow]OSM_FILE not set; rides will be imported without map matching.[/yellow]")

    summary = import_rides(
        root,
        session_factory=SessionLocal,
        workers=workers,
        matcher_pool=pool,
        aggregator=aggregator,
    )
    summary.pop("run_id", None)
    if summary["files_found"] == 0:
        console.print("[green]No new ride files to import.[/green]")
        return

    console.print(_summary_table("Import summary", summary))
    if summary["failed"]:
        console.print(
            f"[yellow]{summary['failed']} file(s) failed; they will be retried on the next run.[/yellow]"
        )


@app.command("match")
def match_command(
    workers: Optional[int] = typer.Option(None, "--workers", min=1, help="Worker threads (default: IMPORT_WORKERS)"),
):
    """Map-match stored rides that have no matching result yet."""
    from ridetrace.database import init_db, SessionLocal
    from ridetrace.modules.importer import effective_worker_count
    from ridetrace.modules.ride_matching import match_pending_rides

    init_db()
    try:
        pool, aggregator = _build_matching(SessionLocal)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    if pool is None:
        console.print("[red]OSM_FILE is not set; nothing to match against.[/red]")
        raise typer.Exit(1)

    stats = match_pending_rides(SessionLocal, pool, aggregator, effective_worker_count(workers))
    console.print(_summary_table("Matching summary", stats))


@app.command("status")
def status():
    """Show database contents and the last import run."""
    from ridetrace.database import init_db, SessionLocal
    from ridetrace.models import ImportRun, Incident, Ride, RidePoint, StreetSegment

    init_db()
    db = SessionLocal()
    try:
        ride_count = db.query(Ride).count()
        matched_count = db.query(Ride).filter(Ride.traversed_edge_ids.isnot(None)).count()

        console.print("[bold]Data[/bold]")
        console.print(f"  Rides: {ride_count:,} ({matched_count:,} map-matched)")
        console.print(f"  Points: {db.query(RidePoint).count():,}")
        console.print(f"  Incidents: {db.query(Incident).count():,}")
        console.print(f"  Street segments: {db.query(StreetSegment).count():,}")

        console.print("\n[bold]Last import[/bold]")
        last_run = db.query(ImportRun).order_by(ImportRun.run_id.desc()).first()
        if last_run is None:
            console.print("  [dim]Never imported[/dim]")
            console.print("\nRun [cyan]ridetrace import[/cyan] to load SimRa rides.")
            return

        status_value = getattr(last_run.status, "value", last_run.status)
        color = {"completed": "green", "failed": "red"}.get(status_value, "yellow")
        console.print(f"  Root: {last_run.import_root}")
        console.print(f"  Started: {str(last_run.started_at)[:19]}  Status: [{color}]{status_value}[/{color}]")
        console.print(
            f"  {last_run.imported:,} imported, {last_run.skipped_empty:,} empty, "
            f"[{'red' if last_run.failed else 'dim'}]{last_run.failed:,} failed[/] "
            f"of {last_run.files_found:,} files"
        )
    finally:
        db.close()


@app.command("segments")
def segments(
    limit: int = typer.Option(20, "--limit", min=1, help="Number of segments to list"),
    export: Optional[str] = typer.Option(None, "--export", help="Write all segments to a .csv or .parquet file"),
):
    """List the most used street segments."""
    from ridetrace.database import init_db, SessionLocal
    from ridetrace.modules.segment_report import export_segment_usage, top_segments

    init_db()
    db = SessionLocal()
    try:
        rows = top_segments(db, limit=limit)
        if not rows:
            console.print("[dim]No street segments recorded yet.[/dim]")
        else:
            table = Table(title=f"Top {len(rows)} street segments")
            table.add_column("Edge", justify="right")
            table.add_column("Street")
            table.add_column("Rides", justify="right")
            for seg in rows:
                table.add_row(str(seg.edge_id), seg.street_name, f"{seg.usage_count:,}")
            console.print(table)

        if export:
            try:
                written = export_segment_usage(db, export)
            except ValueError as e:
                console.print(f"[red]{e}[/red]")
                raise typer.Exit(1)
            console.print(f"[green]Exported {written:,} segments to {export}[/green]")
    finally:
        db.close()


if __name__ == "__main__":
    app()
