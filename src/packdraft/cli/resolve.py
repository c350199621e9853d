"""Resolve subcommand: sweep, run, reconcile."""

from __future__ import annotations

import asyncio
import signal
import sys

import typer

from packdraft.clock import now_ms
from packdraft.resolution.scheduler import ResolutionScheduler
from packdraft.resolution.settlement import reconcile as reconcile_settlements
from packdraft.storage.db import get_connection, init_schema
from packdraft.storage.queue import list_entries
from packdraft.storage.sync_log import recent_syncs
from packdraft.venues.polymarket import PolymarketVenue

app = typer.Typer(help="Event resolution: sweeps, continuous scheduler, reconciliation")


@app.command("sweep")
def sweep(ctx: typer.Context) -> None:
    """Run one resolution sweep: activate, poll due events, settle, back off."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    venue = PolymarketVenue.from_settings(settings)
    scheduler = ResolutionScheduler.from_settings(conn, venue, settings)

    async def _run():
        try:
            return await scheduler.sweep()
        finally:
            await venue.aclose()

    try:
        report = asyncio.run(_run())
    finally:
        conn.close()
    for key, value in report.summary().items():
        typer.echo(f"  {key}: {value}")
    for stats in report.settled:
        typer.echo(
            f"  settled {stats.event_id} -> {stats.winning_outcome}: "
            f"{stats.picks_resolved} picks, {stats.points_awarded:.2f} pts"
        )


@app.command("run")
def run(
    ctx: typer.Context,
    interval: float | None = typer.Option(None, "--interval", "-i", help="Seconds between sweeps (overrides config)"),
) -> None:
    """Sweep continuously. Overrunning sweeps skip missed ticks instead of overlapping."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    venue = PolymarketVenue.from_settings(settings)
    scheduler = ResolutionScheduler.from_settings(conn, venue, settings)
    stop_event = asyncio.Event()

    def shutdown() -> None:
        stop_event.set()

    loop = asyncio.new_event_loop()
    if sys.platform != "win32":
        loop.add_signal_handler(signal.SIGINT, shutdown)
        loop.add_signal_handler(signal.SIGTERM, shutdown)
    try:
        typer.echo("Starting resolution scheduler (Ctrl+C to stop)...")
        loop.run_until_complete(scheduler.run_forever(interval or settings.sweep_interval_sec, stop_event))
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(venue.aclose())
        loop.close()
        conn.close()
    typer.echo("Stopped.")


@app.command("reconcile")
def reconcile(ctx: typer.Context) -> None:
    """Finish settlement for resolved events that still have unresolved picks."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        results = reconcile_settlements(conn, now_ms())
        for stats in results:
            typer.echo(f"  {stats.event_id}: {stats.picks_resolved} picks resolved")
        typer.echo(f"Reconciled {len(results)} events.")
    finally:
        conn.close()


@app.command("status")
def status(ctx: typer.Context) -> None:
    """Show queued events and recent sweeps."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        entries = list_entries(conn)
        typer.echo(f"Queued events: {len(entries)}")
        for e in entries[:20]:
            typer.echo(f"  {e.event_id[:40]:40}  checks={e.check_count}  next={e.next_check_at}  prio={e.priority}")
        typer.echo("Recent sweeps:")
        for s in recent_syncs(conn, sync_type="resolution_check", limit=5):
            typer.echo(f"  #{s['id']}  {s['status']:9}  processed={s['items_processed']}  errors={len(s['errors'] or [])}")
    finally:
        conn.close()
