"""Prices subcommand: sync."""

from __future__ import annotations

import asyncio

import typer

from packdraft.clock import now_ms
from packdraft.ingestion.prices import sync_prices
from packdraft.storage.db import get_connection, init_schema
from packdraft.venues.polymarket import PolymarketVenue

app = typer.Typer(help="Outcome probability refresh")


@app.command("sync")
def sync(
    ctx: typer.Context,
    pool_id: str | None = typer.Option(None, "--pool", help="Only events of this pool"),
) -> None:
    """Fetch current prices for upcoming/active events. Missing prices keep the last known value."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    venue = PolymarketVenue.from_settings(settings)

    async def _run():
        try:
            return await sync_prices(conn, venue, now_ms(), timeout_sec=settings.venue_timeout_sec, pool_id=pool_id)
        finally:
            await venue.aclose()

    try:
        report = asyncio.run(_run())
    finally:
        conn.close()
    typer.echo(f"Updated {report.updated}/{report.events} events ({report.fallbacks} used last known prices).")
