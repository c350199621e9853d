"""Pools subcommand: sync, list."""

from __future__ import annotations

import asyncio

import typer

from packdraft.clock import now_ms
from packdraft.errors import VenueError
from packdraft.ingestion.pools import ingest_pool
from packdraft.models import Pool
from packdraft.storage.db import get_connection, init_schema
from packdraft.storage.pools import get_pool_by_slug, list_pools
from packdraft.venues.base import PoolFilter
from packdraft.venues.polymarket import PolymarketVenue

app = typer.Typer(help="Event pools: discovery and listing")


@app.command("sync")
def sync(
    ctx: typer.Context,
    slug: str = typer.Argument(..., help="Pool slug, e.g. nfl-week-3"),
    name: str | None = typer.Option(None, "--name", help="Display name (default: slug)"),
    tag: str | None = typer.Option(None, "--tag", "-t", help="Venue tag to filter markets by"),
    limit: int = typer.Option(100, "--limit", "-n", help="Max markets to fetch"),
    pack_type: str = typer.Option("sports", "--pack-type", help="Pack theme"),
    min_events: int = typer.Option(5, "--min-events", help="Events required before packs can open"),
    min_volume: float = typer.Option(0.0, "--min-volume", help="Minimum 24h volume"),
    min_liquidity: float = typer.Option(0.0, "--min-liquidity", help="Minimum liquidity"),
) -> None:
    """Fetch candidate markets from Polymarket and upsert them into a pool."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    existing = get_pool_by_slug(conn, slug, with_events=False)
    pool = Pool(
        pool_id=existing.pool_id if existing else slug,
        slug=slug,
        name=name or (existing.name if existing else slug),
        venue="polymarket",
        pack_type=pack_type,
        min_events_required=min_events,
    )
    pool_filter = PoolFilter(
        pool_id=pool.pool_id,
        limit=limit,
        tag=tag,
        min_volume_24h=min_volume,
        min_liquidity=min_liquidity,
    )
    venue = PolymarketVenue.from_settings(settings)

    async def _run():
        try:
            return await ingest_pool(conn, venue, pool, pool_filter, now_ms())
        finally:
            await venue.aclose()

    try:
        report = asyncio.run(_run())
    except VenueError as e:
        typer.echo(f"Venue error: {e}", err=True)
        raise typer.Exit(1)
    finally:
        conn.close()
    typer.echo(f"Fetched {report.fetched} markets, upserted {report.upserted} into pool '{slug}'.")
    if report.skipped_settled:
        typer.echo(f"Skipped {report.skipped_settled} already settled events.")


@app.command("list")
def list_cmd(
    ctx: typer.Context,
    active_only: bool = typer.Option(False, "--active", help="Show only active pools"),
) -> None:
    """List pools in local store."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        rows = list_pools(conn, active_only=active_only)
        for r in rows:
            flag = "" if r["is_active"] else " (inactive)"
            typer.echo(f"  {r['slug'][:30]:30}  {r['pack_type']:10}  {r['event_count']:4} events{flag}")
        typer.echo(f"Total: {len(rows)} pools")
    finally:
        conn.close()
