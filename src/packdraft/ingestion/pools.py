"""Pool ingestion - discover venue markets and upsert them as pool events."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from packdraft.errors import VenueError
from packdraft.models import Pool
from packdraft.storage.events import get_events, upsert_event
from packdraft.storage.pools import upsert_pool
from packdraft.storage.sync_log import complete_sync, start_sync

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

    from packdraft.venues.base import MarketVenue, PoolFilter

log = structlog.get_logger(__name__)


@dataclass
class IngestReport:
    pool_id: str
    fetched: int = 0
    upserted: int = 0
    skipped_settled: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)


async def ingest_pool(
    conn: DuckDBPyConnection,
    venue: MarketVenue,
    pool: Pool,
    pool_filter: PoolFilter,
    now_ms: int,
) -> IngestReport:
    """Fetch candidate markets for a pool and store them.

    Events already resolved or cancelled locally are left untouched. A venue
    failure is recorded in the sync log and re-raised as VenueError.
    """
    report = IngestReport(pool_id=pool.pool_id)
    sync_id = start_sync(conn, "pool_ingest", now_ms)
    upsert_pool(conn, pool, now_ms)
    pool_filter = pool_filter.model_copy(update={"pool_id": pool.pool_id})

    try:
        events = await venue.list_markets(pool_filter)
    except VenueError as e:
        log.warning("pool_ingest_failed", pool_id=pool.pool_id, error=str(e))
        report.errors.append({"pool_id": pool.pool_id, "error": str(e)})
        complete_sync(conn, sync_id, 0, report.errors, now_ms, failed=True)
        raise

    report.fetched = len(events)
    existing = get_events(conn, [e.event_id for e in events])
    for event in events:
        stored = existing.get(event.event_id)
        if stored is not None and stored.status in ("resolved", "cancelled"):
            report.skipped_settled += 1
            continue
        upsert_event(
            conn,
            event.model_copy(update={"pool_id": pool.pool_id, "last_price_sync_at": now_ms}),
            now_ms,
        )
        report.upserted += 1

    complete_sync(conn, sync_id, report.upserted, report.errors, now_ms)
    log.info(
        "pool_ingested",
        pool_id=pool.pool_id,
        slug=pool.slug,
        fetched=report.fetched,
        upserted=report.upserted,
        skipped_settled=report.skipped_settled,
    )
    return report
