"""Price sync - refresh outcome probabilities of draftable events from the venue."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from packdraft.errors import VenueError
from packdraft.models import OPEN_STATUSES, Event
from packdraft.storage.events import list_events, update_event_prices
from packdraft.storage.sync_log import complete_sync, start_sync

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

    from packdraft.venues.base import MarketVenue

log = structlog.get_logger(__name__)


@dataclass
class PriceSyncReport:
    events: int = 0
    updated: int = 0
    fallbacks: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)


async def _fetch(venue: MarketVenue, token: str | None, timeout_sec: float) -> float | None:
    """One token price, or None on any venue failure."""
    if not token:
        return None
    try:
        return await asyncio.wait_for(venue.fetch_price(token), timeout=timeout_sec)
    except asyncio.TimeoutError:
        log.warning("price_fetch_timeout", token=token)
    except VenueError as e:
        log.warning("price_fetch_failed", token=token, error=str(e))
    return None


async def _prices_for(
    venue: MarketVenue,
    event: Event,
    timeout_sec: float,
) -> tuple[float, float, float | None, bool]:
    """Fresh (a, b, draw) for an event, last known value substituted per missing outcome.
    The last flag is True when any outcome fell back."""
    a = await _fetch(venue, event.token_a, timeout_sec)
    b = await _fetch(venue, event.token_b, timeout_sec)
    draw = await _fetch(venue, event.token_draw, timeout_sec) if event.has_draw else None

    # Binary market with only one side priced: the other side is the complement
    if not event.has_draw:
        if a is not None and b is None and not event.token_b:
            b = round(1.0 - a, 4)
        elif b is not None and a is None and not event.token_a:
            a = round(1.0 - b, 4)

    fell_back = a is None or b is None or (event.has_draw and draw is None)
    return (
        a if a is not None else event.outcome_a_probability,
        b if b is not None else event.outcome_b_probability,
        draw if draw is not None else event.outcome_draw_probability,
        fell_back,
    )


async def sync_prices(
    conn: DuckDBPyConnection,
    venue: MarketVenue,
    now_ms: int,
    timeout_sec: float = 10.0,
    pool_id: str | None = None,
) -> PriceSyncReport:
    """Refresh probabilities of every upcoming/active event. Never raises for venue outages."""
    report = PriceSyncReport()
    sync_id = start_sync(conn, "price_sync", now_ms)
    events = list_events(conn, pool_id=pool_id, statuses=OPEN_STATUSES)
    report.events = len(events)

    for event in events:
        try:
            a, b, draw, fell_back = await _prices_for(venue, event, timeout_sec)
        except Exception as e:
            log.warning("price_sync_event_failed", event_id=event.event_id, error=repr(e))
            report.errors.append({"event_id": event.event_id, "error": repr(e)})
            report.fallbacks += 1
            continue
        if fell_back:
            report.fallbacks += 1
        if update_event_prices(conn, event.event_id, a, b, draw, now_ms):
            report.updated += 1

    complete_sync(conn, sync_id, report.updated, report.errors, now_ms)
    log.info(
        "prices_synced",
        events=report.events,
        updated=report.updated,
        fallbacks=report.fallbacks,
        failed=len(report.errors),
    )
    return report
