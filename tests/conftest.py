"""Shared fixtures: temporary DuckDB, in-memory venue, event/pack seeding helpers."""

import asyncio
import tempfile
from pathlib import Path

import pytest

from packdraft.errors import VenueError
from packdraft.models import Event, PickDraft, Pool
from packdraft.packs.service import submit_pack
from packdraft.storage.db import get_connection, init_schema
from packdraft.storage.events import upsert_event
from packdraft.storage.pools import upsert_pool
from packdraft.venues.base import MarketVenue, PoolFilter, VenueResolution

T0 = 1_700_000_000_000  # fixed "now" in ms


@pytest.fixture
def temp_db():
    tmp = tempfile.mkdtemp()
    path = Path(tmp) / "test.duckdb"
    conn = get_connection(path)
    init_schema(conn)
    yield conn
    conn.close()
    path.unlink(missing_ok=True)
    Path(tmp).rmdir()


class FakeVenue(MarketVenue):
    """In-memory venue. Resolutions, prices and failures are set per event/token."""

    venue_id = "polymarket"

    def __init__(self, markets=None, prices=None, resolutions=None, delays=None, errors=None):
        self.markets = list(markets or [])
        self.prices = dict(prices or {})
        self.resolutions = dict(resolutions or {})
        self.delays = dict(delays or {})
        self.errors = dict(errors or {})
        self.checked = []
        self.closed = False

    async def list_markets(self, pool_filter: PoolFilter) -> list[Event]:
        if "list_markets" in self.errors:
            raise self.errors["list_markets"]
        return list(self.markets)[: pool_filter.limit]

    async def fetch_price(self, token_ref: str) -> float | None:
        if token_ref in self.delays:
            await asyncio.sleep(self.delays[token_ref])
        if token_ref in self.errors:
            raise self.errors[token_ref]
        return self.prices.get(token_ref)

    async def check_resolution(self, event: Event) -> VenueResolution:
        self.checked.append(event.event_id)
        if event.event_id in self.delays:
            await asyncio.sleep(self.delays[event.event_id])
        if event.event_id in self.errors:
            raise self.errors[event.event_id]
        return self.resolutions.get(event.event_id, VenueResolution(resolved=False))

    def settle(self, event_id: str, outcome: str) -> None:
        self.resolutions[event_id] = VenueResolution(resolved=True, winning_outcome=outcome, winning_price=1.0)

    async def aclose(self) -> None:
        self.closed = True


def make_event(
    n,
    p_a=0.5,
    status="upcoming",
    pool_id="pool-1",
    start=None,
    draw=None,
    tokens=True,
) -> Event:
    """Binary event polymarket:m<n> with P(a)=p_a; draw adds a third outcome."""
    p_b = round(1.0 - p_a - (draw or 0.0), 4)
    return Event(
        event_id=f"polymarket:m{n}",
        venue="polymarket",
        venue_market_id=f"m{n}",
        pool_id=pool_id,
        title=f"Market {n}",
        outcome_a_probability=p_a,
        outcome_b_probability=p_b,
        outcome_draw_label="Draw" if draw is not None else None,
        outcome_draw_probability=draw,
        token_a=f"t{n}a" if tokens else None,
        token_b=f"t{n}b" if tokens else None,
        token_draw=f"t{n}d" if (tokens and draw is not None) else None,
        status=status,
        event_start_at=start,
    )


def seed_events(conn, events, now=T0):
    for ev in events:
        upsert_event(conn, ev, now)
    return events


def seed_pool(conn, slug="week-1", pool_id="pool-1", events=(), min_events=1, now=T0, **kwargs) -> Pool:
    pool = Pool(pool_id=pool_id, slug=slug, name=slug, min_events_required=min_events, **kwargs)
    upsert_pool(conn, pool, now)
    seed_events(conn, events, now)
    return pool


def submit(conn, pack_id, event_ids, outcome="a", profile_id="p1", now=T0, **kwargs):
    """Submit a free pack picking `outcome` on each event, positions in list order."""
    drafts = [
        PickDraft(event_id=eid, position=i, picked_outcome=outcome)
        for i, eid in enumerate(event_ids, start=1)
    ]
    return asyncio.run(submit_pack(conn, pack_id, profile_id, drafts, now, **kwargs))


def venue_down(message="boom"):
    return VenueError(message)
