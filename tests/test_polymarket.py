"""Polymarket adapter against a mocked HTTP transport."""

import asyncio
import json

import httpx
import pytest

from packdraft.errors import VenueError
from packdraft.venues import polymarket
from packdraft.venues.base import PoolFilter
from packdraft.venues.polymarket import PolymarketVenue, parse_market, resolution_from_market
from tests.conftest import make_event

GAMMA = "https://gamma.test"
CLOB = "https://clob.test"


def _market(market_id, prices=("0.3", "0.7"), closed=False, volume=500.0, **extra):
    raw = {
        "id": market_id,
        "question": f"Market {market_id}?",
        "category": "Sports",
        "outcomes": json.dumps(["Yes", "No"]),
        "outcomePrices": json.dumps(list(prices)),
        "clobTokenIds": json.dumps([f"{market_id}-yes", f"{market_id}-no"]),
        "closed": closed,
        "active": True,
        "volume24hr": volume,
        "endDate": "2024-01-01T00:00:00Z",
    }
    raw.update(extra)
    return raw


def _venue(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PolymarketVenue(gamma_api_base=GAMMA, clob_api_base=CLOB, requests_per_sec=1000, client=client)


def test_parse_market_binary():
    ev = parse_market(_market("123"), pool_id="pool-1")
    assert ev.event_id == "polymarket:123"
    assert ev.venue_market_id == "123"
    assert ev.pool_id == "pool-1"
    assert ev.outcome_a_label == "Yes"
    assert ev.outcome_a_probability == 0.3
    assert ev.outcome_b_probability == 0.7
    assert ev.token_a == "123-yes"
    assert ev.status == "upcoming"
    assert ev.resolution_deadline == 1704067200000
    assert not ev.has_draw


def test_parse_market_three_way_has_draw():
    raw = _market("9", outcomes=json.dumps(["Home", "Away", "Draw"]))
    raw["outcomePrices"] = json.dumps(["0.4", "0.35", "0.25"])
    raw["clobTokenIds"] = json.dumps(["h", "a", "d"])
    ev = parse_market(raw)
    assert ev.has_draw
    assert ev.outcome_draw_probability == 0.25
    assert ev.token_draw == "d"


def test_parse_market_requires_id():
    with pytest.raises(ValueError):
        parse_market({"question": "no id"})


@pytest.mark.parametrize(
    "prices,closed,resolved,winner",
    [
        (("1", "0"), True, True, "a"),
        (("0", "1"), True, True, "b"),
        (("0.5", "0.5"), True, True, None),
        (("1", "0"), False, False, None),
    ],
)
def test_resolution_from_market(prices, closed, resolved, winner):
    res = resolution_from_market(_market("1", prices=prices, closed=closed))
    assert res.resolved is resolved
    assert res.winning_outcome == winner


def test_list_markets_applies_filter():
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        assert request.url.path == "/markets"
        return httpx.Response(
            200,
            json=[
                _market("1", volume=1000),
                _market("2", volume=10),
                _market("3", closed=True, volume=5000),
            ],
        )

    async def run():
        venue = _venue(handler)
        try:
            return await venue.list_markets(PoolFilter(pool_id="pool-1", tag="nfl", min_volume_24h=100))
        finally:
            await venue.aclose()

    events = asyncio.run(run())
    assert [e.event_id for e in events] == ["polymarket:1"]
    assert events[0].pool_id == "pool-1"
    assert seen["params"]["tag_slug"] == "nfl"
    assert seen["params"]["closed"] == "false"


def test_fetch_price_reads_midpoint():
    def handler(request):
        assert request.url.path == "/midpoint"
        token = request.url.params["token_id"]
        if token == "bad":
            return httpx.Response(200, json={"mid": "1.7"})
        return httpx.Response(200, json={"mid": "0.42"})

    async def run():
        venue = _venue(handler)
        return await venue.fetch_price("tok"), await venue.fetch_price("bad")

    assert asyncio.run(run()) == (0.42, None)


def test_check_resolution_and_missing_market():
    def handler(request):
        if request.url.path == "/markets/m1":
            return httpx.Response(200, json=_market("m1", prices=("0", "1"), closed=True))
        return httpx.Response(404)

    async def run():
        venue = _venue(handler)
        return (
            await venue.check_resolution(make_event(1)),
            await venue.check_resolution(make_event(2)),
        )

    settled, missing = asyncio.run(run())
    assert settled.resolved and settled.winning_outcome == "b"
    assert not missing.resolved


def test_server_and_transport_errors_raise_venue_error():
    def server_error(request):
        return httpx.Response(503)

    def transport_error(request):
        raise httpx.ConnectError("refused", request=request)

    for handler in (server_error, transport_error):
        with pytest.raises(VenueError):
            asyncio.run(_venue(handler).check_resolution(make_event(1)))


def test_rate_limited_request_is_retried(monkeypatch):
    monkeypatch.setattr(polymarket, "backoff_on_429", lambda retries, retry_after=None: 0)
    calls = []

    def handler(request):
        calls.append(request.url.path)
        if len(calls) == 1:
            return httpx.Response(429)
        return httpx.Response(200, json={"mid": "0.5"})

    assert asyncio.run(_venue(handler).fetch_price("tok")) == 0.5
    assert len(calls) == 2
