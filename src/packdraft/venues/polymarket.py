"""Polymarket venue - Gamma API for markets/settlement, CLOB API for prices."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from packdraft.errors import VenueError
from packdraft.models import Event
from packdraft.storage.events import event_id_for
from packdraft.venues.base import MarketVenue, PoolFilter, VenueResolution
from packdraft.venues.rate_limit import TokenBucket, backoff_on_429

if TYPE_CHECKING:
    from packdraft.config import Settings

log = structlog.get_logger(__name__)

GAMMA_API_BASE = "https://gamma-api.polymarket.com"
CLOB_API_BASE = "https://clob.polymarket.com"

# A settled outcome trades at (or within a hair of) 1.0
WINNING_PRICE = 0.99
MAX_429_RETRIES = 3


def _json_list(value: str | list[Any] | None) -> list[Any]:
    """Gamma encodes some list fields as JSON strings."""
    if isinstance(value, list):
        return value
    if not value:
        return []
    try:
        parsed = json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return []
    return parsed if isinstance(parsed, list) else []


def _float(s: str | float | None) -> float | None:
    if s is None:
        return None
    try:
        return float(s)
    except (TypeError, ValueError):
        return None


def _iso_to_ms(value: str | None) -> int | None:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return int(dt.timestamp() * 1000)


def _clamp_prob(p: float | None, default: float) -> float:
    if p is None:
        return default
    return max(0.0, min(1.0, p))


def parse_market(raw: dict[str, Any], venue: str = "polymarket", pool_id: str | None = None) -> Event:
    """Convert a Gamma market object to a canonical Event (status upcoming)."""
    market_id = str(raw.get("id", ""))
    if not market_id:
        raise ValueError("market has no id")
    names = _json_list(raw.get("outcomes"))
    prices = [_float(p) for p in _json_list(raw.get("outcomePrices"))]
    tokens = [str(t) for t in _json_list(raw.get("clobTokenIds"))]
    # Align lengths
    while len(names) < 2:
        names.append("Yes" if not names else "No")
    while len(prices) < len(names):
        prices.append(None)
    while len(tokens) < len(names):
        tokens.append("")
    has_draw = len(names) >= 3
    return Event(
        event_id=event_id_for(venue, market_id),
        venue=venue,
        venue_market_id=market_id,
        pool_id=pool_id,
        title=raw.get("question") or raw.get("title") or "",
        category=raw.get("category"),
        outcome_a_label=str(names[0]),
        outcome_b_label=str(names[1]),
        outcome_a_probability=_clamp_prob(prices[0], 0.5),
        outcome_b_probability=_clamp_prob(prices[1], 0.5),
        outcome_draw_label=str(names[2]) if has_draw else None,
        outcome_draw_probability=_clamp_prob(prices[2], 0.0) if has_draw else None,
        token_a=tokens[0] or None,
        token_b=tokens[1] or None,
        token_draw=(tokens[2] or None) if has_draw else None,
        status="upcoming",
        event_start_at=_iso_to_ms(raw.get("gameStartTime") or raw.get("startDate")),
        resolution_deadline=_iso_to_ms(raw.get("endDate")),
    )


def resolution_from_market(raw: dict[str, Any]) -> VenueResolution:
    """Closed market whose outcome price reached ~1.0 is settled for that outcome."""
    if not raw.get("closed"):
        return VenueResolution(resolved=False)
    prices = [_float(p) or 0.0 for p in _json_list(raw.get("outcomePrices"))]
    for outcome, price in zip(("a", "b", "draw"), prices):
        if price > WINNING_PRICE:
            return VenueResolution(resolved=True, winning_outcome=outcome, winning_price=price)
    return VenueResolution(resolved=True)


def _passes(raw: dict[str, Any], event: Event, pool_filter: PoolFilter) -> bool:
    volume = _float(raw.get("volume24hr")) or 0.0
    liquidity = _float(raw.get("liquidityNum") or raw.get("liquidity")) or 0.0
    if volume < pool_filter.min_volume_24h or liquidity < pool_filter.min_liquidity:
        return False
    category = event.category
    if category and pool_filter.category_denylist and category in pool_filter.category_denylist:
        return False
    if category and pool_filter.category_allowlist and category not in pool_filter.category_allowlist:
        return False
    start = event.event_start_at
    if pool_filter.starts_after is not None and (start is None or start < pool_filter.starts_after):
        return False
    if pool_filter.starts_before is not None and (start is None or start > pool_filter.starts_before):
        return False
    return True


class PolymarketVenue(MarketVenue):
    """Async Polymarket adapter. Transport failures surface as VenueError."""

    venue_id = "polymarket"

    def __init__(
        self,
        gamma_api_base: str = GAMMA_API_BASE,
        clob_api_base: str = CLOB_API_BASE,
        timeout: float = 10.0,
        requests_per_sec: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.gamma_api_base = gamma_api_base.rstrip("/")
        self.clob_api_base = clob_api_base.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._bucket = TokenBucket(rate=requests_per_sec)

    @classmethod
    def from_settings(cls, settings: Settings) -> PolymarketVenue:
        return cls(
            gamma_api_base=settings.gamma_api_base,
            clob_api_base=settings.clob_api_base,
            timeout=settings.venue_timeout_sec,
            requests_per_sec=settings.venue_requests_per_sec,
        )

    async def _get(self, url: str, params: dict[str, Any] | None = None) -> Any:
        retries = 0
        while True:
            await self._bucket.acquire()
            try:
                resp = await self._client.get(url, params=params)
            except httpx.HTTPError as e:
                raise VenueError(f"GET {url} failed: {e}") from e
            if resp.status_code == 429 and retries < MAX_429_RETRIES:
                delay = backoff_on_429(retries, resp.headers.get("Retry-After"))
                log.warning("venue_rate_limited", url=url, delay=delay)
                retries += 1
                await asyncio.sleep(delay)
                continue
            if resp.status_code == 404:
                return None
            try:
                resp.raise_for_status()
                return resp.json()
            except (httpx.HTTPStatusError, ValueError) as e:
                raise VenueError(f"GET {url} returned {resp.status_code}") from e

    async def list_markets(self, pool_filter: PoolFilter) -> list[Event]:
        params: dict[str, Any] = {
            "limit": pool_filter.limit,
            "closed": "false",
            "active": "true",
            "order": "volume24hr",
            "ascending": "false",
        }
        if pool_filter.tag:
            params["tag_slug"] = pool_filter.tag
        data = await self._get(f"{self.gamma_api_base}/markets", params=params)
        if not isinstance(data, list):
            data = data.get("data", []) if isinstance(data, dict) else []
        events = []
        for row in data:
            if row.get("closed") is True or row.get("active") is False:
                continue
            try:
                event = parse_market(row, venue=self.venue_id, pool_id=pool_filter.pool_id)
            except Exception as e:
                log.warning("skip_market", market_id=row.get("id"), error=str(e))
                continue
            if _passes(row, event, pool_filter):
                events.append(event)
        return events

    async def fetch_price(self, token_ref: str) -> float | None:
        data = await self._get(f"{self.clob_api_base}/midpoint", params={"token_id": token_ref})
        if not isinstance(data, dict):
            return None
        price = _float(data.get("mid"))
        if price is None or not (0 <= price <= 1):
            return None
        return price

    async def check_resolution(self, event: Event) -> VenueResolution:
        data = await self._get(f"{self.gamma_api_base}/markets/{event.venue_market_id}")
        if not isinstance(data, dict):
            log.warning("market_not_found", event_id=event.event_id, market_id=event.venue_market_id)
            return VenueResolution(resolved=False)
        return resolution_from_market(data)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
