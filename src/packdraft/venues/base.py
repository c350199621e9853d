"""Abstract market venue: discovery, prices, settlement checks."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from pydantic import BaseModel, Field

from packdraft.models import Event, Outcome


class PoolFilter(BaseModel):
    """Which venue markets belong in a pool."""

    pool_id: str | None = None
    limit: int = Field(100, ge=1, le=1000)
    tag: str | None = None
    category_allowlist: list[str] = Field(default_factory=list)
    category_denylist: list[str] = Field(default_factory=list)
    min_volume_24h: float = 0.0
    min_liquidity: float = 0.0
    starts_after: int | None = None  # ms epoch
    starts_before: int | None = None


@dataclass(frozen=True)
class VenueResolution:
    """Settlement check result. resolved with no winner means the venue closed
    the market without a determinate outcome yet."""

    resolved: bool
    winning_outcome: Outcome | None = None
    winning_price: float | None = None


class MarketVenue(ABC):
    """Implement for each exchange. All calls may raise VenueError."""

    venue_id: str = ""

    @abstractmethod
    async def list_markets(self, pool_filter: PoolFilter) -> list[Event]:
        """Return candidate events (status upcoming) for a pool."""
        ...

    @abstractmethod
    async def fetch_price(self, token_ref: str) -> float | None:
        """Current probability for one outcome token, or None if unavailable."""
        ...

    @abstractmethod
    async def check_resolution(self, event: Event) -> VenueResolution:
        ...

    async def aclose(self) -> None:
        return None
