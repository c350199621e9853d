"""Event, Pool - market snapshots eligible for packs."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator

Outcome = Literal["a", "b", "draw"]
EventStatus = Literal["upcoming", "active", "resolved", "cancelled"]

OPEN_STATUSES: tuple[str, ...] = ("upcoming", "active")


class Event(BaseModel):
    """A venue market with two (or three) outcomes and live probabilities."""

    event_id: str
    venue: str = "polymarket"
    venue_market_id: str
    pool_id: str | None = None
    title: str = ""
    category: str | None = None
    outcome_a_label: str = "Yes"
    outcome_b_label: str = "No"
    outcome_a_probability: float = Field(0.5, ge=0, le=1)
    outcome_b_probability: float = Field(0.5, ge=0, le=1)
    outcome_draw_label: str | None = None
    outcome_draw_probability: float | None = Field(None, ge=0, le=1)
    token_a: str | None = None  # venue token ids, used for price lookups
    token_b: str | None = None
    token_draw: str | None = None
    status: EventStatus = "upcoming"
    winning_outcome: Outcome | None = None
    event_start_at: int | None = None  # ms epoch
    resolution_deadline: int | None = None
    resolved_at: int | None = None
    last_price_sync_at: int | None = None

    @model_validator(mode="after")
    def _winner_matches_status(self) -> Event:
        if (self.status == "resolved") != (self.winning_outcome is not None):
            raise ValueError("winning_outcome must be set exactly when status is 'resolved'")
        return self

    @property
    def has_draw(self) -> bool:
        return self.outcome_draw_probability is not None

    @property
    def p_low(self) -> float:
        """Smallest outcome probability; drives rarity."""
        probs = [self.outcome_a_probability, self.outcome_b_probability]
        if self.outcome_draw_probability is not None:
            probs.append(self.outcome_draw_probability)
        return min(probs)

    def probability_of(self, outcome: str) -> float | None:
        if outcome == "a":
            return self.outcome_a_probability
        if outcome == "b":
            return self.outcome_b_probability
        if outcome == "draw":
            return self.outcome_draw_probability
        return None

    def token_for(self, outcome: str) -> str | None:
        return {"a": self.token_a, "b": self.token_b, "draw": self.token_draw}.get(outcome)


class Pool(BaseModel):
    """Named, venue-scoped, time-windowed set of events for one pack theme."""

    pool_id: str
    slug: str
    name: str = ""
    venue: str = "polymarket"
    pack_type: str = "sports"
    min_events_required: int = 5
    is_active: bool = True
    starts_at: int | None = None  # ms epoch
    ends_at: int | None = None
    events: list[Event] = Field(default_factory=list)

    def is_open(self, now_ms: int) -> bool:
        if not self.is_active:
            return False
        if self.starts_at is not None and now_ms < self.starts_at:
            return False
        if self.ends_at is not None and now_ms > self.ends_at:
            return False
        return True

    @property
    def candidates(self) -> list[Event]:
        """Events that can still be drafted."""
        return [e for e in self.events if e.status in OPEN_STATUSES]
