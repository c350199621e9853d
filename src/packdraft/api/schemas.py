"""Pydantic schemas for API request/response consistency and OpenAPI docs."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from packdraft.models import Outcome


# --- Health ---
class HealthResponse(BaseModel):
    status: str = "ok"


# --- Error (consistent shape for 4xx/5xx) ---
class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Human-readable message")
    code: str | None = Field(None, description="Machine-readable code, e.g. invalid_input, pack_not_found")


# --- Opening ---
class OpenPackRequest(BaseModel):
    pool_slug: str
    count: int | None = Field(None, ge=1, le=20, description="Cards to draw (default: cards_per_pack)")


class PackCard(BaseModel):
    position: int
    event_id: str
    title: str
    category: str | None = None
    rarity: str
    target_rarity: str
    selection_method: str
    outcome_a_label: str
    outcome_b_label: str
    outcome_draw_label: str | None = None
    outcome_a_probability: float
    outcome_b_probability: float
    outcome_draw_probability: float | None = None
    event_start_at: int | None = None


class OpenPackResponse(BaseModel):
    pool_slug: str
    requested: int
    degraded: bool
    cards: list[PackCard]


# --- Submission ---
class PickInput(BaseModel):
    event_id: str
    position: int
    picked_outcome: Outcome


class PaymentInput(BaseModel):
    payment_ref: str
    buyer_wallet: str
    amount: float = Field(..., ge=0)


class SubmitPackRequest(BaseModel):
    pack_id: str = Field(..., min_length=1)
    profile_id: str = Field(..., min_length=1)
    pool_id: str | None = None
    picks: list[PickInput]
    payment: PaymentInput | None = None


# --- Packs ---
class PickResponse(BaseModel):
    position: int
    event_id: str
    picked_outcome: str
    probability_snapshot: float
    is_resolved: bool
    # Outcome fields stay hidden until the pick is revealed
    is_correct: bool | None = None
    points_awarded: float | None = None
    revealed: bool


class PackResponse(BaseModel):
    pack_id: str
    profile_id: str
    pool_id: str | None = None
    opened_at: int
    is_premium: bool
    current_reveal_index: int
    resolved_count: int
    revealed_count: int
    total_points: float
    resolution_status: str
    status: str
    status_message: str
    next_revealable_position: int | None
    pending_positions: list[int]
    queued_positions: list[int]
    is_fully_revealed: bool
    max_potential_points: float
    combined_probability: float
    picks: list[PickResponse]
    already_exists: bool = False


class PacksListResponse(BaseModel):
    packs: list[PackResponse]
    total: int


class WeeklyStatusResponse(BaseModel):
    profile_id: str
    weekly_limit: int
    packs_opened_this_week: int
    packs_remaining: int | None
    can_open_pack: bool
    week_start: int
    week_end: int


class RevealResponse(BaseModel):
    success: bool
    reason: str | None = None
    pick: PickResponse | None = None
    pack: PackResponse | None = None


# --- Leaderboard ---
class LeaderboardEntry(BaseModel):
    rank: int
    profile_id: str
    total_points: float
    packs_opened: int
    accuracy: float


class LeaderboardResponse(BaseModel):
    week_start: int
    week_end: int
    entries: list[LeaderboardEntry]
    total: int


# --- Cron ---
class SweepResponse(BaseModel):
    summary: dict[str, Any]
    errors: list[dict[str, Any]] = Field(default_factory=list)


class PriceSyncResponse(BaseModel):
    events: int
    updated: int
    fallbacks: int
    errors: list[dict[str, Any]] = Field(default_factory=list)
