"""Pack, Pick, PickDraft - a player's opened pack and its ordered slots."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator

from packdraft.models.event import Outcome

ResolutionStatus = Literal["pending", "partially_resolved", "fully_resolved"]


class Pick(BaseModel):
    """One ordered slot in a pack. probability_snapshot is frozen at pick time."""

    pick_id: str
    pack_id: str
    event_id: str
    position: int = Field(..., ge=1)
    picked_outcome: Outcome
    picked_at: int  # ms epoch
    probability_snapshot: float = Field(..., ge=0, le=1)
    opposite_probability_snapshot: float | None = Field(None, ge=0, le=1)
    draw_probability_snapshot: float | None = Field(None, ge=0, le=1)
    is_resolved: bool = False
    is_correct: bool | None = None
    points_awarded: float = 0.0
    resolved_at: int | None = None
    reveal_animation_played: bool = False

    @model_validator(mode="after")
    def _revealed_implies_resolved(self) -> Pick:
        if self.reveal_animation_played and not self.is_resolved:
            raise ValueError("a pick cannot be revealed before it is resolved")
        return self


class Pack(BaseModel):
    """Pack opened by one profile. Aggregates are owned by the ledger."""

    pack_id: str
    profile_id: str
    pool_id: str | None = None
    opened_at: int  # ms epoch
    current_reveal_index: int = Field(0, ge=0)
    total_points: float = 0.0
    correct_picks: int = 0
    resolution_status: ResolutionStatus = "pending"
    is_premium: bool = False
    payment_ref: str | None = None
    payment_amount: float | None = None
    buyer_wallet: str | None = None
    last_reveal_at: int | None = None
    fully_resolved_at: int | None = None
    picks: list[Pick] = Field(default_factory=list)

    def sorted_picks(self) -> list[Pick]:
        return sorted(self.picks, key=lambda p: p.position)

    def pick_at(self, position: int) -> Pick | None:
        for p in self.picks:
            if p.position == position:
                return p
        return None


class PickDraft(BaseModel):
    """Client-submitted pick before it is persisted."""

    event_id: str
    position: int
    picked_outcome: Outcome
    picked_at: int | None = None
