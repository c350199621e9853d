"""Pack aggregates, always recomputed from the full pick set."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from packdraft.errors import DataIntegrityError
from packdraft.game.scoring import pack_bonus, round2
from packdraft.models import Pick, ResolutionStatus


@dataclass(frozen=True)
class LedgerSnapshot:
    total_picks: int
    resolved_count: int
    revealed_count: int
    correct_count: int
    pack_bonus: float
    total_points: float
    resolution_status: ResolutionStatus

    @property
    def fully_resolved(self) -> bool:
        return self.resolution_status == "fully_resolved"


def compute_ledger(picks: Sequence[Pick]) -> LedgerSnapshot:
    """Aggregate a pack's picks. A pack without picks is a data-integrity error."""
    if not picks:
        raise DataIntegrityError("pack has no picks")
    resolved = [p for p in picks if p.is_resolved]
    correct = sum(1 for p in resolved if p.is_correct)
    revealed = sum(1 for p in picks if p.reveal_animation_played)

    if len(resolved) == len(picks):
        status: ResolutionStatus = "fully_resolved"
        bonus = pack_bonus(correct, len(picks))
    elif resolved:
        status = "partially_resolved"
        bonus = 0.0
    else:
        status = "pending"
        bonus = 0.0

    return LedgerSnapshot(
        total_picks=len(picks),
        resolved_count=len(resolved),
        revealed_count=revealed,
        correct_count=correct,
        pack_bonus=bonus,
        total_points=round2(sum(p.points_awarded for p in resolved) + bonus),
        resolution_status=status,
    )
