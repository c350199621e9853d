"""Odds-based scoring: each pick is a 1-point stake paid out at 1 / probability.

    0.50 -> 2.00 points, 0.20 -> 5.00 + 0.25 bonus, 0.10 -> 10.00 + 0.50 bonus

The multiplier is deliberately uncapped; see DESIGN.md.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from packdraft.errors import ValidationError

BASE_POINTS = 1.0


class Tier(str, Enum):
    LONGSHOT = "longshot"
    UNDERDOG = "underdog"
    SLIGHT_UNDERDOG = "slight_underdog"
    TOSSUP = "tossup"
    FAVORITE = "favorite"
    HEAVY_FAVORITE = "heavy_favorite"


TIER_BONUS: dict[Tier, float] = {
    Tier.LONGSHOT: 0.50,
    Tier.UNDERDOG: 0.25,
    Tier.SLIGHT_UNDERDOG: 0.10,
}


@dataclass(frozen=True)
class PickScore:
    points: float
    multiplier: float
    tier_bonus: float
    tier: Tier


@dataclass
class PackScore:
    total_points: float
    correct_count: int
    pack_bonus: float
    breakdown: list[PickScore] = field(default_factory=list)


def round2(value: float) -> float:
    """Round half up to cents (payouts are never negative)."""
    return math.floor(value * 100 + 0.5) / 100


def _check_probability(probability: float) -> None:
    if not (0 < probability <= 1) or math.isnan(probability):
        raise ValidationError(f"probability must be in (0, 1], got {probability!r}")


def tier_of(probability: float) -> Tier:
    """Only the 0.10 and 0.75 bounds are inclusive: 0.10 is a longshot and 0.75 a
    favorite, while 0.25 is a slight underdog, 0.40 a tossup and 0.60 a favorite."""
    if probability <= 0.10:
        return Tier.LONGSHOT
    if probability < 0.25:
        return Tier.UNDERDOG
    if probability < 0.40:
        return Tier.SLIGHT_UNDERDOG
    if probability < 0.60:
        return Tier.TOSSUP
    if probability <= 0.75:
        return Tier.FAVORITE
    return Tier.HEAVY_FAVORITE


def tier_bonus(tier: Tier) -> float:
    return TIER_BONUS.get(tier, 0.0)


def score_pick(probability_at_pick: float, is_correct: bool) -> PickScore:
    """Score one resolved pick from its frozen probability snapshot.

    Raises ValidationError for probability outside (0, 1]; a zero probability
    is never clamped.
    """
    _check_probability(probability_at_pick)
    tier = tier_of(probability_at_pick)
    if not is_correct:
        return PickScore(points=0.0, multiplier=0.0, tier_bonus=0.0, tier=tier)

    bonus = tier_bonus(tier)
    multiplier = 1.0 / probability_at_pick
    points = round2(BASE_POINTS * multiplier + bonus)
    return PickScore(points=points, multiplier=round2(multiplier), tier_bonus=bonus, tier=tier)


def pack_bonus(correct_count: int, total_picks: int) -> float:
    """Completion bonus: all correct +5, one miss +2, two misses +1."""
    if total_picks <= 0:
        return 0.0
    if correct_count == total_picks:
        return 5.0
    if correct_count == total_picks - 1:
        return 2.0
    if correct_count == total_picks - 2:
        return 1.0
    return 0.0


def score_pack(picks: Iterable[tuple[float, bool]], total_picks: int | None = None) -> PackScore:
    """Score resolved picks given as (probability_at_pick, is_correct) pairs."""
    breakdown = [score_pick(prob, correct) for prob, correct in picks]
    correct_count = sum(1 for s in breakdown if s.points > 0)
    bonus = pack_bonus(correct_count, total_picks if total_picks is not None else len(breakdown))
    total = round2(sum(s.points for s in breakdown) + bonus)
    return PackScore(total_points=total, correct_count=correct_count, pack_bonus=bonus, breakdown=breakdown)


def max_potential_points(probabilities: Iterable[float]) -> PackScore:
    """Score if every pick hits, perfect-pack bonus included."""
    return score_pack((p, True) for p in probabilities)


def combined_probability(probabilities: Iterable[float]) -> float:
    """Parlay probability that every pick hits."""
    probs = list(probabilities)
    if not probs:
        return 0.0
    return math.prod(probs)
