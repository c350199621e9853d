"""Rarity bins derived from p_low, and the pack drop table."""

from __future__ import annotations

import math
import random
from enum import Enum

from packdraft.models import Event


class Rarity(str, Enum):
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


# Most common first. Degrading from a target walks this list towards index 0.
RARITY_ORDER: tuple[Rarity, ...] = (
    Rarity.COMMON,
    Rarity.UNCOMMON,
    Rarity.RARE,
    Rarity.EPIC,
    Rarity.LEGENDARY,
)

# [min, max) on clamped p_low; common is closed at 0.5.
RARITY_BOUNDS: dict[Rarity, tuple[float, float]] = {
    Rarity.LEGENDARY: (0.00, 0.02),
    Rarity.EPIC: (0.02, 0.05),
    Rarity.RARE: (0.05, 0.15),
    Rarity.UNCOMMON: (0.15, 0.30),
    Rarity.COMMON: (0.30, 0.50),
}

DROP_RATES: dict[Rarity, float] = {
    Rarity.COMMON: 0.59,
    Rarity.UNCOMMON: 0.25,
    Rarity.RARE: 0.11,
    Rarity.EPIC: 0.03,
    Rarity.LEGENDARY: 0.02,
}

if not math.isclose(sum(DROP_RATES.values()), 1.0, abs_tol=1e-9):
    raise RuntimeError("DROP_RATES must sum to 1.0")

P_LOW_MAX = 0.5


def clamp_p_low(p_low: float) -> float:
    return max(0.0, min(P_LOW_MAX, p_low))


def classify(p_low: float) -> Rarity:
    """Map p_low to exactly one bin. Out-of-range inputs are clamped to [0, 0.5]."""
    p = clamp_p_low(p_low)
    if p < 0.02:
        return Rarity.LEGENDARY
    if p < 0.05:
        return Rarity.EPIC
    if p < 0.15:
        return Rarity.RARE
    if p < 0.30:
        return Rarity.UNCOMMON
    return Rarity.COMMON


def rarity_of(event: Event) -> Rarity:
    """Rarity from the event's current probabilities (never stored)."""
    return classify(event.p_low)


def roll_target_rarity(rng: random.Random | None = None) -> Rarity:
    """Draw a rarity according to DROP_RATES."""
    roll = (rng or random).random()
    cumulative = 0.0
    for rarity in RARITY_ORDER:
        cumulative += DROP_RATES[rarity]
        if roll < cumulative:
            return rarity
    # Float rounding at the very top of [0, 1)
    return Rarity.COMMON


def fallback_rarities(target: Rarity) -> list[Rarity]:
    """Target first, then each more common bin down to common."""
    idx = RARITY_ORDER.index(target)
    return list(reversed(RARITY_ORDER[: idx + 1]))


def distance_to_bin(p_low: float, target: Rarity) -> float:
    """0 inside the bin, otherwise the gap to the nearer boundary."""
    p = clamp_p_low(p_low)
    lo, hi = RARITY_BOUNDS[target]
    inside_hi = p <= hi if target is Rarity.COMMON else p < hi
    if lo <= p and inside_hi:
        return 0.0
    if p < lo:
        return lo - p
    return p - hi
