"""Rarity bins and drop-table rolls."""

import random

import pytest

from packdraft.game.rarity import (
    DROP_RATES,
    RARITY_ORDER,
    Rarity,
    classify,
    distance_to_bin,
    fallback_rarities,
    rarity_of,
    roll_target_rarity,
)
from tests.conftest import make_event


@pytest.mark.parametrize(
    "p_low,expected",
    [
        (0.0, Rarity.LEGENDARY),
        (0.0199, Rarity.LEGENDARY),
        (0.02, Rarity.EPIC),
        (0.0499, Rarity.EPIC),
        (0.05, Rarity.RARE),
        (0.15, Rarity.UNCOMMON),
        (0.2999, Rarity.UNCOMMON),
        (0.30, Rarity.COMMON),
        (0.5, Rarity.COMMON),
    ],
)
def test_classify_boundaries_half_open(p_low, expected):
    assert classify(p_low) is expected


def test_classify_clamps_out_of_range():
    assert classify(-0.3) is Rarity.LEGENDARY
    assert classify(0.9) is Rarity.COMMON


def test_classify_is_monotone_over_range():
    """Bins are contiguous: walking p_low upward only ever moves towards common."""
    ranks = [RARITY_ORDER.index(classify(i / 1000)) for i in range(0, 501)]
    assert ranks == sorted(ranks, reverse=True)
    assert set(ranks) == set(range(len(RARITY_ORDER)))


def test_rarity_of_uses_smallest_outcome():
    assert rarity_of(make_event(1, p_a=0.97)) is Rarity.EPIC  # p_low 0.03
    assert rarity_of(make_event(2, p_a=0.45, draw=0.10)) is Rarity.RARE


def test_drop_rates_sum_to_one():
    assert sum(DROP_RATES.values()) == pytest.approx(1.0)


def test_roll_target_rarity_converges_to_drop_rates():
    rng = random.Random(1234)
    trials = 100_000
    counts = {r: 0 for r in Rarity}
    for _ in range(trials):
        counts[roll_target_rarity(rng)] += 1
    for rarity, rate in DROP_RATES.items():
        assert counts[rarity] / trials == pytest.approx(rate, abs=0.01)


def test_fallback_rarities_walk_to_common():
    assert fallback_rarities(Rarity.RARE) == [Rarity.RARE, Rarity.UNCOMMON, Rarity.COMMON]
    assert fallback_rarities(Rarity.COMMON) == [Rarity.COMMON]
    assert fallback_rarities(Rarity.LEGENDARY)[-1] is Rarity.COMMON


def test_distance_to_bin():
    assert distance_to_bin(0.10, Rarity.RARE) == 0
    assert distance_to_bin(0.5, Rarity.COMMON) == 0
    assert distance_to_bin(0.01, Rarity.RARE) == pytest.approx(0.04)
    assert distance_to_bin(0.40, Rarity.UNCOMMON) == pytest.approx(0.10)
