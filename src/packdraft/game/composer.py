"""Drop-table pack composition: rolled rarity, degrade towards common, nearest-bin fallback."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Literal

import structlog

from packdraft.game.rarity import (
    Rarity,
    distance_to_bin,
    fallback_rarities,
    rarity_of,
    roll_target_rarity,
)
from packdraft.models import Event, Pool

log = structlog.get_logger(__name__)

SelectionMethod = Literal["exact", "degraded", "nearest"]


@dataclass
class PackSelection:
    """One composed slot. rarity and target_rarity differ after degrade/fallback."""

    event: Event
    rarity: Rarity
    target_rarity: Rarity
    method: SelectionMethod = "exact"


@dataclass
class ComposedPack:
    requested: int
    selections: list[PackSelection] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """True when the pool ran out before every slot was filled."""
        return len(self.selections) < self.requested

    @property
    def events(self) -> list[Event]:
        return [s.event for s in self.selections]


def _pick_slot(
    remaining: list[Event],
    target: Rarity,
    rng: random.Random,
) -> tuple[Event, SelectionMethod]:
    by_rarity: dict[Rarity, list[Event]] = {}
    for ev in remaining:
        by_rarity.setdefault(rarity_of(ev), []).append(ev)

    for rarity in fallback_rarities(target):
        bucket = by_rarity.get(rarity)
        if bucket:
            return rng.choice(bucket), "exact" if rarity is target else "degraded"

    best = min(remaining, key=lambda ev: distance_to_bin(ev.p_low, target))
    return best, "nearest"


def compose_pack(
    pool: Pool | list[Event],
    count: int,
    rng: random.Random | None = None,
) -> ComposedPack:
    """Select up to ``count`` distinct events from the pool using rolled rarities.

    Pool exhaustion is not an error: the result holds fewer selections and
    ``degraded`` is set.
    """
    if count < 0:
        raise ValueError("count must be non-negative")
    rng = rng or random.Random()
    candidates = pool.candidates if isinstance(pool, Pool) else list(pool)
    remaining = list(candidates)
    result = ComposedPack(requested=count)

    for slot in range(count):
        if not remaining:
            log.warning(
                "pool_exhausted",
                requested=count,
                selected=len(result.selections),
                pool_size=len(candidates),
            )
            break
        target = roll_target_rarity(rng)
        event, method = _pick_slot(remaining, target, rng)
        remaining = [ev for ev in remaining if ev.event_id != event.event_id]
        result.selections.append(
            PackSelection(event=event, rarity=rarity_of(event), target_rarity=target, method=method)
        )
        if method != "exact":
            log.debug("slot_fallback", slot=slot + 1, target=target.value, method=method)

    return result
