"""Event settlement: scheduled venue polling and the pick/pack cascade."""

from packdraft.resolution.scheduler import ResolutionScheduler, SweepReport
from packdraft.resolution.settlement import (
    SettlementStats,
    cascade_settlement,
    reconcile,
    recompute_pack,
    settle_event,
)

__all__ = [
    "ResolutionScheduler",
    "SettlementStats",
    "SweepReport",
    "cascade_settlement",
    "reconcile",
    "recompute_pack",
    "settle_event",
]
