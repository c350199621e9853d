"""Canonical schema (Pydantic) - Event, Pool, Pack, Pick, queue entries."""

from packdraft.models.event import OPEN_STATUSES, Event, EventStatus, Outcome, Pool
from packdraft.models.pack import Pack, Pick, PickDraft, ResolutionStatus
from packdraft.models.queue import ResolutionQueueEntry

__all__ = [
    "Event",
    "EventStatus",
    "OPEN_STATUSES",
    "Outcome",
    "Pool",
    "Pack",
    "Pick",
    "PickDraft",
    "ResolutionStatus",
    "ResolutionQueueEntry",
]
