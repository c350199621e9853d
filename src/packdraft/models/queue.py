"""ResolutionQueueEntry - per-event backoff state."""

from __future__ import annotations

from pydantic import BaseModel


class ResolutionQueueEntry(BaseModel):
    event_id: str
    priority: int = 0
    check_count: int = 0
    last_check_at: int | None = None  # ms epoch
    next_check_at: int
    created_at: int | None = None
