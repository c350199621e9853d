"""Millisecond epoch helpers."""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS


def now_ms() -> int:
    return int(time.time() * 1000)


def week_bounds_ms(at_ms: int) -> tuple[int, int]:
    """[Monday 00:00 UTC, next Monday 00:00 UTC) containing at_ms."""
    at = datetime.fromtimestamp(at_ms / 1000, tz=timezone.utc)
    start = (at - timedelta(days=at.weekday())).replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=7)
    return int(start.timestamp() * 1000), int(end.timestamp() * 1000)
