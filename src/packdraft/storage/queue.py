"""Resolution queue: per-event backoff rows, claimed and rescheduled with conditional updates."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from packdraft.clock import MINUTE_MS
from packdraft.models import ResolutionQueueEntry

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

QUEUE_COLUMNS = ["event_id", "priority", "check_count", "last_check_at", "next_check_at", "created_at"]


def _row_to_entry(row: tuple[Any, ...]) -> ResolutionQueueEntry:
    return ResolutionQueueEntry(**dict(zip(QUEUE_COLUMNS, row)))


def backoff_delay_ms(check_count: int, base_minutes: int = 60, max_minutes: int = 24 * 60) -> int:
    """Delay after the check_count-th check: base * 2^(check_count - 1) minutes, capped."""
    exponent = max(check_count - 1, 0)
    # Cap the exponent before shifting so the intermediate stays small
    if base_minutes <= 0 or exponent >= 32:
        minutes = max_minutes
    else:
        minutes = min(base_minutes * (1 << exponent), max_minutes)
    return minutes * MINUTE_MS


def enqueue_event(conn: DuckDBPyConnection, event_id: str, now_ms: int, priority: int = 0) -> bool:
    """Add an event to the queue, due immediately. No-op if already queued."""
    rows = conn.execute(
        """
        INSERT INTO resolution_queue (event_id, priority, check_count, next_check_at, created_at)
        VALUES (?, ?, 0, ?, ?)
        ON CONFLICT DO NOTHING
        RETURNING event_id
        """,
        [event_id, priority, now_ms, now_ms],
    ).fetchall()
    return len(rows) == 1


def enqueue_missing_active(conn: DuckDBPyConnection, now_ms: int) -> list[str]:
    """Queue every active event that has no entry yet. Priority is the number of
    picks waiting on the event."""
    rows = conn.execute(
        """
        INSERT INTO resolution_queue (event_id, priority, check_count, next_check_at, created_at)
        SELECT e.event_id,
               (SELECT COUNT(*) FROM picks p WHERE p.event_id = e.event_id AND p.is_resolved = false),
               0, ?, ?
        FROM events e
        WHERE e.status = 'active'
          AND NOT EXISTS (SELECT 1 FROM resolution_queue q WHERE q.event_id = e.event_id)
        ON CONFLICT DO NOTHING
        RETURNING event_id
        """,
        [now_ms, now_ms],
    ).fetchall()
    return [r[0] for r in rows]


def get_entry(conn: DuckDBPyConnection, event_id: str) -> ResolutionQueueEntry | None:
    row = conn.execute(
        f"SELECT {', '.join(QUEUE_COLUMNS)} FROM resolution_queue WHERE event_id = ?", [event_id]
    ).fetchone()
    return _row_to_entry(row) if row else None


def due_entries(conn: DuckDBPyConnection, now_ms: int, limit: int) -> list[ResolutionQueueEntry]:
    rows = conn.execute(
        f"""
        SELECT {', '.join(QUEUE_COLUMNS)} FROM resolution_queue
        WHERE next_check_at <= ?
        ORDER BY priority DESC, next_check_at, event_id
        LIMIT ?
        """,
        [now_ms, limit],
    ).fetchall()
    return [_row_to_entry(r) for r in rows]


def claim_entry(conn: DuckDBPyConnection, entry: ResolutionQueueEntry, now_ms: int, lease_ms: int) -> bool:
    """Push next_check_at past the lease if nobody else moved it since we read it.
    The next_check_at gate is what keeps overlapping sweeps off the same event."""
    rows = conn.execute(
        """
        UPDATE resolution_queue SET next_check_at = ?
        WHERE event_id = ? AND next_check_at = ? AND check_count = ?
        RETURNING event_id
        """,
        [now_ms + lease_ms, entry.event_id, entry.next_check_at, entry.check_count],
    ).fetchall()
    return len(rows) == 1


def reschedule_entry(
    conn: DuckDBPyConnection,
    entry: ResolutionQueueEntry,
    now_ms: int,
    base_minutes: int = 60,
    max_minutes: int = 24 * 60,
) -> ResolutionQueueEntry | None:
    """Record one more check and back off. Returns None if the row changed underneath."""
    check_count = entry.check_count + 1
    next_check_at = now_ms + backoff_delay_ms(check_count, base_minutes, max_minutes)
    rows = conn.execute(
        """
        UPDATE resolution_queue
        SET check_count = ?, last_check_at = ?, next_check_at = ?
        WHERE event_id = ? AND check_count = ?
        RETURNING event_id
        """,
        [check_count, now_ms, next_check_at, entry.event_id, entry.check_count],
    ).fetchall()
    if not rows:
        return None
    return entry.model_copy(
        update={"check_count": check_count, "last_check_at": now_ms, "next_check_at": next_check_at}
    )


def remove_entry(conn: DuckDBPyConnection, event_id: str) -> bool:
    rows = conn.execute(
        "DELETE FROM resolution_queue WHERE event_id = ? RETURNING event_id", [event_id]
    ).fetchall()
    return len(rows) == 1


def list_entries(conn: DuckDBPyConnection) -> list[ResolutionQueueEntry]:
    rows = conn.execute(
        f"SELECT {', '.join(QUEUE_COLUMNS)} FROM resolution_queue ORDER BY next_check_at"
    ).fetchall()
    return [_row_to_entry(r) for r in rows]
