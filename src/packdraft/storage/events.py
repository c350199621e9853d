"""Event persistence: ingestion upserts, activation, conditional settlement, price updates."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from packdraft.models import Event

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

EVENT_COLUMNS = [
    "event_id",
    "venue",
    "venue_market_id",
    "pool_id",
    "title",
    "category",
    "outcome_a_label",
    "outcome_b_label",
    "outcome_a_probability",
    "outcome_b_probability",
    "outcome_draw_label",
    "outcome_draw_probability",
    "token_a",
    "token_b",
    "token_draw",
    "status",
    "winning_outcome",
    "event_start_at",
    "resolution_deadline",
    "resolved_at",
    "last_price_sync_at",
]

_SELECT_EVENTS = f"SELECT {', '.join(EVENT_COLUMNS)} FROM events"


def event_id_for(venue: str, venue_market_id: str) -> str:
    """Stable event id for a venue market."""
    return f"{venue}:{venue_market_id}"


def row_to_event(row: tuple[Any, ...]) -> Event:
    return Event(**dict(zip(EVENT_COLUMNS, row)))


def upsert_event(conn: DuckDBPyConnection, event: Event, now_ms: int) -> None:
    """Insert a new event or refresh metadata/prices of an existing one.
    Lifecycle fields (status, winner, resolved_at) are never overwritten here."""
    values = [getattr(event, c) for c in EVENT_COLUMNS] + [now_ms]
    conn.execute(
        f"""
        INSERT INTO events ({', '.join(EVENT_COLUMNS)}, updated_at)
        VALUES ({', '.join('?' for _ in values)})
        ON CONFLICT (event_id) DO UPDATE SET
            pool_id = excluded.pool_id,
            title = excluded.title,
            category = excluded.category,
            outcome_a_label = excluded.outcome_a_label,
            outcome_b_label = excluded.outcome_b_label,
            outcome_a_probability = excluded.outcome_a_probability,
            outcome_b_probability = excluded.outcome_b_probability,
            outcome_draw_label = excluded.outcome_draw_label,
            outcome_draw_probability = excluded.outcome_draw_probability,
            token_a = excluded.token_a,
            token_b = excluded.token_b,
            token_draw = excluded.token_draw,
            event_start_at = excluded.event_start_at,
            resolution_deadline = excluded.resolution_deadline,
            last_price_sync_at = excluded.last_price_sync_at,
            updated_at = excluded.updated_at
        """,
        values,
    )


def get_event(conn: DuckDBPyConnection, event_id: str) -> Event | None:
    row = conn.execute(f"{_SELECT_EVENTS} WHERE event_id = ?", [event_id]).fetchone()
    return row_to_event(row) if row else None


def get_events(conn: DuckDBPyConnection, event_ids: list[str]) -> dict[str, Event]:
    """Return events keyed by id; missing ids are simply absent."""
    if not event_ids:
        return {}
    placeholders = ", ".join("?" for _ in event_ids)
    rows = conn.execute(f"{_SELECT_EVENTS} WHERE event_id IN ({placeholders})", list(event_ids)).fetchall()
    return {e.event_id: e for e in map(row_to_event, rows)}


def list_events(
    conn: DuckDBPyConnection,
    pool_id: str | None = None,
    statuses: tuple[str, ...] | None = None,
) -> list[Event]:
    clauses: list[str] = []
    params: list[Any] = []
    if pool_id is not None:
        clauses.append("pool_id = ?")
        params.append(pool_id)
    if statuses:
        clauses.append(f"status IN ({', '.join('?' for _ in statuses)})")
        params.extend(statuses)
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    rows = conn.execute(f"{_SELECT_EVENTS}{where} ORDER BY event_start_at NULLS LAST, event_id", params).fetchall()
    return [row_to_event(r) for r in rows]


def activate_due_events(conn: DuckDBPyConnection, now_ms: int) -> list[str]:
    """Promote upcoming events whose start time has passed. Events with no start
    time are treated as already started."""
    rows = conn.execute(
        """
        UPDATE events SET status = 'active', updated_at = ?
        WHERE status = 'upcoming' AND (event_start_at IS NULL OR event_start_at <= ?)
        RETURNING event_id
        """,
        [now_ms, now_ms],
    ).fetchall()
    return [r[0] for r in rows]


def mark_event_resolved(
    conn: DuckDBPyConnection,
    event_id: str,
    winning_outcome: str,
    now_ms: int,
) -> bool:
    """Settlement commit point. Only transitions an 'active' event, so a
    concurrent second attempt sees False and must not cascade."""
    rows = conn.execute(
        """
        UPDATE events
        SET status = 'resolved', winning_outcome = ?, resolved_at = ?, updated_at = ?
        WHERE event_id = ? AND status = 'active'
        RETURNING event_id
        """,
        [winning_outcome, now_ms, now_ms, event_id],
    ).fetchall()
    return len(rows) == 1


def update_event_prices(
    conn: DuckDBPyConnection,
    event_id: str,
    prob_a: float,
    prob_b: float,
    prob_draw: float | None,
    now_ms: int,
) -> bool:
    """Store fresh probabilities for an event that can still be drafted or settled."""
    rows = conn.execute(
        """
        UPDATE events
        SET outcome_a_probability = ?, outcome_b_probability = ?,
            outcome_draw_probability = COALESCE(?, outcome_draw_probability),
            last_price_sync_at = ?, updated_at = ?
        WHERE event_id = ? AND status IN ('upcoming', 'active')
        RETURNING event_id
        """,
        [prob_a, prob_b, prob_draw, now_ms, now_ms, event_id],
    ).fetchall()
    return len(rows) == 1


def list_resolved_with_unresolved_picks(conn: DuckDBPyConnection) -> list[Event]:
    """Events that committed settlement but whose cascade did not finish."""
    rows = conn.execute(
        f"""
        {_SELECT_EVENTS}
        WHERE status = 'resolved'
          AND EXISTS (
            SELECT 1 FROM picks p WHERE p.event_id = events.event_id AND p.is_resolved = false
          )
        ORDER BY resolved_at
        """
    ).fetchall()
    return [row_to_event(r) for r in rows]
