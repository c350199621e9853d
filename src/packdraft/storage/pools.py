"""Pool persistence."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from packdraft.models import Pool
from packdraft.storage.events import list_events

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

POOL_COLUMNS = [
    "pool_id",
    "slug",
    "name",
    "venue",
    "pack_type",
    "min_events_required",
    "is_active",
    "starts_at",
    "ends_at",
]


def _row_to_pool(row: tuple[Any, ...]) -> Pool:
    return Pool(**dict(zip(POOL_COLUMNS, row)))


def upsert_pool(conn: DuckDBPyConnection, pool: Pool, now_ms: int) -> None:
    """Insert or replace pool metadata (events are linked via events.pool_id)."""
    conn.execute(
        f"""
        INSERT INTO pools ({', '.join(POOL_COLUMNS)}, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (pool_id) DO UPDATE SET
            slug = excluded.slug,
            name = excluded.name,
            venue = excluded.venue,
            pack_type = excluded.pack_type,
            min_events_required = excluded.min_events_required,
            is_active = excluded.is_active,
            starts_at = excluded.starts_at,
            ends_at = excluded.ends_at
        """,
        [getattr(pool, c) for c in POOL_COLUMNS] + [now_ms],
    )


def get_pool_by_slug(conn: DuckDBPyConnection, slug: str, with_events: bool = True) -> Pool | None:
    row = conn.execute(
        f"SELECT {', '.join(POOL_COLUMNS)} FROM pools WHERE slug = ? ORDER BY created_at DESC LIMIT 1",
        [slug],
    ).fetchone()
    if not row:
        return None
    pool = _row_to_pool(row)
    if with_events:
        pool.events = list_events(conn, pool_id=pool.pool_id)
    return pool


def list_pools(conn: DuckDBPyConnection, active_only: bool = False) -> list[dict]:
    """List pools with event counts as list of dicts."""
    where = "WHERE p.is_active = true" if active_only else ""
    rows = conn.execute(
        f"""
        SELECT p.pool_id, p.slug, p.name, p.venue, p.pack_type, p.is_active,
               COUNT(e.event_id) AS event_count
        FROM pools p
        LEFT JOIN events e ON e.pool_id = p.pool_id
        {where}
        GROUP BY p.pool_id, p.slug, p.name, p.venue, p.pack_type, p.is_active
        ORDER BY p.slug
        """
    ).fetchall()
    columns = ["pool_id", "slug", "name", "venue", "pack_type", "is_active", "event_count"]
    return [dict(zip(columns, r)) for r in rows]
