"""Weekly leaderboard aggregated from packs opened in a time window."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection


def weekly_leaderboard(
    conn: DuckDBPyConnection,
    start_ms: int,
    end_ms: int,
    limit: int = 10,
    offset: int = 0,
) -> tuple[list[dict], int]:
    """Return (ranked entries page, total players) for packs opened in [start_ms, end_ms)."""
    rows = conn.execute(
        """
        SELECT pk.profile_id,
               SUM(pk.total_points) AS total_points,
               COUNT(*) AS packs_opened,
               SUM(pk.correct_picks) AS correct_picks,
               SUM((SELECT COUNT(*) FROM picks p WHERE p.pack_id = pk.pack_id)) AS total_picks
        FROM packs pk
        WHERE pk.opened_at >= ? AND pk.opened_at < ?
        GROUP BY pk.profile_id
        ORDER BY total_points DESC, packs_opened DESC, pk.profile_id
        """,
        [start_ms, end_ms],
    ).fetchall()
    entries = []
    for rank, (profile_id, total_points, packs_opened, correct, total_picks) in enumerate(rows, start=1):
        entries.append(
            {
                "rank": rank,
                "profile_id": profile_id,
                "total_points": round(float(total_points or 0), 2),
                "packs_opened": int(packs_opened),
                "accuracy": (int(correct or 0) / int(total_picks)) if total_picks else 0.0,
            }
        )
    return entries[offset : offset + limit], len(entries)
