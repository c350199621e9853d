"""Background job audit trail."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection


def start_sync(conn: DuckDBPyConnection, sync_type: str, now_ms: int) -> int:
    row = conn.execute(
        "INSERT INTO sync_log (sync_type, started_at, status) VALUES (?, ?, 'running') RETURNING id",
        [sync_type, now_ms],
    ).fetchone()
    return int(row[0])


def complete_sync(
    conn: DuckDBPyConnection,
    sync_id: int,
    items_processed: int,
    errors: list[dict[str, Any]] | None,
    now_ms: int,
    failed: bool = False,
) -> None:
    conn.execute(
        """
        UPDATE sync_log SET completed_at = ?, items_processed = ?, errors = ?, status = ?
        WHERE id = ?
        """,
        [now_ms, items_processed, json.dumps(errors or []), "failed" if failed else "completed", sync_id],
    )


def recent_syncs(conn: DuckDBPyConnection, sync_type: str | None = None, limit: int = 20) -> list[dict]:
    where = "WHERE sync_type = ?" if sync_type else ""
    params: list[Any] = [sync_type] if sync_type else []
    rows = conn.execute(
        f"""
        SELECT id, sync_type, started_at, completed_at, items_processed, errors, status
        FROM sync_log {where} ORDER BY id DESC LIMIT ?
        """,
        params + [limit],
    ).fetchall()
    columns = ["id", "sync_type", "started_at", "completed_at", "items_processed", "errors", "status"]
    out = []
    for r in rows:
        item = dict(zip(columns, r))
        if isinstance(item["errors"], str):
            item["errors"] = json.loads(item["errors"])
        out.append(item)
    return out
