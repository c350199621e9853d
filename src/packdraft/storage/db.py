"""DuckDB connection and schema init."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import duckdb

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

SCHEMA_SQL = """
CREATE SEQUENCE IF NOT EXISTS sync_seq START 1;

-- Pack themes: a time-windowed, venue-scoped set of events
CREATE TABLE IF NOT EXISTS pools (
    pool_id             VARCHAR PRIMARY KEY,
    slug                VARCHAR NOT NULL,
    name                VARCHAR,
    venue               VARCHAR NOT NULL,
    pack_type           VARCHAR NOT NULL,
    min_events_required INTEGER NOT NULL DEFAULT 5,
    is_active           BOOLEAN NOT NULL DEFAULT TRUE,
    starts_at           BIGINT,
    ends_at             BIGINT,
    created_at          BIGINT NOT NULL
);

-- Venue markets. Status, winner and prices are written only by ingestion and resolution
CREATE TABLE IF NOT EXISTS events (
    event_id                 VARCHAR PRIMARY KEY,
    venue                    VARCHAR NOT NULL,
    venue_market_id          VARCHAR NOT NULL,
    pool_id                  VARCHAR,
    title                    VARCHAR,
    category                 VARCHAR,
    outcome_a_label          VARCHAR NOT NULL,
    outcome_b_label          VARCHAR NOT NULL,
    outcome_a_probability    DOUBLE NOT NULL,
    outcome_b_probability    DOUBLE NOT NULL,
    outcome_draw_label       VARCHAR,
    outcome_draw_probability DOUBLE,
    token_a                  VARCHAR,
    token_b                  VARCHAR,
    token_draw               VARCHAR,
    status                   VARCHAR NOT NULL,
    winning_outcome          VARCHAR,
    event_start_at           BIGINT,
    resolution_deadline      BIGINT,
    resolved_at              BIGINT,
    last_price_sync_at       BIGINT,
    updated_at               BIGINT NOT NULL
);

CREATE TABLE IF NOT EXISTS packs (
    pack_id              VARCHAR PRIMARY KEY,
    profile_id           VARCHAR NOT NULL,
    pool_id              VARCHAR,
    opened_at            BIGINT NOT NULL,
    current_reveal_index INTEGER NOT NULL DEFAULT 0,
    total_points         DOUBLE NOT NULL DEFAULT 0,
    correct_picks        INTEGER NOT NULL DEFAULT 0,
    resolution_status    VARCHAR NOT NULL DEFAULT 'pending',
    is_premium           BOOLEAN NOT NULL DEFAULT FALSE,
    payment_ref          VARCHAR,
    payment_amount       DOUBLE,
    buyer_wallet         VARCHAR,
    last_reveal_at       BIGINT,
    fully_resolved_at    BIGINT,
    updated_at           BIGINT NOT NULL
);

-- pick_id is '<pack_id>:<position>', so position is unique per pack
CREATE TABLE IF NOT EXISTS picks (
    pick_id                       VARCHAR PRIMARY KEY,
    pack_id                       VARCHAR NOT NULL,
    event_id                      VARCHAR NOT NULL,
    position                      INTEGER NOT NULL,
    picked_outcome                VARCHAR NOT NULL,
    picked_at                     BIGINT NOT NULL,
    probability_snapshot          DOUBLE NOT NULL,
    opposite_probability_snapshot DOUBLE,
    draw_probability_snapshot     DOUBLE,
    is_resolved                   BOOLEAN NOT NULL DEFAULT FALSE,
    is_correct                    BOOLEAN,
    points_awarded                DOUBLE NOT NULL DEFAULT 0,
    resolved_at                   BIGINT,
    reveal_animation_played       BOOLEAN NOT NULL DEFAULT FALSE
);

-- One row per accepted premium payment (replay protection)
CREATE TABLE IF NOT EXISTS payment_receipts (
    payment_ref  VARCHAR PRIMARY KEY,
    pack_id      VARCHAR NOT NULL,
    buyer_wallet VARCHAR,
    amount       DOUBLE,
    created_at   BIGINT NOT NULL
);

-- Backoff state per active event awaiting settlement
CREATE TABLE IF NOT EXISTS resolution_queue (
    event_id      VARCHAR PRIMARY KEY,
    priority      INTEGER NOT NULL DEFAULT 0,
    check_count   INTEGER NOT NULL DEFAULT 0,
    last_check_at BIGINT,
    next_check_at BIGINT NOT NULL,
    created_at    BIGINT NOT NULL
);

-- Background job audit trail (sweeps, price syncs, pool ingestion)
CREATE TABLE IF NOT EXISTS sync_log (
    id              BIGINT PRIMARY KEY DEFAULT nextval('sync_seq'),
    sync_type       VARCHAR NOT NULL,
    started_at      BIGINT NOT NULL,
    completed_at    BIGINT,
    items_processed INTEGER DEFAULT 0,
    errors          JSON,
    status          VARCHAR NOT NULL DEFAULT 'running'
);
"""


def get_connection(db_path: str | Path, read_only: bool = False) -> DuckDBPyConnection:
    """Return a DuckDB connection. Caller must close or use as context manager.
    ``:memory:`` opens a private in-memory database."""
    if str(db_path) == ":memory:":
        return duckdb.connect(":memory:")
    path = Path(db_path)
    if not read_only:
        path.parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(str(path), read_only=read_only)


def schema_statements(script: str = SCHEMA_SQL) -> list[str]:
    """Split a schema script into statements. ``--`` comment lines are dropped
    first so a ``;`` inside a comment cannot cut a statement."""
    lines = [line for line in script.splitlines() if not line.lstrip().startswith("--")]
    return [s.strip() for s in "\n".join(lines).split(";") if s.strip()]


def init_schema(conn: DuckDBPyConnection) -> None:
    """Create tables and sequences if they do not exist."""
    for stmt in schema_statements():
        try:
            conn.execute(stmt)
        except duckdb.Error as e:
            if "already exists" not in str(e).lower():
                raise


@contextmanager
def transaction(conn: DuckDBPyConnection) -> Iterator[DuckDBPyConnection]:
    """Run a block atomically; rolls back and re-raises on any error."""
    conn.begin()
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    else:
        conn.commit()
