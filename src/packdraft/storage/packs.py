"""Pack and pick persistence: atomic creation, settlement writes, reveal CAS."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from packdraft.models import Pack, Pick
from packdraft.storage.db import transaction

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

    from packdraft.game.ledger import LedgerSnapshot

PACK_COLUMNS = [
    "pack_id",
    "profile_id",
    "pool_id",
    "opened_at",
    "current_reveal_index",
    "total_points",
    "correct_picks",
    "resolution_status",
    "is_premium",
    "payment_ref",
    "payment_amount",
    "buyer_wallet",
    "last_reveal_at",
    "fully_resolved_at",
]

PICK_COLUMNS = [
    "pick_id",
    "pack_id",
    "event_id",
    "position",
    "picked_outcome",
    "picked_at",
    "probability_snapshot",
    "opposite_probability_snapshot",
    "draw_probability_snapshot",
    "is_resolved",
    "is_correct",
    "points_awarded",
    "resolved_at",
    "reveal_animation_played",
]

_SELECT_PACKS = f"SELECT {', '.join(PACK_COLUMNS)} FROM packs"
_SELECT_PICKS = f"SELECT {', '.join(PICK_COLUMNS)} FROM picks"


def pick_id_for(pack_id: str, position: int) -> str:
    return f"{pack_id}:{position}"


def _row_to_pick(row: tuple[Any, ...]) -> Pick:
    return Pick(**dict(zip(PICK_COLUMNS, row)))


def _row_to_pack(row: tuple[Any, ...]) -> Pack:
    return Pack(**dict(zip(PACK_COLUMNS, row)))


def find_pack_by_payment_ref(conn: DuckDBPyConnection, payment_ref: str) -> str | None:
    row = conn.execute("SELECT pack_id FROM payment_receipts WHERE payment_ref = ?", [payment_ref]).fetchone()
    return row[0] if row else None


def insert_pack_with_picks(conn: DuckDBPyConnection, pack: Pack, picks: list[Pick], now_ms: int) -> None:
    """Create the pack, its picks and (for premium packs) the payment receipt in one
    transaction. Primary keys on pack_id and payment_ref reject duplicates."""
    with transaction(conn):
        conn.execute(
            f"INSERT INTO packs ({', '.join(PACK_COLUMNS)}, updated_at) "
            f"VALUES ({', '.join('?' for _ in range(len(PACK_COLUMNS) + 1))})",
            [getattr(pack, c) for c in PACK_COLUMNS] + [now_ms],
        )
        conn.executemany(
            f"INSERT INTO picks ({', '.join(PICK_COLUMNS)}) VALUES ({', '.join('?' for _ in PICK_COLUMNS)})",
            [[getattr(p, c) for c in PICK_COLUMNS] for p in picks],
        )
        if pack.payment_ref:
            conn.execute(
                "INSERT INTO payment_receipts (payment_ref, pack_id, buyer_wallet, amount, created_at) VALUES (?, ?, ?, ?, ?)",
                [pack.payment_ref, pack.pack_id, pack.buyer_wallet, pack.payment_amount, now_ms],
            )


def get_picks_for_pack(conn: DuckDBPyConnection, pack_id: str) -> list[Pick]:
    rows = conn.execute(f"{_SELECT_PICKS} WHERE pack_id = ? ORDER BY position", [pack_id]).fetchall()
    return [_row_to_pick(r) for r in rows]


def get_pack(conn: DuckDBPyConnection, pack_id: str, with_picks: bool = True) -> Pack | None:
    row = conn.execute(f"{_SELECT_PACKS} WHERE pack_id = ?", [pack_id]).fetchone()
    if not row:
        return None
    pack = _row_to_pack(row)
    if with_picks:
        pack.picks = get_picks_for_pack(conn, pack_id)
    return pack


def list_packs_for_profile(conn: DuckDBPyConnection, profile_id: str) -> list[Pack]:
    """All packs of a profile, newest first, with picks."""
    rows = conn.execute(f"{_SELECT_PACKS} WHERE profile_id = ? ORDER BY opened_at DESC", [profile_id]).fetchall()
    packs = [_row_to_pack(r) for r in rows]
    for pack in packs:
        pack.picks = get_picks_for_pack(conn, pack.pack_id)
    return packs


def count_free_packs_between(conn: DuckDBPyConnection, profile_id: str, start_ms: int, end_ms: int) -> int:
    row = conn.execute(
        """
        SELECT COUNT(*) FROM packs
        WHERE profile_id = ? AND is_premium = false AND opened_at >= ? AND opened_at < ?
        """,
        [profile_id, start_ms, end_ms],
    ).fetchone()
    return int(row[0]) if row else 0


def get_unresolved_picks_for_event(conn: DuckDBPyConnection, event_id: str) -> list[Pick]:
    rows = conn.execute(
        f"{_SELECT_PICKS} WHERE event_id = ? AND is_resolved = false ORDER BY pack_id, position",
        [event_id],
    ).fetchall()
    return [_row_to_pick(r) for r in rows]


def resolve_pick(
    conn: DuckDBPyConnection,
    pick_id: str,
    is_correct: bool,
    points_awarded: float,
    now_ms: int,
) -> bool:
    """Write resolution fields once. Returns False if the pick was already resolved."""
    rows = conn.execute(
        """
        UPDATE picks
        SET is_resolved = true, is_correct = ?, points_awarded = ?, resolved_at = ?
        WHERE pick_id = ? AND is_resolved = false
        RETURNING pick_id
        """,
        [is_correct, points_awarded, now_ms, pick_id],
    ).fetchall()
    return len(rows) == 1


def update_pack_aggregates(
    conn: DuckDBPyConnection,
    pack_id: str,
    ledger: LedgerSnapshot,
    now_ms: int,
) -> None:
    """Overwrite aggregates from a full recomputation. fully_resolved_at keeps its first value."""
    conn.execute(
        """
        UPDATE packs
        SET total_points = ?, correct_picks = ?, resolution_status = ?,
            fully_resolved_at = CASE
                WHEN ? AND fully_resolved_at IS NULL THEN ?
                ELSE fully_resolved_at
            END,
            updated_at = ?
        WHERE pack_id = ?
        """,
        [
            ledger.total_points,
            ledger.correct_count,
            ledger.resolution_status,
            ledger.fully_resolved,
            now_ms,
            now_ms,
            pack_id,
        ],
    )


def mark_next_revealed(conn: DuckDBPyConnection, pack_id: str, expected_index: int, now_ms: int) -> bool:
    """Advance current_reveal_index by one and flag that pick revealed, atomically.
    Both writes are conditional; if either misses, nothing changes."""
    position = expected_index + 1
    try:
        with transaction(conn):
            advanced = conn.execute(
                """
                UPDATE packs SET current_reveal_index = ?, last_reveal_at = ?, updated_at = ?
                WHERE pack_id = ? AND current_reveal_index = ?
                RETURNING pack_id
                """,
                [position, now_ms, now_ms, pack_id, expected_index],
            ).fetchall()
            if not advanced:
                raise _RevealConflict
            flagged = conn.execute(
                """
                UPDATE picks SET reveal_animation_played = true
                WHERE pick_id = ? AND is_resolved = true AND reveal_animation_played = false
                RETURNING pick_id
                """,
                [pick_id_for(pack_id, position)],
            ).fetchall()
            if not flagged:
                raise _RevealConflict
    except _RevealConflict:
        return False
    return True


class _RevealConflict(Exception):
    """Raised inside the reveal transaction to roll it back."""
