"""Settlement cascade: event commit point, per-pick scoring, pack recomputation, reconciliation.

The event write is the commit point. Everything after it is guarded by
``is_resolved = false`` filters, so re-running the cascade on a settled event
is a no-op and a crash mid-cascade is repaired by :func:`reconcile`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from packdraft.errors import DataIntegrityError, ValidationError
from packdraft.game.ledger import LedgerSnapshot, compute_ledger
from packdraft.game.scoring import score_pick
from packdraft.storage.db import transaction
from packdraft.storage.events import list_resolved_with_unresolved_picks, mark_event_resolved
from packdraft.storage.packs import (
    get_picks_for_pack,
    get_unresolved_picks_for_event,
    resolve_pick,
    update_pack_aggregates,
)
from packdraft.storage.queue import remove_entry

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

log = structlog.get_logger(__name__)


@dataclass
class SettlementStats:
    event_id: str
    winning_outcome: str
    picks_resolved: int = 0
    packs_updated: int = 0
    points_awarded: float = 0.0
    errors: list[dict[str, Any]] = field(default_factory=list)


def recompute_pack(conn: DuckDBPyConnection, pack_id: str, now_ms: int) -> LedgerSnapshot:
    """Recompute a pack's aggregates from all of its picks and persist them."""
    picks = get_picks_for_pack(conn, pack_id)
    if not picks:
        raise DataIntegrityError(f"pack {pack_id} has no picks")
    ledger = compute_ledger(picks)
    update_pack_aggregates(conn, pack_id, ledger, now_ms)
    return ledger


def cascade_settlement(
    conn: DuckDBPyConnection,
    event_id: str,
    winning_outcome: str,
    now_ms: int,
) -> SettlementStats:
    """Resolve every still-unresolved pick on a settled event and refresh its pack.

    Each pick is resolved together with its pack's aggregates in one transaction,
    so a pack never shows stale totals for a resolved pick. A failing pick or
    pack is logged and skipped; the rest still settle.
    """
    stats = SettlementStats(event_id=event_id, winning_outcome=winning_outcome)
    for pick in get_unresolved_picks_for_event(conn, event_id):
        is_correct = pick.picked_outcome == winning_outcome
        try:
            score = score_pick(pick.probability_snapshot, is_correct)
            with transaction(conn):
                if not resolve_pick(conn, pick.pick_id, is_correct, score.points, now_ms):
                    continue
                recompute_pack(conn, pick.pack_id, now_ms)
        except (ValidationError, DataIntegrityError) as e:
            log.error("pick_settlement_failed", event_id=event_id, pick_id=pick.pick_id, error=str(e))
            stats.errors.append({"pick_id": pick.pick_id, "error": str(e)})
            continue
        stats.picks_resolved += 1
        stats.packs_updated += 1
        stats.points_awarded += score.points

    remove_entry(conn, event_id)
    log.info(
        "event_settled",
        event_id=event_id,
        winning_outcome=winning_outcome,
        picks_resolved=stats.picks_resolved,
        packs_updated=stats.packs_updated,
        points_awarded=round(stats.points_awarded, 2),
    )
    return stats


def settle_event(
    conn: DuckDBPyConnection,
    event_id: str,
    winning_outcome: str,
    now_ms: int,
) -> SettlementStats | None:
    """Commit the event's settlement, then cascade. Returns None when the
    conditional write finds the event no longer active (someone else settled it)."""
    if not mark_event_resolved(conn, event_id, winning_outcome, now_ms):
        log.info("settlement_already_committed", event_id=event_id)
        return None
    return cascade_settlement(conn, event_id, winning_outcome, now_ms)


def reconcile(conn: DuckDBPyConnection, now_ms: int) -> list[SettlementStats]:
    """Finish cascades for resolved events that still have unresolved picks."""
    results = []
    for event in list_resolved_with_unresolved_picks(conn):
        if event.winning_outcome is None:
            log.error("resolved_event_without_winner", event_id=event.event_id)
            continue
        log.warning("reconciling_event", event_id=event.event_id)
        try:
            results.append(cascade_settlement(conn, event.event_id, event.winning_outcome, now_ms))
        except Exception:
            log.exception("reconcile_failed", event_id=event.event_id)
    return results
