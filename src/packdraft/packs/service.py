"""Pack lifecycle for players: open, submit picks, read, reveal.

Submission is exactly-once on ``pack_id`` and on the payment reference; a
retry of either returns the stored pack instead of failing.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import duckdb
import structlog

from packdraft.clock import week_bounds_ms
from packdraft.errors import (
    PackLimitReachedError,
    PackNotFoundError,
    PaymentRejectedError,
    PoolNotFoundError,
    ValidationError,
)
from packdraft.game.composer import ComposedPack, compose_pack
from packdraft.game.ledger import compute_ledger
from packdraft.game.reveal import (
    PackDisplayStatus,
    advance,
    display_status,
    reveal_status,
    status_message,
)
from packdraft.game.scoring import combined_probability, max_potential_points
from packdraft.models import OPEN_STATUSES, Event, Pack, Pick, PickDraft
from packdraft.storage.events import get_events
from packdraft.storage.packs import (
    count_free_packs_between,
    find_pack_by_payment_ref,
    get_pack,
    insert_pack_with_picks,
    list_packs_for_profile,
    mark_next_revealed,
    pick_id_for,
)
from packdraft.storage.pools import get_pool_by_slug

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

    from packdraft.payments import PaymentVerifier

log = structlog.get_logger(__name__)


@dataclass
class Payment:
    payment_ref: str
    buyer_wallet: str
    amount: float


@dataclass
class SubmitResult:
    pack: Pack
    already_exists: bool = False


@dataclass
class WeeklyStatus:
    weekly_limit: int
    packs_opened_this_week: int
    packs_remaining: int | None  # None when unlimited
    can_open_pack: bool
    week_start: int
    week_end: int


@dataclass
class PackView:
    """Client read model of one pack."""

    pack: Pack
    resolved_count: int
    revealed_count: int
    total_points: float
    resolution_status: str
    status: PackDisplayStatus
    next_revealable_position: int | None
    pending_positions: list[int] = field(default_factory=list)
    queued_positions: list[int] = field(default_factory=list)
    is_fully_revealed: bool = False
    status_message: str = ""
    max_potential_points: float = 0.0
    combined_probability: float = 0.0


@dataclass
class RevealResult:
    success: bool
    pick: Pick | None = None
    pack: Pack | None = None
    reason: str | None = None


def open_pack(
    conn: DuckDBPyConnection,
    pool_slug: str,
    count: int,
    now_ms: int,
    rng: random.Random | None = None,
) -> ComposedPack:
    """Compose a pack from an eligible pool. Fewer events than requested is a
    degraded success (``ComposedPack.degraded``), not an error."""
    pool = get_pool_by_slug(conn, pool_slug)
    if pool is None:
        raise PoolNotFoundError(f"pool not found: {pool_slug}")
    if not pool.is_open(now_ms):
        raise ValidationError(f"pool {pool_slug} is not open")
    candidates = pool.candidates
    if len(candidates) < pool.min_events_required:
        raise ValidationError(
            f"pool {pool_slug} has {len(candidates)} events, needs {pool.min_events_required}"
        )
    composed = compose_pack(candidates, count, rng)
    log.info(
        "pack_composed",
        pool=pool_slug,
        requested=count,
        selected=len(composed.selections),
        degraded=composed.degraded,
    )
    return composed


def weekly_status(conn: DuckDBPyConnection, profile_id: str, weekly_limit: int, now_ms: int) -> WeeklyStatus:
    start, end = week_bounds_ms(now_ms)
    opened = count_free_packs_between(conn, profile_id, start, end)
    if weekly_limit <= 0:
        return WeeklyStatus(weekly_limit, opened, None, True, start, end)
    remaining = max(weekly_limit - opened, 0)
    return WeeklyStatus(weekly_limit, opened, remaining, remaining > 0, start, end)


def _validate_drafts(
    drafts: list[PickDraft],
    events: dict[str, Event],
    cards_per_pack: int,
) -> None:
    if not drafts:
        raise ValidationError("a pack needs at least one pick")
    if len(drafts) > cards_per_pack:
        raise ValidationError(f"a pack holds at most {cards_per_pack} picks, got {len(drafts)}")
    positions = sorted(d.position for d in drafts)
    if positions != list(range(1, len(drafts) + 1)):
        raise ValidationError(f"positions must be exactly 1..{len(drafts)}, got {positions}")
    event_ids = [d.event_id for d in drafts]
    if len(set(event_ids)) != len(event_ids):
        raise ValidationError("the same event appears in more than one pick")
    for d in drafts:
        event = events.get(d.event_id)
        if event is None:
            raise ValidationError(f"unknown event: {d.event_id}")
        if event.status not in OPEN_STATUSES:
            raise ValidationError(f"event {d.event_id} is {event.status} and cannot be picked")
        if d.picked_outcome == "draw" and not event.has_draw:
            raise ValidationError(f"event {d.event_id} has no draw outcome")
        probability = event.probability_of(d.picked_outcome)
        if probability is None or probability <= 0:
            raise ValidationError(f"outcome {d.picked_outcome} of {d.event_id} has no positive probability")


def _build_picks(pack_id: str, drafts: list[PickDraft], events: dict[str, Event], now_ms: int) -> list[Pick]:
    """Snapshot probabilities from the stored events at submission time."""
    picks = []
    for d in sorted(drafts, key=lambda x: x.position):
        event = events[d.event_id]
        opposite = {"a": "b", "b": "a"}.get(d.picked_outcome)
        picks.append(
            Pick(
                pick_id=pick_id_for(pack_id, d.position),
                pack_id=pack_id,
                event_id=d.event_id,
                position=d.position,
                picked_outcome=d.picked_outcome,
                picked_at=d.picked_at or now_ms,
                probability_snapshot=event.probability_of(d.picked_outcome),
                opposite_probability_snapshot=event.probability_of(opposite) if opposite else None,
                draw_probability_snapshot=event.outcome_draw_probability,
            )
        )
    return picks


def _existing(conn: DuckDBPyConnection, pack_id: str) -> SubmitResult:
    pack = get_pack(conn, pack_id)
    if pack is None:
        raise PackNotFoundError(f"pack not found: {pack_id}")
    return SubmitResult(pack=pack, already_exists=True)


async def submit_pack(
    conn: DuckDBPyConnection,
    pack_id: str,
    profile_id: str,
    drafts: list[PickDraft],
    now_ms: int,
    *,
    pool_id: str | None = None,
    cards_per_pack: int = 5,
    weekly_limit: int = 0,
    payment: Payment | None = None,
    verifier: PaymentVerifier | None = None,
    premium_price: float = 0.0,
) -> SubmitResult:
    """Create a pack and its picks atomically.

    A retried ``pack_id`` or an already-used payment reference returns the
    stored pack with ``already_exists`` set. Raises ValidationError for a bad
    pick set, PackLimitReachedError when the weekly free allowance is used up,
    and PaymentRejectedError when the verifier refuses a premium payment.
    """
    if get_pack(conn, pack_id, with_picks=False) is not None:
        log.info("pack_submit_replayed", pack_id=pack_id)
        return _existing(conn, pack_id)
    if payment is not None:
        paid_pack = find_pack_by_payment_ref(conn, payment.payment_ref)
        if paid_pack is not None:
            log.info("payment_replayed", payment_ref=payment.payment_ref, pack_id=paid_pack)
            return _existing(conn, paid_pack)

    events = get_events(conn, [d.event_id for d in drafts])
    _validate_drafts(drafts, events, cards_per_pack)

    if payment is None:
        status = weekly_status(conn, profile_id, weekly_limit, now_ms)
        if not status.can_open_pack:
            raise PackLimitReachedError(
                f"weekly limit of {weekly_limit} free packs reached for {profile_id}"
            )
    else:
        if verifier is None:
            raise PaymentRejectedError("premium packs are not available")
        expected = premium_price or payment.amount
        if not await verifier.verify(payment.payment_ref, payment.buyer_wallet, expected):
            log.warning("payment_rejected", payment_ref=payment.payment_ref, profile_id=profile_id)
            raise PaymentRejectedError(f"payment {payment.payment_ref} was not accepted")

    pack = Pack(
        pack_id=pack_id,
        profile_id=profile_id,
        pool_id=pool_id,
        opened_at=now_ms,
        is_premium=payment is not None,
        payment_ref=payment.payment_ref if payment else None,
        payment_amount=payment.amount if payment else None,
        buyer_wallet=payment.buyer_wallet if payment else None,
    )
    picks = _build_picks(pack_id, drafts, events, now_ms)
    try:
        insert_pack_with_picks(conn, pack, picks, now_ms)
    except duckdb.ConstraintException:
        # Lost a race with an identical submission or a reused payment
        log.info("pack_submit_conflict", pack_id=pack_id)
        if get_pack(conn, pack_id, with_picks=False) is not None:
            return _existing(conn, pack_id)
        if payment is not None and (paid_pack := find_pack_by_payment_ref(conn, payment.payment_ref)):
            return _existing(conn, paid_pack)
        raise

    pack.picks = picks
    log.info(
        "pack_submitted",
        pack_id=pack_id,
        profile_id=profile_id,
        picks=len(picks),
        premium=pack.is_premium,
    )
    return SubmitResult(pack=pack)


def pack_view(pack: Pack) -> PackView:
    ledger = compute_ledger(pack.picks)
    status = reveal_status(pack)
    potential = max_potential_points(p.probability_snapshot for p in pack.picks)
    return PackView(
        pack=pack,
        resolved_count=ledger.resolved_count,
        revealed_count=ledger.revealed_count,
        total_points=ledger.total_points,
        resolution_status=ledger.resolution_status,
        status=display_status(pack),
        next_revealable_position=status.next_reveal_position,
        pending_positions=status.pending_positions,
        queued_positions=status.queued_positions,
        is_fully_revealed=status.is_fully_revealed,
        status_message=status_message(pack),
        max_potential_points=potential.total_points,
        combined_probability=combined_probability(p.probability_snapshot for p in pack.picks),
    )


def get_pack_view(conn: DuckDBPyConnection, pack_id: str) -> PackView:
    pack = get_pack(conn, pack_id)
    if pack is None:
        raise PackNotFoundError(f"pack not found: {pack_id}")
    return pack_view(pack)


def list_pack_views(conn: DuckDBPyConnection, profile_id: str) -> list[PackView]:
    return [pack_view(p) for p in list_packs_for_profile(conn, profile_id) if p.picks]


def reveal_next(conn: DuckDBPyConnection, pack_id: str, now_ms: int) -> RevealResult:
    """Reveal the pick at current_reveal_index + 1 if it is resolved.

    Later positions that already resolved stay queued; only one position
    advances per call.
    """
    pack = get_pack(conn, pack_id)
    if pack is None:
        raise PackNotFoundError(f"pack not found: {pack_id}")
    position = pack.current_reveal_index + 1
    try:
        updated, pick = advance(pack, now_ms)
    except ValueError:
        reason = "complete" if position > len(pack.picks) else "not_resolved"
        return RevealResult(success=False, pack=pack, reason=reason)
    if not mark_next_revealed(conn, pack_id, pack.current_reveal_index, now_ms):
        log.info("reveal_conflict", pack_id=pack_id, position=position)
        return RevealResult(success=False, pack=get_pack(conn, pack_id), reason="conflict")

    log.info("pick_revealed", pack_id=pack_id, position=position, is_correct=pick.is_correct)
    return RevealResult(success=True, pick=pick, pack=updated)
