"""Pack opening, exactly-once submission, weekly limit, payments, reveal."""

import asyncio
import random

import pytest

from packdraft.clock import DAY_MS, week_bounds_ms
from packdraft.errors import (
    PackLimitReachedError,
    PackNotFoundError,
    PaymentRejectedError,
    PoolNotFoundError,
    ValidationError,
)
from packdraft.models import PickDraft
from packdraft.packs.service import (
    Payment,
    get_pack_view,
    open_pack,
    reveal_next,
    submit_pack,
    weekly_status,
)
from packdraft.resolution.settlement import settle_event
from packdraft.storage.events import activate_due_events, update_event_prices
from packdraft.storage.packs import get_pack
from tests.conftest import T0, make_event, seed_events, seed_pool, submit


class StubVerifier:
    def __init__(self, accept=True):
        self.accept = accept
        self.calls = []

    async def verify(self, payment_ref, buyer, expected_amount):
        self.calls.append((payment_ref, buyer, expected_amount))
        return self.accept


def _drafts(*specs):
    return [PickDraft(event_id=eid, position=pos, picked_outcome=o) for eid, pos, o in specs]


def _events(conn, n=3):
    return seed_events(conn, [make_event(i) for i in range(1, n + 1)])


# --- opening ---


def test_open_pack_from_pool(temp_db):
    seed_pool(temp_db, events=[make_event(i, p_a=0.5 + i / 100) for i in range(1, 8)], min_events=5)
    composed = open_pack(temp_db, "week-1", 5, T0, random.Random(1))
    assert len(composed.selections) == 5
    assert not composed.degraded


def test_open_pack_degraded_when_pool_short(temp_db):
    seed_pool(temp_db, events=[make_event(1), make_event(2)], min_events=1)
    composed = open_pack(temp_db, "week-1", 5, T0)
    assert composed.degraded
    assert len(composed.selections) == 2


def test_open_pack_rejects_unknown_closed_or_thin_pools(temp_db):
    with pytest.raises(PoolNotFoundError):
        open_pack(temp_db, "nope", 5, T0)
    seed_pool(temp_db, slug="thin", pool_id="thin", events=[make_event(1, pool_id="thin")], min_events=5)
    with pytest.raises(ValidationError):
        open_pack(temp_db, "thin", 5, T0)
    seed_pool(temp_db, slug="later", pool_id="later", starts_at=T0 + DAY_MS, min_events=0)
    with pytest.raises(ValidationError):
        open_pack(temp_db, "later", 5, T0)


# --- submission ---


def test_submit_snapshots_probabilities(temp_db):
    seed_events(temp_db, [make_event(1, p_a=0.3), make_event(2, p_a=0.45, draw=0.25)])
    result = asyncio.run(
        submit_pack(
            temp_db,
            "pk1",
            "p1",
            _drafts(("polymarket:m1", 1, "b"), ("polymarket:m2", 2, "draw")),
            T0,
        )
    )
    assert not result.already_exists
    first, second = result.pack.sorted_picks()
    assert first.probability_snapshot == 0.7
    assert first.opposite_probability_snapshot == 0.3
    assert second.probability_snapshot == 0.25
    assert second.draw_probability_snapshot == 0.25

    # Later price moves do not touch stored snapshots
    update_event_prices(temp_db, "polymarket:m1", 0.9, 0.1, None, T0 + 1)
    assert get_pack(temp_db, "pk1").pick_at(1).probability_snapshot == 0.7


def test_submit_is_idempotent_on_pack_id(temp_db):
    _events(temp_db)
    first = submit(temp_db, "pk1", ["polymarket:m1", "polymarket:m2"])
    again = submit(temp_db, "pk1", ["polymarket:m3"], outcome="b")
    assert not first.already_exists
    assert again.already_exists
    assert [p.event_id for p in again.pack.sorted_picks()] == ["polymarket:m1", "polymarket:m2"]
    assert temp_db.execute("SELECT COUNT(*) FROM picks").fetchone()[0] == 2


@pytest.mark.parametrize(
    "specs",
    [
        [],
        [("polymarket:m1", 1, "a"), ("polymarket:m2", 1, "a")],
        [("polymarket:m1", 1, "a"), ("polymarket:m2", 3, "a")],
        [("polymarket:m1", 0, "a")],
        [("polymarket:m1", 1, "a"), ("polymarket:m1", 2, "b")],
        [("polymarket:unknown", 1, "a")],
        [("polymarket:m1", 1, "draw")],
    ],
)
def test_submit_rejects_malformed_pick_sets(temp_db, specs):
    _events(temp_db)
    with pytest.raises(ValidationError):
        asyncio.run(submit_pack(temp_db, "pk1", "p1", _drafts(*specs), T0))
    assert get_pack(temp_db, "pk1") is None


def test_submit_rejects_too_many_picks(temp_db):
    _events(temp_db, n=3)
    specs = [(f"polymarket:m{i}", i, "a") for i in range(1, 4)]
    with pytest.raises(ValidationError):
        asyncio.run(submit_pack(temp_db, "pk1", "p1", _drafts(*specs), T0, cards_per_pack=2))


def test_submit_rejects_settled_event(temp_db):
    _events(temp_db)
    activate_due_events(temp_db, T0)
    settle_event(temp_db, "polymarket:m1", "a", T0)
    with pytest.raises(ValidationError):
        submit(temp_db, "pk1", ["polymarket:m1"])


def test_submit_rejects_zero_probability_outcome(temp_db):
    seed_events(temp_db, [make_event(1, p_a=1.0)])
    with pytest.raises(ValidationError):
        submit(temp_db, "pk1", ["polymarket:m1"], outcome="b")


# --- weekly limit ---


def test_weekly_free_pack_limit(temp_db):
    _events(temp_db)
    for i in range(2):
        submit(temp_db, f"pk{i}", ["polymarket:m1"], weekly_limit=2)
    status = weekly_status(temp_db, "p1", 2, T0)
    assert status.packs_opened_this_week == 2
    assert status.packs_remaining == 0
    assert not status.can_open_pack
    with pytest.raises(PackLimitReachedError):
        submit(temp_db, "pk9", ["polymarket:m1"], weekly_limit=2)

    # Other profiles and next week are unaffected
    submit(temp_db, "other", ["polymarket:m1"], profile_id="p2", weekly_limit=2)
    _, week_end = week_bounds_ms(T0)
    assert weekly_status(temp_db, "p1", 2, week_end).can_open_pack


def test_unlimited_when_limit_is_zero(temp_db):
    status = weekly_status(temp_db, "p1", 0, T0)
    assert status.can_open_pack
    assert status.packs_remaining is None


# --- premium ---


def test_premium_pack_gated_on_verifier_and_skips_limit(temp_db):
    _events(temp_db)
    submit(temp_db, "free", ["polymarket:m1"], weekly_limit=1)
    verifier = StubVerifier()
    payment = Payment(payment_ref="tx-1", buyer_wallet="wallet-1", amount=0.1)
    result = submit(
        temp_db, "paid", ["polymarket:m2"], weekly_limit=1,
        payment=payment, verifier=verifier, premium_price=0.1,
    )
    assert result.pack.is_premium
    assert verifier.calls == [("tx-1", "wallet-1", 0.1)]
    assert weekly_status(temp_db, "p1", 1, T0).packs_opened_this_week == 1


def test_payment_replay_is_a_no_op(temp_db):
    _events(temp_db)
    payment = Payment(payment_ref="tx-1", buyer_wallet="wallet-1", amount=0.1)
    verifier = StubVerifier()
    submit(temp_db, "paid", ["polymarket:m1"], payment=payment, verifier=verifier)
    replay = submit(temp_db, "paid-again", ["polymarket:m2"], payment=payment, verifier=verifier)
    assert replay.already_exists
    assert replay.pack.pack_id == "paid"
    assert len(verifier.calls) == 1
    assert get_pack(temp_db, "paid-again") is None


def test_rejected_payment(temp_db):
    _events(temp_db)
    payment = Payment(payment_ref="tx-1", buyer_wallet="wallet-1", amount=0.1)
    with pytest.raises(PaymentRejectedError):
        submit(temp_db, "paid", ["polymarket:m1"], payment=payment, verifier=StubVerifier(accept=False))
    with pytest.raises(PaymentRejectedError):
        submit(temp_db, "paid", ["polymarket:m1"], payment=payment)
    assert get_pack(temp_db, "paid") is None


# --- read model and reveal ---


def test_pack_view_and_reveal(temp_db):
    _events(temp_db)
    submit(temp_db, "pk1", ["polymarket:m1", "polymarket:m2", "polymarket:m3"])
    activate_due_events(temp_db, T0)

    view = get_pack_view(temp_db, "pk1")
    assert view.resolved_count == 0
    assert view.next_revealable_position is None
    assert view.max_potential_points == 11.0
    assert view.combined_probability == pytest.approx(0.125)

    settle_event(temp_db, "polymarket:m2", "a", T0 + 1)
    result = reveal_next(temp_db, "pk1", T0 + 2)
    assert not result.success
    assert result.reason == "not_resolved"

    settle_event(temp_db, "polymarket:m1", "b", T0 + 3)
    view = get_pack_view(temp_db, "pk1")
    assert view.resolved_count == 2
    assert view.next_revealable_position == 1
    assert view.queued_positions == [2]

    result = reveal_next(temp_db, "pk1", T0 + 4)
    assert result.success
    assert result.pick.position == 1
    assert result.pick.is_correct is False
    assert result.pack.current_reveal_index == 1

    view = get_pack_view(temp_db, "pk1")
    assert view.revealed_count == 1
    assert view.next_revealable_position == 2
    assert view.total_points == 2.0


def test_reveal_unknown_pack(temp_db):
    with pytest.raises(PackNotFoundError):
        reveal_next(temp_db, "missing", T0)


def test_reveal_result_matches_stored_pack(temp_db):
    _events(temp_db, 2)
    submit(temp_db, "pk1", ["polymarket:m1", "polymarket:m2"])
    activate_due_events(temp_db, T0)
    settle_event(temp_db, "polymarket:m1", "a", T0 + 1)

    result = reveal_next(temp_db, "pk1", T0 + 2)
    assert result.success
    assert result.pick.reveal_animation_played
    assert result.pack.current_reveal_index == 1
    assert result.pack.last_reveal_at == T0 + 2
    assert result.pack == get_pack(temp_db, "pk1")


def test_reveal_lost_race_reports_conflict(temp_db, monkeypatch):
    _events(temp_db, 1)
    submit(temp_db, "pk1", ["polymarket:m1"])
    activate_due_events(temp_db, T0)
    settle_event(temp_db, "polymarket:m1", "a", T0 + 1)
    monkeypatch.setattr("packdraft.packs.service.mark_next_revealed", lambda *a: False)

    result = reveal_next(temp_db, "pk1", T0 + 2)
    assert not result.success
    assert result.reason == "conflict"
    assert get_pack(temp_db, "pk1").current_reveal_index == 0
