"""Resolution sweeps against an in-memory venue."""

import asyncio
import time

from packdraft.clock import DAY_MS, MINUTE_MS
from packdraft.errors import VenueError
from packdraft.packs.service import reveal_next
from packdraft.resolution.scheduler import ResolutionScheduler
from packdraft.storage.events import get_event
from packdraft.storage.packs import get_pack
from packdraft.storage.queue import enqueue_event, get_entry
from packdraft.storage.sync_log import recent_syncs
from packdraft.venues.base import VenueResolution
from tests.conftest import T0, FakeVenue, make_event, seed_events, submit


class Clock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now


def _scheduler(conn, venue, clock=None, **kwargs):
    return ResolutionScheduler(conn, venue, clock=clock or Clock(), **kwargs)


def _seed_pack(conn, n=3, pack_id="pk1"):
    seed_events(conn, [make_event(i) for i in range(1, n + 1)])
    submit(conn, pack_id, [f"polymarket:m{i}" for i in range(1, n + 1)])


def test_sweep_activates_settles_and_backs_off(temp_db):
    _seed_pack(temp_db)
    venue = FakeVenue()
    venue.settle("polymarket:m1", "a")
    report = asyncio.run(_scheduler(temp_db, venue).sweep())

    assert report.activated == 3
    assert report.enqueued == 3
    assert [s.event_id for s in report.settled] == ["polymarket:m1"]
    assert report.rescheduled == 2
    assert get_event(temp_db, "polymarket:m1").status == "resolved"
    assert get_entry(temp_db, "polymarket:m1") is None

    entry = get_entry(temp_db, "polymarket:m2")
    assert entry.check_count == 1
    assert entry.next_check_at == T0 + 60 * MINUTE_MS
    assert get_pack(temp_db, "pk1").resolution_status == "partially_resolved"

    log_row = recent_syncs(temp_db, sync_type="resolution_check")[0]
    assert log_row["status"] == "completed"
    assert log_row["items_processed"] == 1


def test_not_due_events_are_not_polled(temp_db):
    _seed_pack(temp_db)
    venue = FakeVenue()
    clock = Clock()
    scheduler = _scheduler(temp_db, venue, clock)
    asyncio.run(scheduler.sweep())
    assert len(venue.checked) == 3

    clock.now = T0 + 30 * MINUTE_MS
    report = asyncio.run(scheduler.sweep())
    assert report.due == 0
    assert len(venue.checked) == 3

    clock.now = T0 + 60 * MINUTE_MS
    asyncio.run(scheduler.sweep())
    assert len(venue.checked) == 6
    assert get_entry(temp_db, "polymarket:m1").check_count == 2


def test_slow_poll_is_isolated_by_timeout(temp_db):
    _seed_pack(temp_db)
    venue = FakeVenue(delays={"polymarket:m2": 5.0})
    venue.settle("polymarket:m1", "a")
    venue.settle("polymarket:m3", "b")

    started = time.monotonic()
    report = asyncio.run(_scheduler(temp_db, venue, poll_timeout_sec=0.05).sweep())
    assert time.monotonic() - started < 2.0

    assert sorted(s.event_id for s in report.settled) == ["polymarket:m1", "polymarket:m3"]
    assert report.rescheduled == 1
    assert get_event(temp_db, "polymarket:m2").status == "active"
    assert get_entry(temp_db, "polymarket:m2").check_count == 1


def test_venue_failures_reschedule(temp_db):
    _seed_pack(temp_db)
    venue = FakeVenue(
        errors={"polymarket:m1": VenueError("503"), "polymarket:m2": RuntimeError("bad payload")}
    )
    report = asyncio.run(_scheduler(temp_db, venue).sweep())
    assert report.settled == []
    assert report.rescheduled == 3
    assert report.errors == []
    assert get_entry(temp_db, "polymarket:m1").check_count == 1


def test_resolved_without_winner_is_retried(temp_db):
    _seed_pack(temp_db, n=1)
    venue = FakeVenue(resolutions={"polymarket:m1": VenueResolution(resolved=True)})
    report = asyncio.run(_scheduler(temp_db, venue).sweep())
    assert report.settled == []
    assert report.rescheduled == 1
    assert report.errors[0]["event_id"] == "polymarket:m1"
    assert get_event(temp_db, "polymarket:m1").status == "active"


def test_orphan_and_cancelled_entries_are_dropped(temp_db):
    seed_events(temp_db, [make_event(1, status="cancelled")])
    enqueue_event(temp_db, "polymarket:m1", T0)
    enqueue_event(temp_db, "polymarket:ghost", T0)
    venue = FakeVenue()
    report = asyncio.run(_scheduler(temp_db, venue).sweep())
    assert report.dropped == 2
    assert [e["event_id"] for e in report.errors] == ["polymarket:ghost"]
    assert get_entry(temp_db, "polymarket:m1") is None
    assert get_entry(temp_db, "polymarket:ghost") is None
    assert venue.checked == []


def test_overlapping_sweeps_poll_each_event_once(temp_db):
    _seed_pack(temp_db)
    venue = FakeVenue(delays={f"polymarket:m{i}": 0.02 for i in range(1, 4)})
    for i in range(1, 4):
        venue.settle(f"polymarket:m{i}", "a")

    async def both():
        a = _scheduler(temp_db, venue)
        b = _scheduler(temp_db, venue)
        return await asyncio.gather(a.sweep(), b.sweep())

    first, second = asyncio.run(both())
    assert sorted(venue.checked) == ["polymarket:m1", "polymarket:m2", "polymarket:m3"]
    assert len(first.settled) + len(second.settled) == 3
    pack = get_pack(temp_db, "pk1")
    # 3 x 2.00 + perfect-pack 5.00
    assert pack.total_points == 11.0


def test_reveal_order_is_positional_whatever_the_settlement_order(temp_db):
    _seed_pack(temp_db, n=5)
    venue = FakeVenue()
    clock = Clock()
    scheduler = _scheduler(temp_db, venue, clock)
    revealed = []
    revealed_after_round = []

    for position in [3, 1, 5, 2, 4]:
        venue.settle(f"polymarket:m{position}", "a")
        clock.now += 2 * DAY_MS
        asyncio.run(scheduler.sweep())
        this_round = []
        while True:
            result = reveal_next(temp_db, "pk1", clock.now)
            if not result.success:
                break
            this_round.append(result.pick.position)
        revealed.extend(this_round)
        revealed_after_round.append(this_round)

    assert revealed == [1, 2, 3, 4, 5]
    assert revealed_after_round == [[], [1], [], [2, 3], [4, 5]]
    pack = get_pack(temp_db, "pk1")
    assert pack.current_reveal_index == 5
    assert pack.resolution_status == "fully_resolved"
    assert pack.total_points == 15.0


def test_run_forever_skips_missed_ticks(temp_db):
    venue = FakeVenue()
    scheduler = _scheduler(temp_db, venue)
    starts = []
    active = []

    async def slow_sweep():
        active.append(1)
        assert len(active) == 1
        starts.append(time.monotonic())
        await asyncio.sleep(0.15)
        active.pop()

    scheduler.sweep = slow_sweep

    async def main():
        stop = asyncio.Event()
        runner = asyncio.create_task(scheduler.run_forever(0.1, stop))
        await asyncio.sleep(0.5)
        stop.set()
        await asyncio.wait_for(runner, timeout=1.0)

    asyncio.run(main())
    assert len(starts) >= 2
    gaps = [b - a for a, b in zip(starts, starts[1:])]
    # A 0.15s sweep on a 0.1s cadence runs on every other tick
    assert all(g >= 0.18 for g in gaps)
