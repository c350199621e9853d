"""Resolution sweep: activate started events, poll due queue entries, settle, back off."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

import structlog

from packdraft.clock import now_ms as wall_clock_ms
from packdraft.errors import DataIntegrityError, VenueError
from packdraft.models import ResolutionQueueEntry
from packdraft.resolution.settlement import SettlementStats, cascade_settlement, reconcile, settle_event
from packdraft.storage.events import activate_due_events, get_event
from packdraft.storage.queue import (
    claim_entry,
    due_entries,
    enqueue_missing_active,
    remove_entry,
    reschedule_entry,
)
from packdraft.storage.sync_log import complete_sync, start_sync

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

    from packdraft.config import Settings
    from packdraft.venues.base import MarketVenue

log = structlog.get_logger(__name__)

EntryOutcome = Literal["settled", "rescheduled", "dropped", "contended", "failed"]


@dataclass
class SweepReport:
    activated: int = 0
    enqueued: int = 0
    due: int = 0
    claimed: int = 0
    settled: list[SettlementStats] = field(default_factory=list)
    reconciled: list[SettlementStats] = field(default_factory=list)
    rescheduled: int = 0
    dropped: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    duration_ms: int = 0

    def summary(self) -> dict[str, Any]:
        return {
            "activated": self.activated,
            "enqueued": self.enqueued,
            "due": self.due,
            "checked": self.claimed,
            "resolved": len(self.settled),
            "reconciled": len(self.reconciled),
            "rescheduled": self.rescheduled,
            "dropped": self.dropped,
            "failed": len(self.errors),
            "duration_ms": self.duration_ms,
        }


class ResolutionScheduler:
    """One sweep is safe to run concurrently with another or after a crash:
    queue claims and the event settlement write are both conditional."""

    def __init__(
        self,
        conn: DuckDBPyConnection,
        venue: MarketVenue,
        *,
        batch_size: int = 20,
        concurrency: int = 5,
        poll_timeout_sec: float = 15.0,
        base_backoff_minutes: int = 60,
        max_backoff_minutes: int = 24 * 60,
        claim_lease_sec: int = 300,
        clock: Callable[[], int] = wall_clock_ms,
    ):
        self.conn = conn
        self.venue = venue
        self.batch_size = batch_size
        self.concurrency = max(1, concurrency)
        self.poll_timeout_sec = poll_timeout_sec
        self.base_backoff_minutes = base_backoff_minutes
        self.max_backoff_minutes = max_backoff_minutes
        self.claim_lease_ms = claim_lease_sec * 1000
        self.clock = clock

    @classmethod
    def from_settings(cls, conn: DuckDBPyConnection, venue: MarketVenue, settings: Settings) -> ResolutionScheduler:
        return cls(
            conn,
            venue,
            batch_size=settings.resolution_batch_size,
            concurrency=settings.resolution_concurrency,
            poll_timeout_sec=settings.poll_timeout_sec,
            base_backoff_minutes=settings.base_backoff_minutes,
            max_backoff_minutes=settings.max_backoff_minutes,
            claim_lease_sec=settings.claim_lease_sec,
        )

    async def sweep(self) -> SweepReport:
        started = time.monotonic()
        report = SweepReport()
        now = self.clock()
        sync_id = start_sync(self.conn, "resolution_check", now)

        report.activated = len(activate_due_events(self.conn, now))
        report.enqueued = len(enqueue_missing_active(self.conn, now))
        if report.activated:
            log.info("events_activated", count=report.activated, enqueued=report.enqueued)

        report.reconciled = reconcile(self.conn, now)

        entries = due_entries(self.conn, now, self.batch_size)
        report.due = len(entries)
        claimed = [e for e in entries if claim_entry(self.conn, e, now, self.claim_lease_ms)]
        report.claimed = len(claimed)

        semaphore = asyncio.Semaphore(self.concurrency)

        async def run_one(entry: ResolutionQueueEntry) -> tuple[EntryOutcome, SettlementStats | None]:
            async with semaphore:
                return await self._process_entry(entry, report)

        results = await asyncio.gather(*(run_one(e) for e in claimed), return_exceptions=True)
        for entry, result in zip(claimed, results):
            if isinstance(result, BaseException):
                log.error("entry_failed", event_id=entry.event_id, error=repr(result))
                report.errors.append({"event_id": entry.event_id, "error": repr(result)})
                continue
            outcome, stats = result
            if outcome == "settled" and stats is not None:
                report.settled.append(stats)
            elif outcome == "rescheduled":
                report.rescheduled += 1
            elif outcome == "dropped":
                report.dropped += 1

        report.duration_ms = int((time.monotonic() - started) * 1000)
        complete_sync(
            self.conn,
            sync_id,
            items_processed=len(report.settled),
            errors=report.errors,
            now_ms=self.clock(),
        )
        log.info("sweep_complete", **report.summary())
        return report

    async def _process_entry(
        self,
        entry: ResolutionQueueEntry,
        report: SweepReport,
    ) -> tuple[EntryOutcome, SettlementStats | None]:
        event = get_event(self.conn, entry.event_id)
        if event is None:
            err = DataIntegrityError(f"queued event {entry.event_id} does not exist")
            log.error("orphan_queue_entry", event_id=entry.event_id, error=str(err))
            report.errors.append({"event_id": entry.event_id, "error": str(err)})
            remove_entry(self.conn, entry.event_id)
            return "dropped", None

        if event.status == "resolved" and event.winning_outcome is not None:
            # Committed by an earlier run that did not finish the cascade
            return "settled", cascade_settlement(self.conn, event.event_id, event.winning_outcome, self.clock())
        if event.status == "cancelled":
            log.info("cancelled_event_dequeued", event_id=event.event_id)
            remove_entry(self.conn, event.event_id)
            return "dropped", None

        try:
            resolution = await asyncio.wait_for(
                self.venue.check_resolution(event), timeout=self.poll_timeout_sec
            )
        except asyncio.TimeoutError:
            log.warning("venue_poll_timeout", event_id=event.event_id, timeout_sec=self.poll_timeout_sec)
            return self._reschedule(entry)
        except VenueError as e:
            log.warning("venue_poll_failed", event_id=event.event_id, error=str(e))
            return self._reschedule(entry)
        except Exception as e:
            log.warning("venue_poll_error", event_id=event.event_id, error=repr(e))
            return self._reschedule(entry)

        if not resolution.resolved:
            return self._reschedule(entry)
        if resolution.winning_outcome is None:
            log.warning("resolved_without_winner", event_id=event.event_id, check_count=entry.check_count)
            report.errors.append({"event_id": event.event_id, "error": "resolved but no winning outcome"})
            return self._reschedule(entry)
        if event.status != "active":
            log.warning("settled_before_activation", event_id=event.event_id, status=event.status)
            return self._reschedule(entry)

        stats = settle_event(self.conn, event.event_id, resolution.winning_outcome, self.clock())
        if stats is None:
            return "contended", None
        return "settled", stats

    def _reschedule(self, entry: ResolutionQueueEntry) -> tuple[EntryOutcome, None]:
        updated = reschedule_entry(
            self.conn,
            entry,
            self.clock(),
            base_minutes=self.base_backoff_minutes,
            max_minutes=self.max_backoff_minutes,
        )
        if updated is None:
            return "contended", None
        log.debug(
            "event_rescheduled",
            event_id=entry.event_id,
            check_count=updated.check_count,
            next_check_at=updated.next_check_at,
        )
        return "rescheduled", None

    async def run_forever(self, interval_sec: float, stop_event: asyncio.Event | None = None) -> None:
        """Sweep on a fixed cadence until stop_event is set. A sweep that overruns
        its slot skips the missed ticks instead of starting overlapping sweeps."""
        stop = stop_event or asyncio.Event()
        next_tick = time.monotonic()
        while not stop.is_set():
            try:
                await self.sweep()
            except asyncio.CancelledError:
                log.info("scheduler_cancelled")
                break
            except Exception:
                log.exception("sweep_failed")
            now = time.monotonic()
            next_tick += interval_sec
            if next_tick <= now:
                missed = int((now - next_tick) // interval_sec) + 1
                log.warning("sweep_overran", skipped_ticks=missed)
                next_tick += missed * interval_sec
            try:
                await asyncio.wait_for(stop.wait(), timeout=next_tick - now)
            except asyncio.TimeoutError:
                pass
        log.info("scheduler_stopped")
