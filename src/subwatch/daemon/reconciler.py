"""Schedule reconciliation.

The reconciler owns the schedule set: one entry per voyage id, each
backed by an armed timer until it fires. On every invalidation it pulls a
fresh snapshot and applies the minimal delta:

    in snapshot, not scheduled        -> add (arm timer)
    in both, return instant differs   -> retime (cancel + re-arm, same entry)
    scheduled, not in snapshot        -> remove (cancel, drop)
    in both, same instant             -> nothing

A voyage id that was already notified is remembered with the instant it
was notified for; it is only armed again for a later, future instant.

Only the reconciler mutates the map. A firing timer touches just its own
entry's ``state``; entries that are dispatching are left alone until the
dispatch finishes, at which point another pass is requested.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from subwatch.exceptions import SourceError
from subwatch.voyages.models import VoyageRecord

from .dispatcher import Dispatcher
from .schedule import DispatchState, ScheduledEntry
from .timers import TimerEngine

logger = logging.getLogger(__name__)

SnapshotFn = Callable[[], list[VoyageRecord]]


@dataclass
class ReconcileResult:
    """Summary of one reconciliation pass."""

    added: list[int] = field(default_factory=list)
    retimed: list[int] = field(default_factory=list)
    removed: list[int] = field(default_factory=list)
    unchanged: int = 0
    deferred: int = 0  # entries skipped because they were dispatching

    @property
    def changed(self) -> bool:
        return bool(self.added or self.retimed or self.removed)

    def summary(self) -> str:
        return (
            f"+{len(self.added)} added, ~{len(self.retimed)} retimed, "
            f"-{len(self.removed)} removed, {self.unchanged} unchanged, {self.deferred} deferred"
        )


class ScheduleReconciler:
    """Keeps the armed timers in line with the latest voyage snapshot."""

    def __init__(
        self,
        source: SnapshotFn,
        timers: TimerEngine,
        dispatcher: Dispatcher,
        retry_seconds: float = 5.0,
        retry_max_seconds: float = 60.0,
    ) -> None:
        """Initialize the reconciler.

        Args:
            source: Zero-argument snapshot function
            timers: Running timer engine used to arm and cancel
            dispatcher: Invoked with an entry when its timer fires
            retry_seconds: First delay before retrying a failed snapshot
            retry_max_seconds: Cap for the doubling retry delay
        """
        self._source = source
        self._timers = timers
        self._dispatcher = dispatcher
        self._retry_seconds = retry_seconds
        self._retry_max_seconds = retry_max_seconds

        self._entries: dict[int, ScheduledEntry] = {}
        # voyage id -> instant it was last dispatched for, kept for the daemon's lifetime
        self._delivered: dict[int, datetime] = {}
        self._reconciling = False
        self._pass_requested = False
        self._failures = 0
        self._retry_timer: asyncio.TimerHandle | None = None
        self._dispatch_tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    @property
    def entries(self) -> dict[int, ScheduledEntry]:
        """Read-only view of the schedule set (copy)."""
        return dict(self._entries)

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def on_invalidation(self) -> ReconcileResult | None:
        """Run a reconciliation pass, or queue one if a pass is in progress.

        Returns:
            Result of the last pass run by this call, or None if the pass
            was queued or the snapshot failed
        """
        if self._closed:
            return None
        if self._reconciling:
            self._pass_requested = True
            return None

        self._reconciling = True
        result: ReconcileResult | None = None
        try:
            while True:
                self._pass_requested = False
                result = self._reconcile_once()
                if not self._pass_requested:
                    break
        finally:
            self._reconciling = False
        return result

    def _reconcile_once(self) -> ReconcileResult | None:
        try:
            records = self._source()
        except SourceError as e:
            self._failures += 1
            delay = min(
                self._retry_seconds * 2 ** (self._failures - 1),
                self._retry_max_seconds,
            )
            logger.warning(
                "Snapshot failed (attempt %d), keeping current schedule; retrying in %.1fs: %s",
                self._failures,
                delay,
                e,
            )
            self._schedule_retry(delay)
            return None

        if self._failures:
            logger.info("Snapshot recovered after %d failed attempts", self._failures)
        self._failures = 0
        self._cancel_retry()

        result = self._apply(records)
        if result.changed:
            logger.info("Reconciled schedule: %s", result.summary())
        else:
            logger.debug("Reconciled schedule: %s", result.summary())
        return result

    def _apply(self, records: list[VoyageRecord]) -> ReconcileResult:
        result = ReconcileResult()
        now = datetime.now(UTC)
        latest: dict[int, VoyageRecord] = {}
        for record in records:
            # Later duplicates win; the query is ordered by return time
            latest[record.voyage_id] = record

        for voyage_id, record in latest.items():
            entry = self._entries.get(voyage_id)

            if entry is None:
                if self._is_new_trip(voyage_id, record, now):
                    self._add(record, now)
                    result.added.append(voyage_id)
                else:
                    self._readmit(record)
                    result.unchanged += 1
            elif entry.state is DispatchState.DISPATCHING:
                if entry.return_instant != record.return_instant:
                    entry.stale = True
                    result.deferred += 1
                else:
                    result.unchanged += 1
            elif entry.return_instant == record.return_instant:
                # Display fields may still have changed (renamed submarine)
                entry.record = record
                result.unchanged += 1
            elif entry.state is DispatchState.DELIVERED:
                if self._is_new_trip(voyage_id, record, now):
                    self._rearm(entry, record, now)
                    result.retimed.append(voyage_id)
                else:
                    entry.record = record
                    result.unchanged += 1
            else:
                self._retime(entry, record, now)
                result.retimed.append(voyage_id)

        for voyage_id in [v for v in self._entries if v not in latest]:
            entry = self._entries[voyage_id]
            if entry.state is DispatchState.DISPATCHING:
                entry.stale = True
                result.deferred += 1
                continue
            self._remove(entry)
            result.removed.append(voyage_id)

        return result

    def _is_new_trip(self, voyage_id: int, record: VoyageRecord, now: datetime) -> bool:
        """Whether ``record`` still deserves a notification.

        A voyage that was already dispatched only counts again when it
        moved to a later, still-future instant: a new trip.
        """
        delivered_at = self._delivered.get(voyage_id)
        if delivered_at is None:
            return True
        return record.return_instant > delivered_at and record.return_instant > now

    def _readmit(self, record: VoyageRecord) -> None:
        """Track a reappearing, already-notified voyage without arming it."""
        self._entries[record.voyage_id] = ScheduledEntry(
            record=record, state=DispatchState.DELIVERED
        )
        logger.info(
            "Voyage %s (%s) for %s was already notified, not rescheduling",
            record.voyage_id,
            record.name,
            record.return_instant.isoformat(),
        )

    def _arm(self, entry: ScheduledEntry) -> None:
        async def fire() -> None:
            await self._on_timer(entry)

        entry.timer_handle = self._timers.arm(entry.return_instant, fire)

    def _add(self, record: VoyageRecord, now: datetime) -> None:
        entry = ScheduledEntry(record=record)
        self._entries[record.voyage_id] = entry
        self._arm(entry)
        if record.return_instant <= now:
            logger.info(
                "Voyage %s (%s) already returned at %s, notifying now",
                record.voyage_id,
                record.name,
                record.return_instant.isoformat(),
            )
        else:
            logger.info(
                "Scheduled voyage %s (%s) for %s",
                record.voyage_id,
                record.name,
                record.return_instant.isoformat(),
            )

    def _retime(self, entry: ScheduledEntry, record: VoyageRecord, now: datetime) -> None:
        if entry.timer_handle is not None:
            self._timers.cancel(entry.timer_handle)
        old = entry.return_instant
        entry.record = record
        self._arm(entry)
        logger.info(
            "Retimed voyage %s (%s): %s -> %s%s",
            record.voyage_id,
            record.name,
            old.isoformat(),
            record.return_instant.isoformat(),
            " (already due)" if record.return_instant <= now else "",
        )

    def _rearm(self, entry: ScheduledEntry, record: VoyageRecord, now: datetime) -> None:
        entry.state = DispatchState.PENDING
        entry.stale = False
        self._retime(entry, record, now)

    def _remove(self, entry: ScheduledEntry) -> None:
        if entry.state is DispatchState.PENDING:
            if entry.timer_handle is not None:
                self._timers.cancel(entry.timer_handle)
            entry.state = DispatchState.ABANDONED
            logger.info(
                "Cancelled notification for removed voyage %s (%s)",
                entry.voyage_id,
                entry.record.name,
            )
        del self._entries[entry.voyage_id]

    async def _on_timer(self, entry: ScheduledEntry) -> None:
        # Claimed before the task exists; a pass in between must see DISPATCHING
        if not self._dispatcher.claim(entry):
            return
        task = asyncio.create_task(self._dispatch(entry), name=f"dispatch-{entry.voyage_id}")
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)
        await asyncio.shield(task)

    async def _dispatch(self, entry: ScheduledEntry) -> None:
        try:
            await self._dispatcher.deliver(entry)
        except Exception:
            logger.exception("Dispatch of voyage %s failed unexpectedly", entry.voyage_id)
            entry.state = DispatchState.DELIVERED
        self._delivered[entry.voyage_id] = entry.return_instant

        if entry.stale and not self._closed:
            entry.stale = False
            self.on_invalidation()

    async def wait_for_dispatches(self) -> None:
        """Wait until all in-flight dispatches have finished."""
        if self._dispatch_tasks:
            await asyncio.gather(*self._dispatch_tasks, return_exceptions=True)

    def _schedule_retry(self, delay: float) -> None:
        self._cancel_retry()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._retry_timer = loop.call_later(delay, self._retry)

    def _retry(self) -> None:
        self._retry_timer = None
        self.on_invalidation()

    def _cancel_retry(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

    def shutdown(self) -> None:
        """Cancel every pending timer and clear the schedule set."""
        self._closed = True
        self._cancel_retry()
        cancelled = 0
        for entry in self._entries.values():
            if entry.state is DispatchState.PENDING and entry.timer_handle is not None:
                if self._timers.cancel(entry.timer_handle):
                    cancelled += 1
                entry.state = DispatchState.ABANDONED
        self._entries.clear()
        logger.info("Schedule torn down (%d pending notifications cancelled)", cancelled)
