"""One-shot timers on top of APScheduler.

Every armed timer is an APScheduler job with a DateTrigger. Due times are
absolute datetimes and APScheduler recomputes the remaining wait from the
wall clock on each wakeup; a heartbeat job bounds how long a wakeup can
be deferred, so a suspended machine or a clock jump never leaves timers
stalled or firing all at once late.

Cancellation contract: once ``cancel()`` returns, a callback that has not
started will never start. A callback that already started runs to
completion. Both sides flip the handle's state synchronously on the event
loop, so there is no window where both can win.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]

HEARTBEAT_JOB_ID = "timer-heartbeat"


class TimerState(Enum):
    """Lifecycle of a single armed timer."""

    ARMED = "armed"
    STARTED = "started"
    CANCELLED = "cancelled"


@dataclass(eq=False)
class TimerHandle:
    """Opaque handle returned by ``TimerEngine.arm``; only used to cancel."""

    due: datetime
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: TimerState = TimerState.ARMED

    @property
    def is_armed(self) -> bool:
        return self.state is TimerState.ARMED


class TimerEngine:
    """Arms and cancels one-shot async callbacks at absolute instants."""

    def __init__(self, heartbeat_seconds: float = 30.0) -> None:
        """Initialize the timer engine.

        Args:
            heartbeat_seconds: Upper bound on how long the scheduler sleeps
                between wall-clock checks
        """
        self._heartbeat_seconds = heartbeat_seconds
        self._scheduler: AsyncIOScheduler | None = None
        self._callbacks: dict[str, TimerCallback] = {}

    def start(self) -> None:
        """Start the underlying scheduler. Must be called from a running event loop."""
        if self._scheduler is not None:
            logger.warning("Timer engine already running")
            return

        self._scheduler = AsyncIOScheduler(timezone=UTC)
        self._scheduler.add_job(
            self._heartbeat,
            IntervalTrigger(seconds=self._heartbeat_seconds, timezone=UTC),
            id=HEARTBEAT_JOB_ID,
        )
        self._scheduler.start()
        logger.debug("Timer engine started (heartbeat %.1fs)", self._heartbeat_seconds)

    def shutdown(self) -> None:
        """Cancel every armed timer and stop the scheduler."""
        if self._scheduler is None:
            return
        self._callbacks.clear()
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.debug("Timer engine stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    @property
    def armed_count(self) -> int:
        """Number of timers armed and not yet started or cancelled."""
        return len(self._callbacks)

    def arm(self, instant: datetime, callback: TimerCallback) -> TimerHandle:
        """Arm a timer that awaits ``callback()`` at ``instant``.

        Instants in the past fire on the next scheduler tick.

        Args:
            instant: Timezone-aware due instant
            callback: Zero-argument coroutine function

        Returns:
            Handle for cancelling the timer
        """
        if self._scheduler is None:
            raise RuntimeError("Timer engine is not running")
        if instant.tzinfo is None:
            raise ValueError("Timer instant must be timezone-aware")

        handle = TimerHandle(due=instant)
        self._callbacks[handle.id] = callback
        self._scheduler.add_job(
            self._fire,
            DateTrigger(run_date=instant, timezone=UTC),
            args=[handle],
            id=handle.id,
            misfire_grace_time=None,
        )
        return handle

    def cancel(self, handle: TimerHandle) -> bool:
        """Cancel an armed timer.

        Returns:
            True if the callback was prevented from running, False if it had
            already started or was cancelled before
        """
        if not handle.is_armed:
            return False

        handle.state = TimerState.CANCELLED
        self._callbacks.pop(handle.id, None)
        if self._scheduler is not None:
            try:
                self._scheduler.remove_job(handle.id)
            except JobLookupError:
                # Already handed to the executor; _fire sees CANCELLED and bails
                pass
        return True

    async def _fire(self, handle: TimerHandle) -> None:
        if not handle.is_armed:
            return
        handle.state = TimerState.STARTED
        callback = self._callbacks.pop(handle.id, None)
        if callback is None:
            return

        late = (datetime.now(UTC) - handle.due).total_seconds()
        if late > 1:
            logger.info("Timer %s fired %.0fs after its due instant", handle.id, late)
        await callback()

    async def _heartbeat(self) -> None:
        """No-op job; its only purpose is to wake the scheduler regularly."""
