"""Notification dispatch for due voyages.

Two independent deliveries per voyage:
- Desktop: one attempt; a missed popup is logged and forgotten
- Push bridge: bounded retries with exponential backoff, since the
  bridge sits across the network and may be briefly unreachable

Neither leg's failure affects the other, and nothing raised here
reaches the reconciler or other voyages.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from subwatch.exceptions import LocalError, RemoteError
from subwatch.sinks.base import LocalNotifier, RemoteNotifier
from subwatch.voyages.models import VoyageRecord

from .schedule import DispatchState, ScheduledEntry

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

# Failed outcomes kept for inspection; older ones are only in the log
RECENT_FAILURES = 100


@dataclass
class DispatchOutcome:
    """Result of delivering one voyage's notifications."""

    voyage_id: int
    local_ok: bool
    remote_ok: bool
    remote_attempts: int = 0
    remote_error: str | None = None
    remote_skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.local_ok and (self.remote_ok or self.remote_skipped)


class Dispatcher:
    """Delivers the local and remote notification for a due voyage."""

    def __init__(
        self,
        local: LocalNotifier,
        remote: RemoteNotifier | None,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            local: Desktop notification sink
            remote: Push bridge sink, or None to skip the remote leg
            max_attempts: Total remote attempts before giving up
            backoff_seconds: Delay before the second attempt; doubles after each failure
            sleep: Awaitable sleep, replaceable in tests
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._local = local
        self._remote = remote
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep
        self.failures: deque[DispatchOutcome] = deque(maxlen=RECENT_FAILURES)

        if remote is None:
            logger.info("No push bridge configured, remote notifications disabled")

    def backoff_delay(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (1-based)."""
        return self._backoff_seconds * 2 ** (attempt - 1)

    def claim(self, entry: ScheduledEntry) -> bool:
        """Move a pending entry to DISPATCHING.

        Called synchronously from the firing timer, before the delivery
        task is created.

        Returns:
            True if the entry was pending and is now claimed
        """
        if entry.state is not DispatchState.PENDING:
            logger.debug("Voyage %s is %s, not dispatching", entry.voyage_id, entry.state.value)
            return False
        entry.state = DispatchState.DISPATCHING
        return True

    async def dispatch(self, entry: ScheduledEntry) -> DispatchOutcome | None:
        """Claim and deliver a due entry.

        Returns:
            The outcome, or None if the entry was not pending
        """
        if not self.claim(entry):
            return None
        return await self.deliver(entry)

    async def deliver(self, entry: ScheduledEntry) -> DispatchOutcome:
        """Deliver notifications for a claimed entry.

        Both legs run concurrently; the entry ends up DELIVERED whatever
        their outcome.
        """
        record = entry.record
        logger.info("Voyage %s (%s) returned, notifying", record.voyage_id, record.name)
        try:
            local_ok, (remote_ok, attempts, error) = await asyncio.gather(
                self._deliver_local(record),
                self._deliver_remote(record),
            )
        finally:
            entry.state = DispatchState.DELIVERED

        outcome = DispatchOutcome(
            voyage_id=record.voyage_id,
            local_ok=local_ok,
            remote_ok=remote_ok,
            remote_attempts=attempts,
            remote_error=error,
            remote_skipped=self._remote is None,
        )
        if not outcome.ok:
            self.failures.append(outcome)
        return outcome

    async def _deliver_local(self, record: VoyageRecord) -> bool:
        try:
            await self._local.notify_local(record)
            return True
        except LocalError as e:
            logger.warning("Desktop notification for voyage %s failed: %s", record.voyage_id, e)
            return False

    async def _deliver_remote(self, record: VoyageRecord) -> tuple[bool, int, str | None]:
        """Deliver to the push bridge with retries.

        Returns:
            (success, attempts made, last error message)
        """
        if self._remote is None:
            return False, 0, None

        last_error: str | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                await self._remote.notify_remote(record)
                if attempt > 1:
                    logger.info(
                        "Push notification for voyage %s delivered on attempt %d",
                        record.voyage_id,
                        attempt,
                    )
                return True, attempt, None
            except RemoteError as e:
                last_error = str(e)
                if attempt < self._max_attempts:
                    delay = self.backoff_delay(attempt)
                    logger.warning(
                        "Push notification for voyage %s failed (attempt %d/%d), "
                        "retrying in %.1fs: %s",
                        record.voyage_id,
                        attempt,
                        self._max_attempts,
                        delay,
                        e,
                    )
                    await self._sleep(delay)

        logger.error(
            "Push notification for voyage %s (%s) failed after %d attempts: %s",
            record.voyage_id,
            record.name,
            self._max_attempts,
            last_error,
        )
        return False, self._max_attempts, last_error
