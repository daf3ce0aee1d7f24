"""The watch-reconcile-schedule-dispatch loop.

Wires the change watcher, reconciler, timer engine and dispatcher
together and runs them until asked to stop or until the watch breaks.
"""

import asyncio
import logging
from functools import partial
from pathlib import Path

from subwatch.config import Settings
from subwatch.exceptions import WatchError
from subwatch.sinks.base import LocalNotifier, RemoteNotifier
from subwatch.sinks.desktop import DesktopSink
from subwatch.sinks.push import PushBridgeSink
from subwatch.voyages.source import snapshot

from .dispatcher import Dispatcher
from .reconciler import ScheduleReconciler, SnapshotFn
from .timers import TimerEngine
from .watcher import ChangeWatcher

logger = logging.getLogger(__name__)


class VoyageMonitor:
    """Keeps one notification scheduled per voyage in the database.

    Components can be injected for testing; anything not given is built
    from ``settings``.
    """

    def __init__(
        self,
        settings: Settings,
        source: SnapshotFn | None = None,
        local: LocalNotifier | None = None,
        remote: RemoteNotifier | None = None,
        watcher: ChangeWatcher | None = None,
    ) -> None:
        self.db_path: Path = settings.db_path
        self.timers = TimerEngine(heartbeat_seconds=settings.heartbeat_seconds)
        self.watcher = watcher or ChangeWatcher(debounce_seconds=settings.debounce_seconds)

        if remote is None and settings.has_push_bridge:
            remote = PushBridgeSink(
                settings.push_endpoint,
                token=settings.push_token,
                timeout=settings.push_timeout_seconds,
            )
        self._remote = remote

        self.dispatcher = Dispatcher(
            local or DesktopSink(settings.app_name),
            remote,
            max_attempts=settings.push_max_attempts,
            backoff_seconds=settings.push_backoff_seconds,
        )
        self.reconciler = ScheduleReconciler(
            source or partial(snapshot, self.db_path),
            self.timers,
            self.dispatcher,
            retry_seconds=settings.source_retry_seconds,
            retry_max_seconds=settings.source_retry_max_seconds,
        )
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def scheduled_count(self) -> int:
        return len(self.reconciler.entries)

    async def start(self) -> None:
        """Start timers and the watcher, then run the initial reconciliation.

        Raises:
            WatchError: If the database cannot be watched
        """
        if self._running:
            logger.warning("Voyage monitor already running")
            return

        logger.info("Starting voyage monitor for %s", self.db_path)
        self.timers.start()
        try:
            self.watcher.start(self.db_path)
        except WatchError:
            self.timers.shutdown()
            raise
        self._running = True

        # Voyages that returned while we were offline are picked up here
        self.reconciler.on_invalidation()

    async def watch(self) -> None:
        """Reconcile on every invalidation until the watcher stops.

        Raises:
            WatchError: If the watch breaks
        """
        async for invalidation in self.watcher.events():
            logger.debug("Invalidation (%d raw events), reconciling", invalidation.raw_events)
            self.reconciler.on_invalidation()

    async def run(self, stop_event: asyncio.Event) -> None:
        """Run until ``stop_event`` is set.

        Raises:
            WatchError: If the watch breaks; the monitor is stopped first
        """
        await self.start()
        watch_task = asyncio.create_task(self.watch(), name="change-watcher")
        stop_task = asyncio.create_task(stop_event.wait(), name="stop-wait")
        try:
            await asyncio.wait({watch_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_task.cancel()
            await self.stop()
            # Surfaces WatchError if that is why we stopped
            await watch_task

    async def stop(self) -> None:
        """Stop watching and tear down the schedule."""
        if not self._running:
            return
        logger.info("Stopping voyage monitor...")
        self._running = False
        self.watcher.stop()
        self.reconciler.shutdown()
        await self.reconciler.wait_for_dispatches()
        self.timers.shutdown()
        if self._remote is not None:
            await self._remote.close()
        logger.info("Voyage monitor stopped")
