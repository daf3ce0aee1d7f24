"""Database change watcher.

Watches the directory holding the SubmarineTracker database with
watchdog and turns raw filesystem events on the database and its
journal / WAL side files into debounced invalidation signals.

A writer typically touches the journal and then the main file for one
logical update, so raw events are coalesced: after the first event the
watcher waits for a quiet debounce window and then emits exactly one
invalidation. Events that arrive during the window extend it, so the
last event of a burst is always covered by an invalidation.

If the watch itself breaks (database deleted or moved away, directory
gone, observer thread dead) ``events()`` raises WatchError instead of
going quiet.
"""

import asyncio
import logging
import os
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from subwatch.exceptions import WatchError

logger = logging.getLogger(__name__)

# SQLite side files that may be the last thing written for an update
SIDE_FILE_SUFFIXES = ("-journal", "-wal", "-shm")

# How often the debounce loop checks the observer is still alive
HEALTH_CHECK_SECONDS = 1.0


@dataclass(frozen=True)
class Invalidation:
    """One debounced "snapshot is out of date" signal."""

    raw_events: int
    emitted_at: datetime


def _event_paths(event: FileSystemEvent) -> tuple[str, str]:
    src = os.fsdecode(getattr(event, "src_path", "") or "")
    dest = os.fsdecode(getattr(event, "dest_path", "") or "")
    return src, dest


class _DatabaseEventHandler(FileSystemEventHandler):
    """Watchdog event handler that forwards database changes to the watcher.

    Runs on the observer thread; it only classifies events and hands
    them over, never touches watcher state directly.
    """

    def __init__(
        self,
        db_path: Path,
        on_change: Callable[[], None],
        on_failure: Callable[[str], None],
    ) -> None:
        super().__init__()
        self._db = os.path.normcase(str(db_path))
        self._dir = os.path.normcase(str(db_path.parent))
        self._watched = {self._db} | {self._db + suffix for suffix in SIDE_FILE_SUFFIXES}
        self._on_change = on_change
        self._on_failure = on_failure

    def _is_watched(self, path: str) -> bool:
        return bool(path) and os.path.normcase(path) in self._watched

    def on_any_event(self, event: FileSystemEvent) -> None:
        src, dest = _event_paths(event)

        if event.is_directory:
            if event.event_type in ("deleted", "moved") and os.path.normcase(src) == self._dir:
                self._on_failure(f"Watched directory {src} was removed")
            return

        if event.event_type == "deleted" and os.path.normcase(src) == self._db:
            self._on_failure(f"Database {src} was deleted")
            return

        if event.event_type == "moved" and os.path.normcase(src) == self._db:
            if not self._is_watched(dest):
                self._on_failure(f"Database {src} was moved to {dest}")
                return

        if event.event_type in ("opened", "closed_no_write"):
            return

        if self._is_watched(src) or self._is_watched(dest):
            self._on_change()


class ChangeWatcher:
    """Emits debounced invalidations when the database changes."""

    def __init__(
        self,
        debounce_seconds: float = 0.3,
        observer_factory: Callable[[], Any] = Observer,
    ) -> None:
        """Initialize the watcher.

        Args:
            debounce_seconds: Coalescing window for bursts of raw events
            observer_factory: Creates the watchdog observer (replaceable in tests)
        """
        self._debounce = debounce_seconds
        self._observer_factory = observer_factory
        self._observer: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._trigger = asyncio.Event()
        self._raw_events = 0
        self._failure: WatchError | None = None
        self._running = False
        self.db_path: Path | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self, db_path: Path) -> None:
        """Begin observing ``db_path``. Must be called from the event loop thread.

        Raises:
            WatchError: If the database is missing or the watch cannot be set up
        """
        if self._running:
            logger.warning("Change watcher already running")
            return

        db_path = db_path.resolve()
        if not db_path.is_file():
            raise WatchError(f"Cannot watch {db_path}: file does not exist")

        self._loop = asyncio.get_running_loop()
        self._trigger = asyncio.Event()
        self._failure = None
        self._raw_events = 0
        self.db_path = db_path

        handler = _DatabaseEventHandler(db_path, self._notify_change, self._notify_failure)
        try:
            observer = self._observer_factory()
            observer.schedule(handler, str(db_path.parent), recursive=False)
            observer.start()
        except Exception as e:
            raise WatchError(f"Failed to watch {db_path.parent}: {e}") from e

        self._observer = observer
        self._running = True
        logger.info("Watching %s for changes", db_path)

    def stop(self) -> None:
        """Stop observing and end the ``events()`` iterator."""
        if not self._running:
            return
        self._running = False
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join(timeout=1.0)
        self._trigger.set()
        logger.info("Change watcher stopped")

    # Observer thread -> event loop hand-off

    def _notify_change(self) -> None:
        self._call_in_loop(self._record_change)

    def _notify_failure(self, reason: str) -> None:
        self._call_in_loop(self._record_failure, reason)

    def _call_in_loop(self, callback: Callable[..., None], *args: Any) -> None:
        loop = self._loop
        if not self._running or loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(callback, *args)

    def _record_change(self) -> None:
        self._raw_events += 1
        self._trigger.set()

    def _record_failure(self, reason: str) -> None:
        if self._failure is None:
            logger.error("Change watch failed: %s", reason)
            self._failure = WatchError(reason)
        self._trigger.set()

    # Event loop side

    def _check_health(self) -> None:
        if self._failure is not None:
            raise self._failure
        observer = self._observer
        if self._running and observer is not None and not observer.is_alive():
            self._failure = WatchError("File observer thread stopped unexpectedly")
            raise self._failure

    async def _wait_for_trigger(self) -> None:
        while self._running:
            try:
                await asyncio.wait_for(self._trigger.wait(), timeout=HEALTH_CHECK_SECONDS)
                return
            except TimeoutError:
                self._check_health()

    async def events(self) -> AsyncIterator[Invalidation]:
        """Yield one invalidation per burst of database changes.

        Raises:
            WatchError: When the watch breaks; the iterator ends after raising
        """
        while self._running:
            await self._wait_for_trigger()
            self._check_health()
            if not self._running:
                break

            self._trigger.clear()
            await asyncio.sleep(self._debounce)
            # Coalesce event bursts into one invalidation.
            while self._trigger.is_set() and self._running:
                self._check_health()
                self._trigger.clear()
                await asyncio.sleep(self._debounce)

            self._check_health()
            if not self._running:
                break

            count, self._raw_events = self._raw_events, 0
            logger.debug("Database changed (%d raw events)", count)
            yield Invalidation(raw_events=count, emitted_at=datetime.now(UTC))
