"""Daemon server for running subwatch as a background process.

The daemon runs continuously and:
- Watches the SubmarineTracker database for changes
- Keeps one notification scheduled per voyage
- Can be controlled via CLI commands (start/stop/status)

Usage:
    subwatch daemon start   # Start daemon in background
    subwatch daemon stop    # Stop daemon gracefully
    subwatch daemon status  # Show daemon status
"""

import asyncio
import logging
import os
import signal
import sys
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from subwatch.config import Settings, settings
from subwatch.exceptions import SourceError, WatchError
from subwatch.utils.logging import setup_logging
from subwatch.voyages.source import snapshot

from .monitor import VoyageMonitor

logger = logging.getLogger(__name__)

# Seconds to wait for a stopped daemon before sending SIGKILL
STOP_TIMEOUT = 10.0


class DaemonStatus(Enum):
    """Status of the daemon process."""

    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class DaemonInfo:
    """Information about the daemon state."""

    status: DaemonStatus
    pid: int | None
    upcoming_voyages: int | None
    next_return: datetime | None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "status": self.status.value,
            "pid": self.pid,
            "upcoming_voyages": self.upcoming_voyages,
            "next_return": self.next_return.isoformat() if self.next_return else None,
        }


class DaemonServer:
    """Main daemon server process.

    Manages the voyage monitor and handles signals for graceful shutdown.
    """

    def __init__(self, config: Settings | None = None) -> None:
        """Initialize the daemon server.

        Args:
            config: Settings to use. Defaults to the global settings.
        """
        config = config or settings
        # Daemonizing changes the working directory to /
        self.settings = config.model_copy(
            update={
                "db_path": config.db_path.expanduser().resolve(),
                "data_dir": config.data_dir.expanduser().resolve(),
            }
        )
        self.pid_file = self.settings.pid_file
        self.log_file = self.settings.log_file
        self.started_at: datetime | None = None
        self.monitor: VoyageMonitor | None = None
        self._shutdown_event: asyncio.Event | None = None

    def _write_pid(self) -> None:
        """Write current PID to file."""
        self.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self.pid_file.write_text(str(os.getpid()))
        logger.info(f"PID file written: {self.pid_file}")

    def _remove_pid(self) -> None:
        """Remove PID file."""
        if self.pid_file.exists():
            self.pid_file.unlink()
            logger.info("PID file removed")

    def _read_pid(self) -> int | None:
        """Read PID from file.

        Returns:
            PID if file exists and is valid, None otherwise
        """
        if not self.pid_file.exists():
            return None

        try:
            return int(self.pid_file.read_text().strip())
        except (ValueError, OSError):
            return None

    def _is_process_running(self, pid: int) -> bool:
        """Check if a process with given PID is running."""
        try:
            os.kill(pid, 0)  # Signal 0 = check if process exists
            return True
        except OSError:
            return False

    def _upcoming(self) -> tuple[int | None, datetime | None]:
        """Count voyages that have not returned yet, from a fresh snapshot."""
        try:
            records = snapshot(self.settings.db_path)
        except SourceError as e:
            logger.debug(f"Status snapshot failed: {e}")
            return None, None
        now = datetime.now(UTC)
        upcoming = [r for r in records if r.return_instant > now]
        return len(upcoming), upcoming[0].return_instant if upcoming else None

    def get_status(self) -> DaemonInfo:
        """Get current daemon status.

        Returns:
            DaemonInfo with current state
        """
        pid = self._read_pid()
        if pid is not None and not self._is_process_running(pid):
            # Stale PID file
            self._remove_pid()
            pid = None

        upcoming, next_return = self._upcoming()
        return DaemonInfo(
            status=DaemonStatus.RUNNING if pid is not None else DaemonStatus.STOPPED,
            pid=pid,
            upcoming_voyages=upcoming,
            next_return=next_return,
        )

    async def start(self, foreground: bool = False) -> int:
        """Start the daemon and block until it is told to stop.

        Args:
            foreground: If True, run in foreground (don't daemonize)

        Returns:
            Process exit code: 0 on clean shutdown, 1 if the watch broke
        """
        existing_pid = self._read_pid()
        if existing_pid and self._is_process_running(existing_pid):
            logger.error(f"Daemon already running with PID {existing_pid}")
            return 1

        self.settings.ensure_directories()
        if not foreground:
            self._daemonize()

        setup_logging(
            level=self.settings.log_level,
            log_file=self.log_file,
            console_level="INFO" if foreground else "WARNING",
        )
        logger.info("subwatch daemon starting...")

        self._write_pid()
        self.started_at = datetime.now(UTC)

        self._shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_signal)

        self.monitor = VoyageMonitor(self.settings)
        try:
            await self.monitor.run(self._shutdown_event)
        except WatchError as e:
            logger.error(f"Database watch failed, shutting down: {e}")
            return 1
        finally:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)
            self._remove_pid()
            logger.info("Daemon stopped")
        return 0

    def _daemonize(self) -> None:
        """Fork into a daemon process (Unix double-fork)."""
        # First fork
        try:
            pid = os.fork()
            if pid > 0:
                # Parent exits
                sys.exit(0)
        except OSError as e:
            logger.error(f"Fork #1 failed: {e}")
            sys.exit(1)

        # Decouple from parent environment
        os.chdir("/")
        os.setsid()
        os.umask(0o022)

        # Second fork
        try:
            pid = os.fork()
            if pid > 0:
                sys.exit(0)
        except OSError as e:
            logger.error(f"Fork #2 failed: {e}")
            sys.exit(1)

        # Redirect standard file descriptors
        sys.stdout.flush()
        sys.stderr.flush()

        with open("/dev/null") as devnull:
            os.dup2(devnull.fileno(), sys.stdin.fileno())

        # Redirect stdout/stderr to log file
        log_fd = os.open(str(self.log_file), os.O_WRONLY | os.O_CREAT | os.O_APPEND)
        os.dup2(log_fd, sys.stdout.fileno())
        os.dup2(log_fd, sys.stderr.fileno())

    def _handle_signal(self) -> None:
        """Handle shutdown signal."""
        logger.info("Received shutdown signal")
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    def stop(self) -> bool:
        """Stop a running daemon.

        Returns:
            True if daemon was stopped successfully
        """
        pid = self._read_pid()

        if pid is None:
            logger.info("Daemon is not running (no PID file)")
            return False

        if not self._is_process_running(pid):
            logger.info("Daemon is not running (stale PID file)")
            self._remove_pid()
            return False

        logger.info(f"Stopping daemon (PID {pid})...")
        try:
            os.kill(pid, signal.SIGTERM)

            # Wait for process to exit
            for _ in range(int(STOP_TIMEOUT / 0.5)):
                if not self._is_process_running(pid):
                    logger.info("Daemon stopped successfully")
                    return True
                time.sleep(0.5)

            # Force kill if still running
            logger.warning("Daemon not responding, sending SIGKILL")
            os.kill(pid, signal.SIGKILL)
            self._remove_pid()
            return True

        except OSError as e:
            logger.error(f"Failed to stop daemon: {e}")
            return False


def run_daemon(foreground: bool = False) -> int:
    """Run the daemon server.

    Args:
        foreground: If True, run in foreground mode

    Returns:
        Process exit code
    """
    server = DaemonServer()
    return asyncio.run(server.start(foreground=foreground))


def stop_daemon() -> bool:
    """Stop the daemon server.

    Returns:
        True if daemon was stopped
    """
    return DaemonServer().stop()


def get_daemon_status() -> DaemonInfo:
    """Get daemon status.

    Returns:
        DaemonInfo with current state
    """
    return DaemonServer().get_status()
