"""End-to-end tests for the voyage monitor and daemon server."""

import asyncio
import os
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from conftest import FakeObserver, RecordingLocal, RecordingRemote, write_submarines
from watchdog.events import FileDeletedEvent, FileModifiedEvent

from subwatch.config import Settings
from subwatch.daemon.monitor import VoyageMonitor
from subwatch.daemon.schedule import DispatchState
from subwatch.daemon.server import DaemonServer, DaemonStatus
from subwatch.daemon.watcher import ChangeWatcher
from subwatch.exceptions import WatchError


def make_settings(db_path: Path, data_dir: Path) -> Settings:
    return Settings(  # type: ignore[call-arg]
        _env_file=None,
        db_path=db_path,
        data_dir=data_dir,
        debounce_seconds=0.05,
        push_backoff_seconds=0,
    )


async def wait_until(predicate, timeout: float = 5.0) -> None:
    """Poll until ``predicate()`` is true."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.05)


class MonitorHarness:
    """A monitor on a real database with an injected observer and sinks."""

    def __init__(self, db_path: Path, data_dir: Path) -> None:
        self.db_path = db_path.resolve()
        self.observer = FakeObserver()
        self.local = RecordingLocal()
        self.remote = RecordingRemote()
        self.monitor = VoyageMonitor(
            make_settings(self.db_path, data_dir),
            local=self.local,
            remote=self.remote,
            watcher=ChangeWatcher(debounce_seconds=0.05, observer_factory=lambda: self.observer),
        )

    def touch(self) -> None:
        """Simulate the game writing the database."""
        self.observer.handler.on_any_event(FileModifiedEvent(str(self.db_path)))


@pytest.fixture
def harness(voyage_db: Path, tmp_path: Path) -> MonitorHarness:
    return MonitorHarness(voyage_db, tmp_path / "state")


def _soon(seconds: int) -> datetime:
    return datetime.now(UTC).replace(microsecond=0) + timedelta(seconds=seconds)


class TestVoyageMonitor:
    """Test the watch-reconcile-schedule-dispatch loop."""

    @pytest.mark.asyncio
    async def test_start_schedules_every_voyage(self, harness: MonitorHarness) -> None:
        await harness.monitor.start()
        try:
            assert harness.monitor.scheduled_count == 3
            assert harness.monitor.timers.armed_count == 3
        finally:
            await harness.monitor.stop()

        assert harness.remote.closed
        assert not harness.monitor.timers.is_running

    @pytest.mark.asyncio
    async def test_due_voyage_notifies_both_sinks_once(self, harness: MonitorHarness) -> None:
        due = _soon(1)
        write_submarines(harness.db_path, {10: ("Nautilus", due)})

        await harness.monitor.start()
        try:
            await wait_until(lambda: harness.local.calls and harness.remote.calls)
            await asyncio.sleep(0.3)

            assert [(r.voyage_id, r.return_instant) for r in harness.local.calls] == [(10, due)]
            assert [r.name for r in harness.remote.calls] == ["Nautilus"]
            assert harness.local.calls[0].character_name == "Jane Doe"
            assert harness.monitor.reconciler.entries[10].state is DispatchState.DELIVERED
        finally:
            await harness.monitor.stop()

    @pytest.mark.asyncio
    async def test_database_change_is_picked_up(self, harness: MonitorHarness) -> None:
        await harness.monitor.start()
        events = asyncio.create_task(harness.monitor.watch())
        try:
            due = _soon(1)
            write_submarines(harness.db_path, {11: ("Kraken", due)})
            harness.touch()

            await wait_until(lambda: harness.local.calls)

            assert [r.voyage_id for r in harness.local.calls] == [11]
            assert set(harness.monitor.reconciler.entries) == {11}
        finally:
            await harness.monitor.stop()
            await events

    @pytest.mark.asyncio
    async def test_voyage_returned_while_offline_notifies_on_start(
        self, harness: MonitorHarness
    ) -> None:
        write_submarines(harness.db_path, {20: ("Leviathan", _soon(-3600))})

        await harness.monitor.start()
        try:
            await wait_until(lambda: harness.local.calls)
            assert [r.voyage_id for r in harness.local.calls] == [20]
        finally:
            await harness.monitor.stop()

    @pytest.mark.asyncio
    async def test_run_returns_when_stop_event_set(self, harness: MonitorHarness) -> None:
        stop = asyncio.Event()
        asyncio.get_running_loop().call_later(0.2, stop.set)

        await asyncio.wait_for(harness.monitor.run(stop), timeout=5)

        assert not harness.monitor.is_running
        assert harness.remote.closed

    @pytest.mark.asyncio
    async def test_run_surfaces_watch_failure(self, harness: MonitorHarness) -> None:
        def delete_database() -> None:
            harness.observer.handler.on_any_event(FileDeletedEvent(str(harness.db_path)))

        asyncio.get_running_loop().call_later(0.2, delete_database)

        with pytest.raises(WatchError):
            await asyncio.wait_for(harness.monitor.run(asyncio.Event()), timeout=5)
        assert not harness.monitor.is_running

    @pytest.mark.asyncio
    async def test_start_without_database(self, tmp_path: Path) -> None:
        monitor = VoyageMonitor(
            make_settings(tmp_path / "missing.db", tmp_path / "state"),
            local=RecordingLocal(),
        )
        with pytest.raises(WatchError):
            await monitor.start()
        assert not monitor.timers.is_running


class TestDaemonServer:
    """Test status and PID file handling."""

    @pytest.fixture
    def server(self, voyage_db: Path, tmp_path: Path) -> DaemonServer:
        return DaemonServer(make_settings(voyage_db, tmp_path / "state"))

    def test_status_when_stopped(self, server: DaemonServer, now: datetime) -> None:
        info = server.get_status()

        assert info.status is DaemonStatus.STOPPED
        assert info.pid is None
        assert info.upcoming_voyages == 3
        assert info.next_return == now + timedelta(hours=1)

    def test_status_with_live_pid(self, server: DaemonServer) -> None:
        server._write_pid()

        info = server.get_status()

        assert info.status is DaemonStatus.RUNNING
        assert info.pid == os.getpid()
        assert info.to_dict()["status"] == "running"

    def test_stale_pid_file_is_removed(self, server: DaemonServer) -> None:
        server.pid_file.parent.mkdir(parents=True)
        server.pid_file.write_text("999999999")

        info = server.get_status()

        assert info.status is DaemonStatus.STOPPED
        assert not server.pid_file.exists()

    def test_status_without_database(self, tmp_path: Path) -> None:
        server = DaemonServer(make_settings(tmp_path / "missing.db", tmp_path / "state"))

        info = server.get_status()

        assert info.upcoming_voyages is None
        assert info.to_dict()["next_return"] is None

    def test_stop_when_not_running(self, server: DaemonServer) -> None:
        assert server.stop() is False

    def test_paths_are_resolved(self, voyage_db: Path, tmp_path: Path) -> None:
        relative = Path(os.path.relpath(voyage_db))
        server = DaemonServer(make_settings(relative, tmp_path / "state"))
        assert server.settings.db_path.is_absolute()
        assert server.pid_file.is_absolute()
