"""Shared test fixtures for subwatch."""

import sqlite3
import time
from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from subwatch.exceptions import LocalError, RemoteError
from subwatch.sinks.base import LocalNotifier, RemoteNotifier
from subwatch.voyages.models import VoyageRecord

SCHEMA = """
    CREATE TABLE freecompany (
        FreeCompanyId INTEGER PRIMARY KEY,
        FreeCompanyTag TEXT,
        CharacterName TEXT
    );
    CREATE TABLE submarine (
        SubmarineId INTEGER PRIMARY KEY,
        FreeCompanyId INTEGER,
        Name TEXT,
        Return INTEGER
    );
"""


def make_record(voyage_id: int, instant: datetime, name: str | None = None) -> VoyageRecord:
    """Build a VoyageRecord with display fields filled in."""
    return VoyageRecord(
        voyage_id=voyage_id,
        return_instant=instant,
        name=f"Sub-{voyage_id}" if name is None else name,
        character_name="Jane Doe",
        tag="FCT",
    )


def write_submarines(db_path: Path, submarines: dict[int, tuple[str, datetime]]) -> None:
    """Replace the submarine table contents: {id: (name, return instant)}."""
    with sqlite3.connect(db_path) as conn:
        conn.execute("DELETE FROM submarine")
        conn.executemany(
            "INSERT INTO submarine (SubmarineId, FreeCompanyId, Name, Return) VALUES (?, 1, ?, ?)",
            [(sid, name, int(when.timestamp())) for sid, (name, when) in submarines.items()],
        )
    conn.close()


# POSIX rule for Central European time, so the system zone observes DST
CET_POSIX_TZ = "CET-1CEST,M3.5.0,M10.5.0/3"


@pytest.fixture
def system_zone_with_dst(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Make the C library local zone Central European, with no IANA zone name in TZ."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")
    monkeypatch.setenv("TZ", CET_POSIX_TZ)
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


@pytest.fixture
def now() -> datetime:
    """Current instant truncated to whole seconds, as stored by the database."""
    return datetime.now(UTC).replace(microsecond=0)


@pytest.fixture
def voyage_db(tmp_path: Path, now: datetime) -> Path:
    """A SubmarineTracker database with two free companies and three submarines."""
    db_path = tmp_path / "submarine-sqlite.db"
    with sqlite3.connect(db_path) as conn:
        conn.executescript(SCHEMA)
        conn.executemany(
            "INSERT INTO freecompany VALUES (?, ?, ?)",
            [(1, "FCT", "Jane Doe"), (2, "ABC", "John Roe")],
        )
        conn.executemany(
            "INSERT INTO submarine VALUES (?, ?, ?, ?)",
            [
                (10, 1, "Nautilus", int((now + timedelta(hours=2)).timestamp())),
                (11, 1, "Kraken", int((now + timedelta(hours=1)).timestamp())),
                (20, 2, "Leviathan", int((now + timedelta(hours=3)).timestamp())),
            ],
        )
    conn.close()
    return db_path


class RecordingLocal(LocalNotifier):
    """Desktop sink double that records calls and can be told to fail."""

    def __init__(self, fail: bool = False) -> None:
        self.calls: list[VoyageRecord] = []
        self.fail = fail

    async def notify_local(self, record: VoyageRecord) -> None:
        self.calls.append(record)
        if self.fail:
            raise LocalError("no notification daemon")


class RecordingRemote(RemoteNotifier):
    """Push sink double that fails the first ``failures`` calls."""

    def __init__(self, failures: int = 0) -> None:
        self.calls: list[VoyageRecord] = []
        self.failures = failures
        self.closed = False

    async def notify_remote(self, record: VoyageRecord) -> None:
        self.calls.append(record)
        if len(self.calls) <= self.failures:
            raise RemoteError("bridge unreachable")

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def local_sink() -> RecordingLocal:
    return RecordingLocal()


@pytest.fixture
def remote_sink() -> RecordingRemote:
    return RecordingRemote()


class FakeTimer:
    def __init__(self, due: datetime, callback: Callable) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False


class FakeTimerEngine:
    """Timer engine double: records arm/cancel, fires only when told to."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def arm(self, instant: datetime, callback: Callable) -> FakeTimer:
        timer = FakeTimer(instant, callback)
        self.timers.append(timer)
        return timer

    def cancel(self, handle: FakeTimer) -> bool:
        if handle.cancelled or handle.fired:
            return False
        handle.cancelled = True
        return True

    @property
    def armed(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    async def fire_due(self, at: datetime) -> int:
        """Fire every armed timer due at or before ``at``; returns how many fired."""
        due = [t for t in self.armed if t.due <= at]
        for timer in due:
            timer.fired = True
            await timer.callback()
        return len(due)


@pytest.fixture
def fake_timers() -> FakeTimerEngine:
    return FakeTimerEngine()


class FakeObserver:
    """Stands in for a watchdog Observer; events are injected by the test."""

    def __init__(self) -> None:
        self.handler = None
        self.path: str | None = None
        self.alive = False

    def schedule(self, handler, path: str, recursive: bool = False) -> None:
        self.handler = handler
        self.path = path

    def start(self) -> None:
        self.alive = True

    def stop(self) -> None:
        self.alive = False

    def join(self, timeout: float | None = None) -> None:
        pass

    def is_alive(self) -> bool:
        return self.alive
