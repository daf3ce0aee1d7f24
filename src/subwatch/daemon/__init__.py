"""subwatch daemon: the watch-reconcile-schedule-dispatch loop.

This module provides:
- Change watcher that debounces database writes into invalidations
- Schedule reconciler that diffs each snapshot against armed timers
- Timer engine (APScheduler) with immediate-or-no-op cancellation
- Dispatcher delivering desktop and push notifications
- Daemon server for running as a background process

Architecture:
    ┌──────────────────────────────────────────────────┐
    │                  subwatch daemon                 │
    │  ┌───────────────┐        ┌───────────────────┐  │
    │  │ ChangeWatcher │───────▶│ScheduleReconciler │  │
    │  │  (watchdog)   │        │  (ScheduleSet)    │  │
    │  └───────────────┘        └─────────┬─────────┘  │
    │                                     │ arm/cancel │
    │                           ┌─────────▼─────────┐  │
    │                           │    TimerEngine    │  │
    │                           │   (APScheduler)   │  │
    │                           └─────────┬─────────┘  │
    │                                     │ due        │
    │                           ┌─────────▼─────────┐  │
    │                           │    Dispatcher     │  │
    │                           │ (desktop + push)  │  │
    │                           └───────────────────┘  │
    └──────────────────────────────────────────────────┘
"""

from .dispatcher import DispatchOutcome, Dispatcher
from .monitor import VoyageMonitor
from .reconciler import ReconcileResult, ScheduleReconciler
from .schedule import DispatchState, ScheduledEntry
from .server import DaemonInfo, DaemonServer, DaemonStatus
from .timers import TimerEngine, TimerHandle, TimerState
from .watcher import ChangeWatcher, Invalidation

__all__ = [
    # Watch
    "ChangeWatcher",
    "Invalidation",
    # Schedule
    "ScheduleReconciler",
    "ReconcileResult",
    "ScheduledEntry",
    "DispatchState",
    "TimerEngine",
    "TimerHandle",
    "TimerState",
    # Dispatch
    "Dispatcher",
    "DispatchOutcome",
    # Server
    "VoyageMonitor",
    "DaemonServer",
    "DaemonStatus",
    "DaemonInfo",
]
