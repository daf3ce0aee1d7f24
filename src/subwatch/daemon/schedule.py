"""Schedule set entry types shared by the reconciler and dispatcher."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from subwatch.voyages.models import VoyageRecord

from .timers import TimerHandle


class DispatchState(Enum):
    """Where a scheduled entry is in its notification lifecycle."""

    PENDING = "pending"  # timer armed, not yet due
    DISPATCHING = "dispatching"  # timer fired, deliveries in progress
    DELIVERED = "delivered"  # deliveries finished (successfully or not)
    ABANDONED = "abandoned"  # cancelled before it fired


@dataclass(eq=False)
class ScheduledEntry:
    """A voyage the daemon has committed to notify about.

    ``state`` is the only field the dispatcher writes; everything else
    belongs to the reconciler.
    """

    record: VoyageRecord
    timer_handle: TimerHandle | None = None
    state: DispatchState = DispatchState.PENDING
    # Set when a pass skipped this entry because it was dispatching
    stale: bool = False

    @property
    def voyage_id(self) -> int:
        return self.record.voyage_id

    @property
    def return_instant(self) -> datetime:
        return self.record.return_instant
