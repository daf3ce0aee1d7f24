"""Sink interfaces used by the dispatcher."""

from abc import ABC, abstractmethod

from subwatch.utils.timefmt import format_notification_time
from subwatch.voyages.models import VoyageRecord


def notification_text(record: VoyageRecord) -> tuple[str, str]:
    """Build the (title, body) pair shared by every sink."""
    name = record.name or f"Submarine {record.voyage_id}"
    title = f"{name} returned"
    body = f"{name} ({record.owner}) returned on {format_notification_time(record.return_instant)}"
    return title, body


class LocalNotifier(ABC):
    """Shows a notification on this machine."""

    @abstractmethod
    async def notify_local(self, record: VoyageRecord) -> None:
        """Show a notification for a returned voyage.

        Raises:
            LocalError: If the notification could not be shown
        """


class RemoteNotifier(ABC):
    """Delivers a notification to a remote service."""

    @abstractmethod
    async def notify_remote(self, record: VoyageRecord) -> None:
        """Deliver a notification for a returned voyage.

        Raises:
            RemoteError: If the remote service is unreachable or rejects it
        """

    async def close(self) -> None:
        """Release any held connections."""
