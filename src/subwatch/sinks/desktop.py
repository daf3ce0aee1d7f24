"""Desktop notifications via desktop-notifier."""

import logging

from desktop_notifier import DesktopNotifier, Icon

from subwatch.exceptions import LocalError
from subwatch.voyages.models import VoyageRecord

from .base import LocalNotifier, notification_text

logger = logging.getLogger(__name__)

NOTIFICATION_ICON = "dialog-information"


class DesktopSink(LocalNotifier):
    """Shows one desktop popup per returned voyage."""

    def __init__(self, app_name: str, notifier: DesktopNotifier | None = None) -> None:
        self._notifier = notifier or DesktopNotifier(app_name=app_name)

    async def notify_local(self, record: VoyageRecord) -> None:
        title, body = notification_text(record)
        try:
            await self._notifier.send(
                title=title,
                message=body,
                icon=Icon(name=NOTIFICATION_ICON),
            )
        except Exception as e:
            raise LocalError(f"Desktop notification failed: {e}") from e
        logger.debug("Desktop notification shown for voyage %s", record.voyage_id)
