"""Display timezone resolution and time formatting.

Voyage instants are stored as UTC; everything shown to the user is
converted to the display timezone first.
"""

import logging
import os
from datetime import datetime, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


def display_timezone() -> tzinfo | None:
    """Resolve the timezone used for display.

    The TZ environment variable wins over the system zone, so users can
    override it per invocation.

    Returns:
        A tzinfo for the TZ variable if it names a valid zone, else None,
        meaning the system local zone with its own DST rules
    """
    tz_name = os.environ.get("TZ", "").strip()
    if tz_name:
        try:
            return ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown TZ '%s', falling back to system timezone", tz_name)

    return None


def format_notification_time(moment: datetime, tz: tzinfo | None = None) -> str:
    """Format an instant for a notification body, e.g. 'Nov 14, 2024, 04:59PM'."""
    local = moment.astimezone(tz if tz is not None else display_timezone())
    return f"{local:%b} {local.day}, {local.year}, {local:%I:%M%p}"


def format_listing_time(moment: datetime, tz: tzinfo | None = None) -> str:
    """Format an instant for the one-shot listing.

    Example: '14 November 2024 at 04:59:00 PM CET'
    """
    local = moment.astimezone(tz if tz is not None else display_timezone())
    abbreviation = local.tzname() or ""
    return f"{local.day} {local:%B %Y at %I:%M:%S %p} {abbreviation}".rstrip()


def localize(naive: datetime) -> datetime:
    """Interpret a wall-clock time in the display timezone.

    Uses the UTC offset in force on that date, not today's.
    """
    tz = display_timezone()
    if tz is None:
        return naive.astimezone()
    return naive.replace(tzinfo=tz)
