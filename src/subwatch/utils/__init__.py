"""Utility functions."""

from .console import console
from .timefmt import display_timezone, format_listing_time, format_notification_time, localize

__all__ = [
    "console",
    "display_timezone",
    "format_listing_time",
    "format_notification_time",
    "localize",
]
