"""Voyage records and the SubmarineTracker database source."""

from .listing import group_by_owner, listing_lines
from .models import VoyageRecord
from .source import snapshot, update_return_times

__all__ = [
    "VoyageRecord",
    "snapshot",
    "update_return_times",
    "group_by_owner",
    "listing_lines",
]
