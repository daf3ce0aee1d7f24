"""One-shot text listing of voyages, grouped by character."""

from datetime import tzinfo

from subwatch.utils.timefmt import format_listing_time

from .models import VoyageRecord


def group_by_owner(records: list[VoyageRecord]) -> dict[str, list[VoyageRecord]]:
    """Group records by character and free company tag, keeping snapshot order."""
    groups: dict[str, list[VoyageRecord]] = {}
    for record in records:
        groups.setdefault(record.owner, []).append(record)
    return groups


def listing_lines(records: list[VoyageRecord], tz: tzinfo | None = None) -> list[str]:
    """Render the listing as plain text lines.

    Example:
        Jane Doe «FCT»:
          Nautilus: 14 November 2024 at 04:59:00 PM CET
          Kraken:   14 November 2024 at 06:12:00 PM CET
    """
    longest_name = max((len(r.name) for r in records), default=0)
    lines: list[str] = []
    for owner, voyages in group_by_owner(records).items():
        lines.append(f"{owner}:")
        for record in voyages:
            padding = " " * (longest_name - len(record.name))
            when = format_listing_time(record.return_instant, tz)
            lines.append(f"  {record.name}:{padding} {when}")
    return lines
