"""Voyage data model."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class VoyageRecord:
    """A single submarine voyage as read from one database snapshot.

    Only ``voyage_id`` and ``return_instant`` take part in comparisons;
    the remaining fields are for display. The same id with a different
    instant in a later snapshot means the voyage was retimed.
    """

    voyage_id: int
    return_instant: datetime  # timezone-aware, UTC
    name: str = field(default="", compare=False)
    character_name: str = field(default="", compare=False)
    tag: str = field(default="", compare=False)

    @property
    def owner(self) -> str:
        """Character and free company tag, e.g. 'Jane Doe «FCT»'."""
        return f"{self.character_name} «{self.tag}»"
