"""Read (and occasionally rewrite) the SubmarineTracker SQLite database.

The database belongs to the game plugin and is rewritten while we read
it, so snapshots always open the file read-only and never hold a
connection between calls.
"""

import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from subwatch.exceptions import SourceError

from .models import VoyageRecord

logger = logging.getLogger(__name__)

VOYAGE_QUERY = """
    SELECT
        submarine.SubmarineId AS id,
        submarine.Name AS name,
        submarine.Return AS return_time,
        freecompany.FreeCompanyTag AS tag,
        freecompany.CharacterName AS character_name
    FROM submarine
    JOIN freecompany
    ON submarine.FreeCompanyId = freecompany.FreeCompanyId
    ORDER BY return_time ASC
"""

# Seconds to wait on a writer's lock before giving up on this snapshot
BUSY_TIMEOUT = 2.0


def _connect(db_path: Path, read_only: bool = True) -> sqlite3.Connection:
    """Open the database without ever creating it."""
    mode = "ro" if read_only else "rw"
    uri = f"{db_path.resolve().as_uri()}?mode={mode}"
    conn = sqlite3.connect(uri, uri=True, timeout=BUSY_TIMEOUT)
    conn.row_factory = sqlite3.Row
    return conn


def _row_to_record(row: sqlite3.Row) -> VoyageRecord | None:
    """Convert a query row, returning None for rows with unusable values."""
    try:
        return VoyageRecord(
            voyage_id=int(row["id"]),
            return_instant=datetime.fromtimestamp(int(row["return_time"]), tz=UTC),
            name=str(row["name"] or ""),
            character_name=str(row["character_name"] or ""),
            tag=str(row["tag"] or ""),
        )
    except (TypeError, ValueError, OverflowError, OSError) as e:
        logger.debug("Skipping unreadable submarine row %s: %s", dict(row), e)
        return None


def snapshot(db_path: Path) -> list[VoyageRecord]:
    """Take a point-in-time read of all voyages.

    Args:
        db_path: Path to the SubmarineTracker database

    Returns:
        Voyage records ordered by return instant, earliest first

    Raises:
        SourceError: If the database is missing, locked, or unreadable
    """
    if not db_path.exists():
        raise SourceError(f"Database not found: {db_path}")

    try:
        conn = _connect(db_path)
        try:
            rows = conn.execute(VOYAGE_QUERY).fetchall()
        finally:
            conn.close()
    except sqlite3.Error as e:
        raise SourceError(f"Failed to read {db_path}: {e}") from e

    records = [record for row in rows if (record := _row_to_record(row)) is not None]
    logger.debug("Snapshot of %s: %d voyages", db_path, len(records))
    return records


def update_return_times(db_path: Path, when: datetime) -> int:
    """Set the return time of every submarine to ``when``.

    Args:
        db_path: Path to the SubmarineTracker database
        when: Timezone-aware instant to store

    Returns:
        Number of submarines updated

    Raises:
        SourceError: If the database cannot be opened or written
    """
    if when.tzinfo is None:
        raise ValueError("Return time must be timezone-aware")
    if not db_path.exists():
        raise SourceError(f"Database not found: {db_path}")

    try:
        conn = _connect(db_path, read_only=False)
        try:
            with conn:
                cursor = conn.execute("UPDATE submarine SET Return = ?", (int(when.timestamp()),))
            updated = cursor.rowcount
        finally:
            conn.close()
    except sqlite3.Error as e:
        raise SourceError(f"Failed to update {db_path}: {e}") from e

    logger.info("Updated return time of %d submarines to %s", updated, when.isoformat())
    return updated
