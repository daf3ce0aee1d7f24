"""Exception hierarchy for subwatch.

Each error class maps to one recovery policy:
- SourceError: snapshot failed, stale schedule stays in force, retried later
- WatchError: file watch broke, fatal for the daemon
- LocalError: desktop notification failed, logged only
- RemoteError: push bridge failed, retried with backoff then logged
"""


class SubwatchError(Exception):
    """Base exception for subwatch errors."""

    pass


class SourceError(SubwatchError):
    """Raised when the voyage database cannot be read or written."""

    pass


class WatchError(SubwatchError):
    """Raised when the database file watch can no longer be trusted."""

    pass


class NotificationError(SubwatchError):
    """Base exception for notification delivery failures."""

    pass


class LocalError(NotificationError):
    """Raised when a desktop notification could not be shown."""

    pass


class RemoteError(NotificationError):
    """Raised when the push bridge is unreachable or rejects a notification."""

    pass
