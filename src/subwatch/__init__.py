"""subwatch - submarine return notifications for SubmarineTracker."""

__version__ = "0.1.0"
