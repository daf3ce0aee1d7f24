"""Notification sinks: desktop popup and remote push bridge."""

from .base import LocalNotifier, RemoteNotifier, notification_text
from .desktop import DesktopSink
from .push import PushBridgeSink

__all__ = [
    "LocalNotifier",
    "RemoteNotifier",
    "notification_text",
    "DesktopSink",
    "PushBridgeSink",
]
