"""
Notification sink — fire-and-forget user-facing messages.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List

from connectors.models import Connector, Notification, NotificationKind

logger = logging.getLogger(__name__)

PROVIDER_DISPLAY_NAMES = {
    "google-drive": "Google Drive",
    "gmail": "Gmail",
    "google-calendar": "Google Calendar",
    "notion": "Notion",
    "dropbox": "Dropbox",
    "github": "GitHub",
    "custom-api": "Custom API",
    "custom-mcp": "MCP Server",
}


def provider_display_name(connector: Connector) -> str:
    return PROVIDER_DISPLAY_NAMES.get(connector.provider) or connector.name or connector.provider


class NotificationSink(ABC):
    @abstractmethod
    def notify(self, kind: NotificationKind, title: str, description: str = "") -> None:
        ...

    def info(self, title: str, description: str = "") -> None:
        self._safe_notify(NotificationKind.INFO, title, description)

    def success(self, title: str, description: str = "") -> None:
        self._safe_notify(NotificationKind.SUCCESS, title, description)

    def error(self, title: str, description: str = "") -> None:
        self._safe_notify(NotificationKind.ERROR, title, description)

    def _safe_notify(self, kind: NotificationKind, title: str, description: str) -> None:
        # A broken sink must never fail the operation that notified.
        try:
            self.notify(kind, title, description)
        except Exception:
            logger.exception("Notification sink failed for %r", title)


class LoggingNotificationSink(NotificationSink):
    """Default sink: writes notifications to the log."""

    _LEVELS = {
        NotificationKind.INFO: logging.INFO,
        NotificationKind.SUCCESS: logging.INFO,
        NotificationKind.ERROR: logging.ERROR,
    }

    def notify(self, kind: NotificationKind, title: str, description: str = "") -> None:
        logger.log(self._LEVELS[kind], "[%s] %s: %s", kind.value, title, description)


class RecordingNotificationSink(NotificationSink):
    """Keeps every notification in memory (handy for tests and debugging UIs)."""

    def __init__(self) -> None:
        self.notifications: List[Notification] = []

    def notify(self, kind: NotificationKind, title: str, description: str = "") -> None:
        self.notifications.append(Notification(kind=kind, title=title, description=description))

    def of_kind(self, kind: NotificationKind) -> List[Notification]:
        return [n for n in self.notifications if n.kind is kind]

    def clear(self) -> None:
        self.notifications.clear()
