"""User-visible notifications (toast messages in the browser view)."""

import logging
from dataclasses import dataclass
from typing import List

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(frozen=True)
class Notification:
    id: int
    message: str
    level: str = "info"


class Notifier:
    """Collects notifications for the view to display, and logs each one"""

    def __init__(self):
        self.notifications: List[Notification] = []
        self._next_id = 0

    def notify(self, message: str, level: str = "info") -> Notification:
        if level not in _LOG_LEVELS:
            raise ValueError(f"Unknown notification level {level!r}")
        self._next_id += 1
        notification = Notification(self._next_id, message, level)
        self.notifications.append(notification)
        logger.log(_LOG_LEVELS[level], f"[notification] {message}")
        return notification

    def warning(self, message: str) -> Notification:
        return self.notify(message, "warning")

    def error(self, message: str) -> Notification:
        return self.notify(message, "error")

    def clear(self) -> None:
        self.notifications.clear()
