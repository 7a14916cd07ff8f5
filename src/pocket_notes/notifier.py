from __future__ import annotations

from typing import Protocol

from loguru import logger
from plyer import notification


class Notifier(Protocol):
    def notify(self, note_id: int, title: str, message: str) -> None: ...


class DesktopNotifier:
    """Shows reminders as desktop notifications on a single channel."""

    def __init__(self, channel: str = "Notes", timeout: int = 10) -> None:
        self.channel = channel
        self.timeout = timeout

    def notify(self, note_id: int, title: str, message: str) -> None:
        notification.notify(
            title=title,
            message=message,
            app_name=self.channel,
            timeout=self.timeout,
        )
        logger.info("Notification shown", note_id=note_id, channel=self.channel, title=title)
