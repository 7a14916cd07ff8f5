from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from loguru import logger

from pocket_notes.note_service import NoteService
from pocket_notes.note_store import NoteStore
from pocket_notes.notifier import DesktopNotifier, Notifier
from pocket_notes.reminder_sidecar import ReminderSidecar
from pocket_notes.settings import Settings


@dataclass
class Runtime:
    """Wired store, reminder sidecar and service for one process."""

    settings: Settings
    store: NoteStore
    sidecar: ReminderSidecar
    service: NoteService

    def close(self) -> None:
        self.sidecar.shutdown()
        self.store.close()


def build_runtime(settings: Settings, notifier: Optional[Notifier] = None) -> Runtime:
    store = NoteStore(db_url=settings.resolved_database_url())
    sidecar = ReminderSidecar(
        notifier=notifier
        or DesktopNotifier(channel=settings.notification_channel, timeout=settings.notification_timeout),
        session_factory=store.Session,
        poll_interval=settings.reminder_poll_interval,
    )
    sidecar.start()
    service = NoteService(
        store=store,
        scheduler=sidecar,
        lead_time=timedelta(minutes=settings.reminder_lead_minutes),
    )
    logger.info("Runtime ready", lead_minutes=settings.reminder_lead_minutes)
    return Runtime(settings=settings, store=store, sidecar=sidecar, service=service)
