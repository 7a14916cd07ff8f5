from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional, Protocol

from loguru import logger

from pocket_notes import note_store
from pocket_notes.note_store import NoteStore, Projection, Subscription
from pocket_notes.schemas import NoteDraft, NoteRecord, NoteStatistics
from pocket_notes.time_utils import Clock, utc_now


class ReminderScheduler(Protocol):
    def schedule(self, note: Any, fire_at: datetime) -> bool: ...

    def cancel(self, note_id: int) -> bool: ...


class NoteService:
    """
    Note operations with reminder bookkeeping.

    Reminders fire ``lead_time`` before a note is due. Only notes that are
    not completed and whose fire time is still ahead get one.
    """

    def __init__(
        self,
        store: NoteStore,
        scheduler: ReminderScheduler,
        lead_time: timedelta = timedelta(minutes=10),
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.scheduler = scheduler
        self.lead_time = lead_time
        self._clock = clock

    # --- reminder policy ---
    def reminder_time(self, note: NoteRecord) -> datetime:
        return note.scheduled_at - self.lead_time

    def _schedule_if_due(self, note: NoteRecord) -> None:
        if note.is_completed:
            return
        fire_at = self.reminder_time(note)
        if fire_at <= self._clock():
            return
        try:
            self.scheduler.schedule(note, fire_at)
        except Exception as exc:
            logger.warning("Failed to schedule reminder", note_id=note.id, error=str(exc))

    def _cancel(self, note_id: int) -> None:
        try:
            self.scheduler.cancel(note_id)
        except Exception as exc:
            logger.warning("Failed to cancel reminder", note_id=note_id, error=str(exc))

    # --- mutations ---
    def create_note(self, draft: NoteDraft) -> NoteRecord:
        note_id = self.store.insert(draft, created_at=self._clock())
        note = self.store.get(note_id)
        self._schedule_if_due(note)
        return note

    def update_note(self, note_id: int, **fields: Any) -> Optional[NoteRecord]:
        note = self.store.update(note_id, **fields)
        if note is None:
            return None
        self._cancel(note_id)
        self._schedule_if_due(note)
        return note

    def set_completed(self, note_id: int, completed: bool) -> Optional[NoteRecord]:
        note = self.store.set_completed(note_id, completed)
        if note is None:
            return None
        self._cancel(note_id)
        self._schedule_if_due(note)
        return note

    def toggle_completed(self, note_id: int) -> Optional[NoteRecord]:
        note = self.store.get(note_id)
        if note is None:
            return None
        return self.set_completed(note_id, not note.is_completed)

    def delete_note(self, note_id: int) -> Optional[NoteRecord]:
        note = self.store.delete(note_id)
        self._cancel(note_id)
        return note

    # --- queries ---
    def get_note(self, note_id: int) -> Optional[NoteRecord]:
        return self.store.get(note_id)

    def all_notes(self) -> List[NoteRecord]:
        return self.store.fetch(note_store.all_notes())

    def active_notes(self) -> List[NoteRecord]:
        return self.store.fetch(note_store.active())

    def completed_notes(self) -> List[NoteRecord]:
        return self.store.fetch(note_store.completed())

    def notes_in_range(self, start: datetime, end: datetime) -> List[NoteRecord]:
        return self.store.fetch(note_store.in_range(start, end))

    def search(self, query: str, completed: Optional[bool] = None) -> List[NoteRecord]:
        return self.store.fetch(note_store.matching(query, completed))

    def notes_in_category(self, category: str, completed: Optional[bool] = None) -> List[NoteRecord]:
        return self.store.fetch(note_store.in_category(category, completed))

    def categories(self) -> List[str]:
        return self.store.categories()

    def active_count(self) -> int:
        return self.store.count(completed=False)

    def completed_count(self) -> int:
        return self.store.count(completed=True)

    def statistics(self) -> NoteStatistics:
        return self.store.statistics()

    def observe(self, projection: Projection, callback: Callable[[List[NoteRecord]], None]) -> Subscription:
        return self.store.observe(projection, callback)
