"""Test doubles and helpers shared by the test modules."""

from __future__ import annotations

import threading
import time
from datetime import UTC, datetime, timedelta
from typing import Dict, List, Tuple

from pocket_notes.schemas import NoteDraft

T0 = datetime(2026, 1, 15, 9, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self.now

    def advance(self, **kwargs) -> datetime:
        with self._lock:
            self.now = self.now + timedelta(**kwargs)
            return self.now


class FakeScheduler:
    """Keeps pending reminders in a dict keyed by note id."""

    def __init__(self) -> None:
        self.pending: Dict[int, datetime] = {}
        self.scheduled: List[Tuple[int, datetime]] = []
        self.cancelled: List[int] = []

    def schedule(self, note, fire_at: datetime) -> bool:
        self.pending[note.id] = fire_at
        self.scheduled.append((note.id, fire_at))
        return True

    def cancel(self, note_id: int) -> bool:
        self.cancelled.append(note_id)
        return self.pending.pop(note_id, None) is not None


class RecordingNotifier:
    def __init__(self) -> None:
        self.calls: List[Tuple[int, str, str]] = []
        self.delivered = threading.Event()

    def notify(self, note_id: int, title: str, message: str) -> None:
        self.calls.append((note_id, title, message))
        self.delivered.set()


def make_draft(title: str = "Pay rent", due: datetime = T0 + timedelta(hours=1), **fields) -> NoteDraft:
    return NoteDraft(title=title, scheduled_at=due, **fields)


def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
