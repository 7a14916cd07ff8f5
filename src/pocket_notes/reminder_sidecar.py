"""Background reminder sidecar: one-shot delayed notifications keyed by note id."""

from __future__ import annotations

import heapq
import itertools
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from pocket_notes.errors import PersistenceError
from pocket_notes.models import ReminderJob
from pocket_notes.notifier import Notifier
from pocket_notes.time_utils import Clock, ensure_utc, utc_now

DEFAULT_TITLE = "Reminder"


@dataclass(frozen=True)
class ReminderPayload:
    title: str
    message: str = ""


@dataclass(frozen=True)
class PendingReminder:
    note_id: int
    fire_at: datetime
    title: str
    message: str


@dataclass(order=True)
class _ScheduledReminder:
    fire_at: datetime
    seq: int
    note_id: int = field(compare=False)
    payload: ReminderPayload = field(compare=False)


class ReminderSidecar:
    """
    Delayed-job facility for note reminders.

    Each note id has at most one pending job; scheduling again replaces it.
    Jobs are kept in a heap served by a daemon thread and, when a session
    factory is given, mirrored into the ``reminder_jobs`` table so they
    survive a restart. A job is removed before its notification is shown,
    so it fires at most once.
    """

    def __init__(
        self,
        notifier: Notifier,
        session_factory: Optional[sessionmaker] = None,
        clock: Clock = utc_now,
        poll_interval: float = 1.0,
    ) -> None:
        self._notifier = notifier
        self._session_factory = session_factory
        self._clock = clock
        self._poll_interval = poll_interval
        self._queue: List[_ScheduledReminder] = []
        self._pending: dict[int, _ScheduledReminder] = {}
        # Jobs popped by the runner whose notification has not been shown yet.
        self._firing: dict[int, _ScheduledReminder] = {}
        self._seq = itertools.count()
        self._lock = threading.Lock()
        self._wakeup = threading.Event()
        self._shutdown = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # --- lifecycle ---
    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._load_persisted()
        self._shutdown.clear()
        self._thread = threading.Thread(target=self._runner, name="reminder-sidecar", daemon=True)
        self._thread.start()
        logger.info("Reminder sidecar started", pending=len(self._pending))

    def shutdown(self) -> None:
        self._shutdown.set()
        self._wakeup.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=2)
        logger.info("Reminder sidecar stopped")

    # --- scheduling API ---
    def schedule(self, note: Any, fire_at: datetime) -> bool:
        """Schedule a reminder showing the note's title and description."""
        payload = ReminderPayload(
            title=getattr(note, "title", None) or DEFAULT_TITLE,
            message=getattr(note, "description", None) or "",
        )
        return self.schedule_job(note.id, fire_at, payload)

    def schedule_job(self, note_id: int, fire_at: datetime, payload: ReminderPayload) -> bool:
        """Enqueue a job; returns False when ``fire_at`` has already passed."""
        fire_at = ensure_utc(fire_at)
        if fire_at <= self._clock():
            logger.debug("Skipping reminder in the past", note_id=note_id, fire_at=fire_at.isoformat())
            return False
        with self._lock:
            self._persist(note_id, fire_at, payload)
            self._push(note_id, fire_at, payload)
            # A job already handed to the runner is superseded.
            self._firing.pop(note_id, None)
        self._wakeup.set()
        logger.info("Reminder scheduled", note_id=note_id, fire_at=fire_at.isoformat())
        return True

    def cancel(self, note_id: int) -> bool:
        """Drop the pending job for ``note_id``; returns whether one existed.

        The persisted row goes first, so a failed delete leaves the job in
        place and raises ``PersistenceError``.
        """
        with self._lock:
            self._forget(note_id)
            queued = self._pending.pop(note_id, None) is not None
            firing = self._firing.pop(note_id, None) is not None
        existed = queued or firing
        if existed:
            self._wakeup.set()
            logger.info("Reminder cancelled", note_id=note_id)
        return existed

    def pending(self) -> List[PendingReminder]:
        with self._lock:
            items = sorted(self._pending.values())
        return [
            PendingReminder(
                note_id=item.note_id,
                fire_at=item.fire_at,
                title=item.payload.title,
                message=item.payload.message,
            )
            for item in items
        ]

    def is_pending(self, note_id: int) -> bool:
        with self._lock:
            return note_id in self._pending

    # --- internals ---
    def _push(self, note_id: int, fire_at: datetime, payload: ReminderPayload) -> None:
        # Replaced entries stay in the heap and are skipped when popped.
        item = _ScheduledReminder(fire_at=fire_at, seq=next(self._seq), note_id=note_id, payload=payload)
        self._pending[note_id] = item
        heapq.heappush(self._queue, item)

    def _pop_due(self) -> tuple[Optional[_ScheduledReminder], Optional[float]]:
        """Return a due job, or the seconds until the next one.

        The returned job's row is already deleted and the job is parked in
        ``_firing`` until ``_fire`` claims it.
        """
        with self._lock:
            while self._queue and self._pending.get(self._queue[0].note_id) is not self._queue[0]:
                heapq.heappop(self._queue)
            if not self._queue:
                return None, None
            head = self._queue[0]
            delay = (head.fire_at - self._clock()).total_seconds()
            if delay > 0:
                return None, delay
            heapq.heappop(self._queue)
            del self._pending[head.note_id]
            try:
                self._forget(head.note_id)
            except PersistenceError:
                logger.exception("Could not clear reminder job; not delivering", note_id=head.note_id)
                return None, 0.0
            self._firing[head.note_id] = head
            return head, None

    def _runner(self) -> None:
        while not self._shutdown.is_set():
            item, delay = self._pop_due()
            if item is not None:
                self._fire(item)
                continue
            timeout = self._poll_interval if delay is None else min(delay, self._poll_interval)
            self._wakeup.wait(timeout)
            self._wakeup.clear()

    def _fire(self, item: _ScheduledReminder) -> None:
        with self._lock:
            if self._firing.get(item.note_id) is not item:
                logger.debug("Reminder replaced or cancelled before delivery", note_id=item.note_id)
                return
            del self._firing[item.note_id]
        logger.info("Delivering reminder", note_id=item.note_id, fire_at=item.fire_at.isoformat())
        try:
            self._notifier.notify(item.note_id, item.payload.title, item.payload.message)
        except Exception as exc:
            logger.warning("Reminder notification failed", note_id=item.note_id, error=str(exc))

    def _persist(self, note_id: int, fire_at: datetime, payload: ReminderPayload) -> None:
        if self._session_factory is None:
            return
        try:
            with self._session_factory() as session:
                session.merge(
                    ReminderJob(note_id=note_id, fire_at=fire_at, title=payload.title, message=payload.message)
                )
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError("schedule reminder", str(exc)) from exc

    def _forget(self, note_id: int) -> None:
        if self._session_factory is None:
            return
        try:
            with self._session_factory() as session:
                session.execute(delete(ReminderJob).where(ReminderJob.note_id == note_id))
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError("cancel reminder", str(exc)) from exc

    def _load_persisted(self) -> None:
        if self._session_factory is None:
            return
        try:
            with self._session_factory() as session:
                rows = list(session.scalars(select(ReminderJob).order_by(ReminderJob.fire_at)))
        except SQLAlchemyError as exc:
            raise PersistenceError("load reminders", str(exc)) from exc
        with self._lock:
            for row in rows:
                self._push(row.note_id, ensure_utc(row.fire_at), ReminderPayload(row.title, row.message))
        if rows:
            logger.info("Loaded persisted reminders", count=len(rows))
