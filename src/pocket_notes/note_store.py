from __future__ import annotations

import itertools
import threading
from concurrent.futures import Future
from dataclasses import dataclass, replace
from datetime import datetime
from queue import Queue
from typing import Any, Callable, Dict, List, Optional, Tuple

from loguru import logger
from sqlalchemy import case, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pocket_notes.db import create_db_engine, create_session_factory
from pocket_notes.errors import PersistenceError
from pocket_notes.models import Note
from pocket_notes.schemas import CategoryStatistics, NoteDraft, NoteRecord, NoteStatistics
from pocket_notes.time_utils import ensure_utc, utc_now

EDITABLE_FIELDS = frozenset(
    {"title", "description", "scheduled_at", "category", "priority", "is_completed", "color"}
)

_STOP = object()


# --- Projections ---
@dataclass(frozen=True)
class Projection:
    """A named, sorted and filtered view over the notes table."""

    name: str
    where: Tuple[Any, ...] = ()
    order_by: Tuple[Any, ...] = ()
    search: Optional[str] = None


def all_notes() -> Projection:
    return Projection("all", order_by=(Note.scheduled_at.asc(), Note.id.asc()))


def active() -> Projection:
    return Projection(
        "active",
        where=(Note.is_completed.is_(False),),
        order_by=(Note.priority.desc(), Note.scheduled_at.asc(), Note.id.asc()),
    )


def completed() -> Projection:
    return Projection(
        "completed",
        where=(Note.is_completed.is_(True),),
        order_by=(Note.scheduled_at.desc(), Note.id.desc()),
    )


def in_range(start: datetime, end: datetime) -> Projection:
    """Notes due in ``[start, end)``."""
    return Projection(
        "in_range",
        where=(Note.scheduled_at >= ensure_utc(start), Note.scheduled_at < ensure_utc(end)),
        order_by=(Note.scheduled_at.asc(), Note.id.asc()),
    )


def _state_filter(completed: Optional[bool]) -> Tuple[Any, ...]:
    if completed is None:
        return ()
    return (Note.is_completed.is_(completed),)


def matching(query: str, completed: Optional[bool] = None) -> Projection:
    """Notes whose title or description contains ``query``, ignoring case."""
    return Projection(
        "matching",
        where=_state_filter(completed),
        order_by=(Note.scheduled_at.asc(), Note.id.asc()),
        search=query,
    )


def in_category(category: str, completed: Optional[bool] = None) -> Projection:
    return Projection(
        "in_category",
        where=(Note.category == category,) + _state_filter(completed),
        order_by=(Note.scheduled_at.asc(), Note.id.asc()),
    )


def narrowed(base: Projection, query: Optional[str] = None, category: Optional[str] = None) -> Projection:
    """``base`` restricted to a text match and/or a category, keeping its order."""
    where = base.where
    if category:
        where = where + (Note.category == category,)
    return replace(base, where=where, search=query or base.search)


# --- Subscriptions ---
class Subscription:
    def __init__(self, store: "NoteStore", key: int, projection: Projection) -> None:
        self._store = store
        self.key = key
        self.projection = projection

    def cancel(self) -> None:
        self._store._unsubscribe(self.key)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.cancel()


@dataclass
class _Observer:
    projection: Projection
    callback: Callable[[List[NoteRecord]], None]
    last: Optional[List[NoteRecord]] = None


# --- Store ---
class NoteStore:
    """
    SQLAlchemy-backed note repository with a single worker thread.

    All database work runs on the worker, one unit at a time. Public methods
    wait for their unit to finish and re-raise its exception; ``submit``
    returns a Future instead of waiting. Database errors surface as
    ``PersistenceError``.

    Observers registered with ``observe`` receive the current projection
    result right away and again after every mutation that changes it.
    """

    def __init__(self, db_url: str = "sqlite:///notes.sqlite3", engine: Optional[Engine] = None) -> None:
        self.engine = engine if engine is not None else create_db_engine(db_url)
        self.Session = create_session_factory(self.engine)
        self.queue: Queue = Queue()
        self._observers: Dict[int, _Observer] = {}
        self._observer_ids = itertools.count(1)
        self._observers_lock = threading.Lock()
        self._closed = False
        # Guards the closed check and the queue put so nothing lands behind _STOP.
        self._submit_lock = threading.Lock()
        self.worker = threading.Thread(target=self._process_queue, name="note-store", daemon=True)
        self.worker.start()
        logger.info("NoteStore worker thread started", db_url=str(self.engine.url))

    # --- worker plumbing ---
    def _process_queue(self) -> None:
        while True:
            item = self.queue.get()
            if item is _STOP:
                break
            future, operation, unit, mutates, args, kwargs = item
            if not future.set_running_or_notify_cancel():
                continue
            try:
                logger.debug("Executing store operation", operation=operation)
                result = self._run_unit(operation, unit, args, kwargs)
            except Exception as exc:
                logger.exception("Error during store operation", operation=operation)
                future.set_exception(exc)
                continue
            # Observers see the change before the caller is released.
            if mutates:
                self._publish()
            future.set_result(result)

    def _run_unit(self, operation: str, unit: Callable, args: tuple, kwargs: dict) -> Any:
        try:
            with self.Session() as session:
                result = unit(session, *args, **kwargs)
                session.commit()
                return result
        except SQLAlchemyError as exc:
            raise PersistenceError(operation, str(exc)) from exc

    def _submit(self, operation: str, unit: Callable, *args: Any, mutates: bool = False, **kwargs: Any) -> Future:
        future: Future = Future()
        if threading.current_thread() is self.worker:
            # Called from an observer callback; run inline instead of deadlocking.
            try:
                result = self._run_unit(operation, unit, args, kwargs)
            except Exception as exc:
                future.set_exception(exc)
                return future
            if mutates:
                self._publish()
            future.set_result(result)
            return future
        with self._submit_lock:
            if self._closed:
                future.set_exception(PersistenceError(operation, "note store is closed"))
                return future
            self.queue.put((future, operation, unit, mutates, args, kwargs))
        return future

    def _enqueue(self, operation: str, unit: Callable, *args: Any, mutates: bool = False, **kwargs: Any) -> Any:
        return self._submit(operation, unit, *args, mutates=mutates, **kwargs).result()

    def submit(self, operation: str, *args: Any, **kwargs: Any) -> Future:
        """Queue a mutation without waiting.

        ``operation`` is one of "insert", "update", "set_completed" or "delete";
        "update" takes the note id and a dict of fields.
        """
        units = {
            "insert": self._insert,
            "update": self._update,
            "set_completed": self._set_completed,
            "delete": self._delete,
        }
        if operation not in units:
            raise ValueError(f"Unknown store operation: {operation}")
        return self._submit(operation, units[operation], *args, mutates=True, **kwargs)

    def close(self) -> None:
        with self._submit_lock:
            if self._closed:
                return
            self._closed = True
            self.queue.put(_STOP)
        self.worker.join(timeout=5)
        self.engine.dispose()
        logger.info("NoteStore closed")

    # --- units of work (run on the worker) ---
    @staticmethod
    def _insert(session: Session, draft: NoteDraft, created_at: Optional[datetime] = None) -> int:
        note = Note(**draft.model_dump(), created_at=created_at or utc_now())
        session.add(note)
        session.flush()
        logger.info("Note created", note_id=note.id, title=note.title)
        return note.id

    @staticmethod
    def _update(session: Session, note_id: int, fields: Dict[str, Any]) -> Optional[NoteRecord]:
        note = session.get(Note, note_id)
        if note is None:
            return None
        for key, value in fields.items():
            setattr(note, key, value)
        session.flush()
        logger.info("Note updated", note_id=note_id, fields=sorted(fields))
        return NoteRecord.model_validate(note)

    @staticmethod
    def _set_completed(session: Session, note_id: int, completed: bool) -> Optional[NoteRecord]:
        note = session.get(Note, note_id)
        if note is None:
            return None
        note.is_completed = completed
        session.flush()
        logger.info("Note completion changed", note_id=note_id, completed=completed)
        return NoteRecord.model_validate(note)

    @staticmethod
    def _delete(session: Session, note_id: int) -> Optional[NoteRecord]:
        note = session.get(Note, note_id)
        if note is None:
            return None
        record = NoteRecord.model_validate(note)
        session.delete(note)
        logger.info("Note deleted", note_id=note_id)
        return record

    @staticmethod
    def _get(session: Session, note_id: int) -> Optional[NoteRecord]:
        note = session.get(Note, note_id)
        return NoteRecord.model_validate(note) if note is not None else None

    def _fetch(self, session: Session, projection: Projection) -> List[NoteRecord]:
        stmt = select(Note).where(*projection.where).order_by(*projection.order_by)
        if projection.search:
            needle = projection.search.casefold()
            stmt = stmt.where(
                self._fold(Note.title).contains(needle, autoescape=True)
                | self._fold(Note.description).contains(needle, autoescape=True)
            )
        return [NoteRecord.model_validate(n) for n in session.scalars(stmt)]

    def _fold(self, column):
        if self.engine.dialect.name == "sqlite":
            return func.casefold(column)
        return func.lower(column)

    @staticmethod
    def _count(session: Session, completed: Optional[bool]) -> int:
        stmt = select(func.count(Note.id)).where(*_state_filter(completed))
        return int(session.scalar(stmt) or 0)

    @staticmethod
    def _categories(session: Session) -> List[str]:
        stmt = select(Note.category).distinct().order_by(Note.category)
        return list(session.scalars(stmt))

    @staticmethod
    def _statistics(session: Session) -> NoteStatistics:
        done = case((Note.is_completed.is_(True), 1), else_=0)
        stmt = (
            select(Note.category, func.count(Note.id), func.sum(done))
            .group_by(Note.category)
            .order_by(Note.category)
        )
        stats = NoteStatistics()
        for category, total, completed_count in session.execute(stmt):
            completed_count = int(completed_count or 0)
            stats.categories.append(
                CategoryStatistics(
                    category=category, active=int(total) - completed_count, completed=completed_count
                )
            )
            stats.active += int(total) - completed_count
            stats.completed += completed_count
        return stats

    # --- public API ---
    def insert(self, draft: NoteDraft, created_at: Optional[datetime] = None) -> int:
        return self._enqueue("insert", self._insert, draft, created_at, mutates=True)

    def update(self, note_id: int, **fields: Any) -> Optional[NoteRecord]:
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown note fields: {sorted(unknown)}")
        return self._enqueue("update", self._update, note_id, fields, mutates=True)

    def set_completed(self, note_id: int, completed: bool) -> Optional[NoteRecord]:
        return self._enqueue("set_completed", self._set_completed, note_id, completed, mutates=True)

    def delete(self, note_id: int) -> Optional[NoteRecord]:
        return self._enqueue("delete", self._delete, note_id, mutates=True)

    def get(self, note_id: int) -> Optional[NoteRecord]:
        return self._enqueue("get", self._get, note_id)

    def fetch(self, projection: Projection) -> List[NoteRecord]:
        return self._enqueue("fetch", self._fetch, projection)

    def count(self, completed: Optional[bool] = None) -> int:
        return self._enqueue("count", self._count, completed)

    def categories(self) -> List[str]:
        return self._enqueue("categories", self._categories)

    def statistics(self) -> NoteStatistics:
        return self._enqueue("statistics", self._statistics)

    # --- observation ---
    def observe(self, projection: Projection, callback: Callable[[List[NoteRecord]], None]) -> Subscription:
        key = next(self._observer_ids)
        with self._observers_lock:
            self._observers[key] = _Observer(projection=projection, callback=callback)
        # Initial delivery goes through the worker so it is ordered with mutations.
        self._enqueue("observe", lambda session: None, mutates=True)
        return Subscription(self, key, projection)

    def _unsubscribe(self, key: int) -> None:
        with self._observers_lock:
            self._observers.pop(key, None)

    def _publish(self) -> None:
        with self._observers_lock:
            observers = list(self._observers.values())
        for observer in observers:
            try:
                result = self._run_unit("observe", self._fetch, (observer.projection,), {})
            except PersistenceError:
                logger.exception("Failed to refresh projection", projection=observer.projection.name)
                continue
            if result == observer.last:
                continue
            observer.last = result
            try:
                observer.callback(result)
            except Exception:
                logger.exception("Projection observer failed", projection=observer.projection.name)
