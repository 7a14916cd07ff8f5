from __future__ import annotations

import pytest

from pocket_notes.note_service import NoteService
from pocket_notes.note_store import NoteStore
from tests.fakes import FakeClock, FakeScheduler, RecordingNotifier


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(tmp_path):
    store = NoteStore(db_url=f"sqlite:///{tmp_path / 'notes.sqlite3'}")
    yield store
    store.close()


@pytest.fixture()
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def service(store, scheduler, clock) -> NoteService:
    return NoteService(store=store, scheduler=scheduler, clock=clock)
