from __future__ import annotations

from datetime import timedelta

import pytest

from pocket_notes import note_store
from pocket_notes.models import Priority
from pocket_notes.note_service import NoteService
from tests.fakes import T0, make_draft


def test_insert_schedules_reminder_ten_minutes_before_due(service, scheduler, clock) -> None:
    due = clock() + timedelta(minutes=20)

    note = service.create_note(make_draft("Pay rent", due))

    assert scheduler.pending == {note.id: due - timedelta(minutes=10)}
    assert scheduler.pending[note.id] == clock() + timedelta(minutes=10)


def test_insert_close_to_due_time_schedules_nothing(service, scheduler, clock) -> None:
    note = service.create_note(make_draft("Pay rent", clock() + timedelta(minutes=5)))

    assert note.id not in scheduler.pending
    assert scheduler.scheduled == []


def test_insert_exactly_at_lead_time_schedules_nothing(service, scheduler, clock) -> None:
    service.create_note(make_draft("Now", clock() + timedelta(minutes=10)))

    assert scheduler.pending == {}


def test_insert_completed_note_schedules_nothing(service, scheduler, clock) -> None:
    service.create_note(make_draft("Done", clock() + timedelta(hours=1), is_completed=True))

    assert scheduler.pending == {}


def test_update_reschedules_single_reminder(service, scheduler, clock) -> None:
    note = service.create_note(make_draft("Pay rent", clock() + timedelta(hours=1)))
    new_due = clock() + timedelta(hours=3)

    updated = service.update_note(note.id, scheduled_at=new_due, title="Pay rent now")

    assert updated.title == "Pay rent now"
    assert scheduler.pending == {note.id: new_due - timedelta(minutes=10)}
    assert note.id in scheduler.cancelled


def test_update_to_past_due_time_drops_reminder(service, scheduler, clock) -> None:
    note = service.create_note(make_draft("Pay rent", clock() + timedelta(hours=1)))

    service.update_note(note.id, scheduled_at=clock() - timedelta(hours=1))

    assert scheduler.pending == {}


def test_update_marking_completed_only_cancels(service, scheduler, clock) -> None:
    note = service.create_note(make_draft("Pay rent", clock() + timedelta(hours=1)))

    service.update_note(note.id, is_completed=True)

    assert scheduler.pending == {}
    assert len(scheduler.scheduled) == 1


def test_update_unknown_note_returns_none(service, scheduler) -> None:
    assert service.update_note(999, title="nothing") is None
    assert scheduler.cancelled == []


def test_completion_cancels_and_uncompletion_reschedules(service, scheduler, clock) -> None:
    due = clock() + timedelta(hours=1)
    note = service.create_note(make_draft("Pay rent", due))

    service.set_completed(note.id, True)
    assert scheduler.pending == {}

    service.set_completed(note.id, False)
    assert scheduler.pending == {note.id: due - timedelta(minutes=10)}


def test_uncompleting_overdue_note_schedules_nothing(service, scheduler, clock) -> None:
    note = service.create_note(make_draft("Pay rent", clock() + timedelta(hours=1), is_completed=True))

    clock.advance(hours=2)
    service.set_completed(note.id, False)

    assert scheduler.pending == {}


def test_toggle_completed_flips_state(service, scheduler, clock) -> None:
    note = service.create_note(make_draft("Pay rent", clock() + timedelta(hours=1)))

    assert service.toggle_completed(note.id).is_completed is True
    assert scheduler.pending == {}
    assert service.toggle_completed(note.id).is_completed is False
    assert note.id in scheduler.pending
    assert service.toggle_completed(12345) is None


def test_delete_cancels_and_removes_from_projections(service, scheduler, clock) -> None:
    note = service.create_note(make_draft("Pay rent", clock() + timedelta(hours=1)))

    removed = service.delete_note(note.id)

    assert removed.id == note.id
    assert scheduler.pending == {}
    assert service.active_notes() == []
    assert service.all_notes() == []
    assert service.search("rent") == []


def test_delete_unknown_note_still_cancels(service, scheduler) -> None:
    assert service.delete_note(77) is None
    assert scheduler.cancelled == [77]


def test_every_open_future_note_has_exactly_one_reminder(service, scheduler, clock) -> None:
    notes = [
        service.create_note(make_draft(f"note {i}", clock() + timedelta(minutes=5 + 10 * i)))
        for i in range(5)
    ]
    service.set_completed(notes[2].id, True)
    service.update_note(notes[3].id, scheduled_at=clock() + timedelta(days=1))
    service.delete_note(notes[4].id)

    expected = {
        n.id
        for n in service.active_notes()
        if n.scheduled_at - timedelta(minutes=10) > clock()
    }
    assert set(scheduler.pending) == expected
    assert expected == {notes[1].id, notes[3].id}


def test_scheduler_failure_does_not_undo_the_note(store, clock) -> None:
    class FailingScheduler:
        def schedule(self, note, fire_at):
            raise RuntimeError("job queue unavailable")

        def cancel(self, note_id):
            raise RuntimeError("job queue unavailable")

    service = NoteService(store=store, scheduler=FailingScheduler(), clock=clock)

    note = service.create_note(make_draft("Pay rent", clock() + timedelta(hours=1)))
    assert service.get_note(note.id) is not None
    assert service.delete_note(note.id).id == note.id


def test_custom_lead_time(store, scheduler, clock) -> None:
    service = NoteService(store=store, scheduler=scheduler, lead_time=timedelta(minutes=30), clock=clock)
    due = clock() + timedelta(hours=1)

    note = service.create_note(make_draft("Standup", due))

    assert scheduler.pending[note.id] == due - timedelta(minutes=30)


def test_queries_delegate_to_projections(service, clock) -> None:
    work = service.create_note(make_draft("Quarterly report", T0 + timedelta(hours=2), category="Work", priority=Priority.HIGH))
    home = service.create_note(make_draft("Fix sink", T0 + timedelta(days=2), category="Home", description="Report leak"))
    done = service.create_note(make_draft("Old task", T0 + timedelta(hours=1), is_completed=True))

    assert [n.id for n in service.active_notes()] == [work.id, home.id]
    assert [n.id for n in service.completed_notes()] == [done.id]
    assert [n.id for n in service.search("report")] == [work.id, home.id]
    assert [n.id for n in service.notes_in_category("Home")] == [home.id]
    assert [n.id for n in service.notes_in_range(T0, T0 + timedelta(days=1))] == [done.id, work.id]
    assert service.categories() == ["General", "Home", "Work"]
    assert (service.active_count(), service.completed_count()) == (2, 1)
    assert service.statistics().completion_rate == 33


def test_observe_through_service(service, clock) -> None:
    seen = []
    with service.observe(note_store.active(), lambda notes: seen.append(len(notes))):
        service.create_note(make_draft("Pay rent", clock() + timedelta(hours=1)))
    service.create_note(make_draft("Unobserved", clock() + timedelta(hours=1)))

    assert seen == [0, 1]


@pytest.mark.parametrize("minutes_before,expected", [(20, True), (11, True), (10, False), (5, False)])
def test_reminder_depends_on_insert_time(service, scheduler, clock, minutes_before, expected) -> None:
    due = T0 + timedelta(hours=1)
    clock.now = due - timedelta(minutes=minutes_before)

    note = service.create_note(make_draft("Pay rent", due))

    assert (note.id in scheduler.pending) is expected
