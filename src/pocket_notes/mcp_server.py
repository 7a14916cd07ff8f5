"""Pocket Notes MCP server entrypoint.

Provides create/read/update/complete/delete/list operations over notes kept in
a local SQLite database. Every note that is not completed gets a desktop
reminder shortly before it is due; the reminder sidecar runs in-process.
"""

from __future__ import annotations

import contextlib
from datetime import datetime
from typing import Annotated, Iterator, List, Literal, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from loguru import logger
from pydantic import BaseModel, Field, field_validator

from pocket_notes import note_store
from pocket_notes.errors import PersistenceError
from pocket_notes.logging_config import setup_logging
from pocket_notes.models import SUGGESTED_CATEGORIES
from pocket_notes.runtime import Runtime, build_runtime
from pocket_notes.schemas import NoteDraft, NoteRecord, PriorityInput
from pocket_notes.settings import get_settings
from pocket_notes.time_utils import ensure_utc

# ---------------------------------------------------------------------------
# Models

View = Literal["active", "completed", "all"]


class NoteUpdate(BaseModel):
    id: int = Field(description="Identifier of the note to update")
    title: Optional[str] = Field(None, description="New title")
    description: Optional[str] = Field(None, description="New description")
    scheduled_at: Optional[datetime] = Field(
        None, description="New due time in ISO 8601 format (e.g., '2026-01-15T10:00:00Z')"
    )
    category: Optional[str] = Field(None, description="New category")
    priority: Optional[PriorityInput] = Field(None, description="New priority: low, medium or high")
    is_completed: Optional[bool] = Field(None, description="New completion state")
    color: Optional[int] = Field(None, description="New display color (ARGB integer)")

    @field_validator("title", "category")
    @classmethod
    def _not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("scheduled_at")
    @classmethod
    def _scheduled_at_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    def changes(self) -> dict:
        return self.model_dump(exclude={"id"}, exclude_none=True)


# ---------------------------------------------------------------------------
# Helpers

_runtime: Optional[Runtime] = None


def get_runtime() -> Runtime:
    global _runtime
    if _runtime is None:
        _runtime = build_runtime(settings)
    return _runtime


def set_runtime(runtime: Optional[Runtime]) -> None:
    """Replace the process runtime (used by tests and embedding code)."""
    global _runtime
    _runtime = runtime


@contextlib.contextmanager
def _tool_errors() -> Iterator[None]:
    try:
        yield
    except PersistenceError as exc:
        logger.error("Persistence failure", operation=exc.operation, error=exc.detail)
        raise ToolError(str(exc)) from exc


def _dump(note: NoteRecord) -> dict:
    return note.model_dump(mode="json")


def _paginate(notes: List[NoteRecord], page: int, page_size: int) -> dict:
    start = (page - 1) * page_size
    return {
        "total": len(notes),
        "page": page,
        "page_size": page_size,
        "notes": [_dump(n) for n in notes[start : start + page_size]],
    }


# ---------------------------------------------------------------------------
# MCP server setup

settings = get_settings()

app = FastMCP(name=settings.app_name, version=settings.app_version)


# ---------------------------------------------------------------------------
# Tools


@app.tool()
def create_notes(
    notes: Annotated[
        List[NoteDraft],
        "Notes to create. Each note needs a non-empty title and a scheduled_at due time; description, category, priority and color are optional.",
    ],
) -> dict:
    """Create one or more notes.

    A reminder is scheduled 10 minutes before scheduled_at when that moment is
    still in the future.

    Example: {"notes": [{"title": "Pay rent", "scheduled_at": "2026-01-15T10:00:00Z", "priority": "high", "category": "Personal"}]}
    """
    service = get_runtime().service
    with _tool_errors():
        created = [service.create_note(draft) for draft in notes]
    return {"created": [n.id for n in created], "notes": [_dump(n) for n in created]}


@app.tool()
def read_notes(
    ids: Annotated[List[int], "Identifiers of the notes to read"],
) -> dict:
    """Read notes by identifier. Unknown identifiers are reported in 'missing'.

    Example: {"ids": [1, 2]}
    """
    service = get_runtime().service
    found, missing = [], []
    with _tool_errors():
        for note_id in ids:
            note = service.get_note(note_id)
            if note is None:
                missing.append(note_id)
            else:
                found.append(_dump(note))
    return {"notes": found, "missing": missing}


@app.tool()
def update_notes(
    updates: Annotated[
        List[NoteUpdate],
        "Updates, each with the note 'id' and the fields to change. Omitted fields keep their value.",
    ],
) -> dict:
    """Update existing notes. The reminder of each note is rescheduled.

    Example: {"updates": [{"id": 3, "scheduled_at": "2026-01-16T09:00:00Z", "priority": "low"}]}
    """
    service = get_runtime().service
    updated, missing = [], []
    with _tool_errors():
        for item in updates:
            note = service.update_note(item.id, **item.changes())
            if note is None:
                missing.append(item.id)
            else:
                updated.append(item.id)
    return {"updated": updated, "missing": missing}


@app.tool()
def set_completed(
    ids: Annotated[List[int], "Identifiers of the notes to change"],
    completed: Annotated[bool, "True to mark done, false to reopen"] = True,
) -> dict:
    """Mark notes as completed (cancels their reminders) or reopen them.

    Example: {"ids": [3], "completed": true}
    """
    service = get_runtime().service
    changed, missing = [], []
    with _tool_errors():
        for note_id in ids:
            note = service.set_completed(note_id, completed)
            if note is None:
                missing.append(note_id)
            else:
                changed.append(note_id)
    return {"changed": changed, "missing": missing}


@app.tool()
def delete_notes(
    ids: Annotated[List[int], "Identifiers of the notes to delete"],
) -> dict:
    """Delete notes and cancel their reminders.

    Example: {"ids": [3, 4]}
    """
    service = get_runtime().service
    deleted, missing = [], []
    with _tool_errors():
        for note_id in ids:
            if service.delete_note(note_id) is None:
                missing.append(note_id)
            else:
                deleted.append(note_id)
    return {"deleted": deleted, "missing": missing}


@app.tool()
def list_notes(
    view: Annotated[View, "Which notes: 'active', 'completed' or 'all'"] = "active",
    query: Annotated[Optional[str], "Case-insensitive text to find in title or description"] = None,
    category: Annotated[Optional[str], "Only notes in this category"] = None,
    page: Annotated[int, Field(ge=1, description="Page number (starts at 1)")] = 1,
    page_size: Annotated[int, Field(ge=1, le=100, description="Notes per page")] = 20,
) -> dict:
    """List notes with filtering and pagination.

    Active notes are sorted by priority (high to low), then due time (earliest
    first). Completed notes are sorted by due time, latest first. 'all' is
    sorted by due time.

    Example: {"view": "active", "query": "rent"}
    Example: {"view": "completed", "category": "Work", "page": 2, "page_size": 10}
    """
    base = {
        "active": note_store.active,
        "completed": note_store.completed,
        "all": note_store.all_notes,
    }[view]()
    projection = note_store.narrowed(base, query=query, category=category)
    with _tool_errors():
        notes = get_runtime().store.fetch(projection)
    return _paginate(notes, page, page_size)


@app.tool()
def notes_in_range(
    start: Annotated[datetime, "Range start, inclusive (ISO 8601)"],
    end: Annotated[datetime, "Range end, exclusive (ISO 8601)"],
) -> dict:
    """List notes due between start (inclusive) and end (exclusive), earliest first.

    Example: {"start": "2026-01-15T00:00:00Z", "end": "2026-01-16T00:00:00Z"}
    """
    if ensure_utc(end) <= ensure_utc(start):
        raise ToolError("end must be after start")
    with _tool_errors():
        notes = get_runtime().service.notes_in_range(start, end)
    return {"total": len(notes), "notes": [_dump(n) for n in notes]}


@app.tool()
def list_categories() -> dict:
    """List categories in use plus the suggested defaults.

    Example: {}
    """
    with _tool_errors():
        used = get_runtime().service.categories()
    return {"categories": used, "suggested": list(SUGGESTED_CATEGORIES)}


@app.tool()
def note_statistics() -> dict:
    """Active/completed counts, completion rate and a per-category breakdown.

    Example: {}
    """
    with _tool_errors():
        stats = get_runtime().service.statistics()
    return stats.as_dict()


@app.tool()
def list_pending_reminders() -> dict:
    """List reminders waiting to fire, earliest first.

    Example: {}
    """
    pending = get_runtime().sidecar.pending()
    return {
        "reminders": [
            {"note_id": p.note_id, "fire_at": p.fire_at.isoformat(), "title": p.title, "message": p.message}
            for p in pending
        ]
    }


def main() -> None:
    setup_logging(settings)
    logger.info("Starting pocket-notes MCP server")
    runtime = get_runtime()
    try:
        app.run(show_banner=False)
    finally:
        runtime.close()


if __name__ == "__main__":
    main()
