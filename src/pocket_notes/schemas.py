from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    WithJsonSchema,
    field_serializer,
    field_validator,
)

from pocket_notes.models import DEFAULT_CATEGORY, Priority
from pocket_notes.time_utils import ensure_utc


def coerce_priority(value: Any) -> Any:
    if isinstance(value, str):
        key = value.strip().upper()
        if key in Priority.__members__:
            return Priority[key]
        if key.isdigit():
            return Priority(int(key))
    return value


# Accepts "low"/"medium"/"high" (any case) as well as 1/2/3.
PriorityInput = Annotated[
    Priority,
    BeforeValidator(coerce_priority),
    WithJsonSchema(
        {
            "anyOf": [
                {"type": "string", "enum": ["low", "medium", "high"]},
                {"type": "integer", "enum": [1, 2, 3]},
            ]
        }
    ),
]


class NoteFields(BaseModel):
    """Editable note fields shared by drafts and records."""

    title: str = Field(description="Note title")
    description: str = Field("", description="Free-form note text")
    scheduled_at: datetime = Field(description="When the note is due")
    category: str = Field(DEFAULT_CATEGORY, description="Category label")
    priority: PriorityInput = Field(Priority.MEDIUM, description="low, medium or high")
    is_completed: bool = Field(False, description="Whether the note is done")
    color: Optional[int] = Field(None, description="Display color (ARGB integer)")

    @field_validator("scheduled_at")
    @classmethod
    def _scheduled_at_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_validator("description", mode="before")
    @classmethod
    def _description_default(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_serializer("priority", when_used="json")
    def _priority_name(self, value: Priority) -> str:
        return value.name.lower()


class NoteDraft(NoteFields):
    """Input for a new note. Rejects blank titles and categories."""

    @field_validator("title", "category")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value


class NoteRecord(NoteFields):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _created_at_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class CategoryStatistics(BaseModel):
    category: str
    active: int = 0
    completed: int = 0

    @property
    def total(self) -> int:
        return self.active + self.completed


class NoteStatistics(BaseModel):
    active: int = 0
    completed: int = 0
    categories: List[CategoryStatistics] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return self.active + self.completed

    @property
    def completion_rate(self) -> int:
        """Completed share of all notes as a whole percent."""
        if self.total == 0:
            return 0
        return self.completed * 100 // self.total

    def as_dict(self) -> Dict[str, Any]:
        return {
            "active": self.active,
            "completed": self.completed,
            "total": self.total,
            "completion_rate": self.completion_rate,
            "categories": [
                {"category": c.category, "active": c.active, "completed": c.completed, "total": c.total}
                for c in self.categories
            ],
        }
