from enum import IntEnum

from sqlalchemy import BigInteger, Boolean, Column, Integer, String, Text
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

from pocket_notes.time_utils import from_epoch_ms, to_epoch_ms, utc_now

Base = declarative_base()

DEFAULT_CATEGORY = "General"
SUGGESTED_CATEGORIES = ("General", "Work", "Personal", "Health", "Shopping")


class Priority(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3


class EpochMillis(TypeDecorator):
    """Aware datetime in Python, epoch milliseconds in the database."""

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return to_epoch_ms(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return from_epoch_ms(value)


# --- Models ---
class Note(Base):
    __tablename__ = "notes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    scheduled_at = Column(EpochMillis, nullable=False, index=True)
    created_at = Column(EpochMillis, nullable=False, default=utc_now)
    category = Column(String, nullable=False, default=DEFAULT_CATEGORY, index=True)
    priority = Column(Integer, nullable=False, default=int(Priority.MEDIUM))
    is_completed = Column(Boolean, nullable=False, default=False)
    color = Column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"Note(id={self.id!r}, title={self.title!r}, completed={self.is_completed!r})"


class ReminderJob(Base):
    """A pending reminder. One row per note at most."""

    __tablename__ = "reminder_jobs"

    note_id = Column(Integer, primary_key=True, autoincrement=False)
    fire_at = Column(EpochMillis, nullable=False, index=True)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False, default="")
    created_at = Column(EpochMillis, nullable=False, default=utc_now)
