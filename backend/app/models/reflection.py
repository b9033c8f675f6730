"""Weekly reflection: the per-user, per-week aggregate written by the batch consumer.

Keyed by ``{userId}_{year}_{week}`` so re-consuming a batch overwrites the
same row instead of adding another one.
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base


class WeeklyReflection(Base):
    __tablename__ = "reflections"
    __table_args__ = (UniqueConstraint("user_id", "year", "week", name="uq_reflection_week"),)

    id: Mapped[str] = mapped_column(String(160), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    year: Mapped[int] = mapped_column(Integer)
    week: Mapped[int] = mapped_column(Integer)
    # Zero-based month (0 = January) of the week's first weekday
    month: Mapped[int] = mapped_column(Integer)

    # Snapshot of the completed todos the summary was written from
    completed_todos: Mapped[list] = mapped_column(JSON, default=list)
    incomplete_count: Mapped[int] = mapped_column(Integer, default=0)

    summary: Mapped[str] = mapped_column(Text, default="")
    # list[{"title", "summary", "tags"}]
    notes: Mapped[list] = mapped_column(JSON, default=list)
    notes_generated_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
