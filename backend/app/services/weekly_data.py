"""Weekly data access - reads a user's week from the primary store and
upserts the weekly reflection written back by the batch consumer.
"""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from app.models.reflection import WeeklyReflection
from app.models.todo import Todo
from app.models.user import ACTIVE_SUBSCRIPTION_STATUSES, User
from app.services.errors import UserNotFoundError
from weekly_digest.batch_types import CompletedTodo, IncompleteTodo, SummaryResult, WeeklyData
from weekly_digest.custom_ids import format_custom_id
from weekly_digest.weeks import shift_week, week_date_range, week_month

logger = logging.getLogger(__name__)


def _has_url(todo: Todo) -> bool:
    return bool(todo.url) or "http://" in todo.text or "https://" in todo.text


def _to_completed(todo: Todo) -> CompletedTodo:
    return CompletedTodo(
        day=todo.day,
        text=todo.text,
        created_at=todo.created_at,
        completed_at=todo.completed_at,
        move_count=todo.move_count or 0,
        completed_with_time_box=bool(todo.completed_with_time_box),
        has_url=_has_url(todo),
        tags=tuple(todo.tags or ()),
    )


def _to_incomplete(todo: Todo) -> IncompleteTodo:
    return IncompleteTodo(
        day=todo.day,
        text=todo.text,
        created_at=todo.created_at,
        move_count=todo.move_count or 0,
        has_url=_has_url(todo),
        tags=tuple(todo.tags or ()),
    )


def _reflection_text(reflection: WeeklyReflection) -> str | None:
    if reflection.summary:
        return reflection.summary
    notes = reflection.notes or []
    lines = [f"{note.get('title', '')}: {note.get('summary', '')}" for note in notes]
    return "\n".join(lines) or None


class WeeklyDataAccess:
    """Reads weekly todo data and owns the weekly reflection documents."""

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def list_eligible_users(self, db: Session) -> list[User]:
        """Users with an active subscription, in a stable order."""
        return (
            db.query(User)
            .filter(User.subscription_status.in_(ACTIVE_SUBSCRIPTION_STATUSES))
            .order_by(User.id.asc())
            .all()
        )

    def get_user(self, db: Session, user_id: str) -> User | None:
        return db.get(User, user_id)

    # ------------------------------------------------------------------
    # Weekly data
    # ------------------------------------------------------------------

    def get_weekly_data(
        self,
        db: Session,
        user_id: str,
        year: int,
        week: int,
    ) -> WeeklyData:
        """Snapshot of one user's week, read fresh from the store.

        Raises:
            UserNotFoundError: If the user does not exist.
            InvalidWeekError: If the week does not exist in ``year``.
        """
        user = self.get_user(db, user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        start, end = week_date_range(year, week)
        todos = (
            db.query(Todo)
            .filter(Todo.user_id == user_id, Todo.day >= start, Todo.day <= end)
            .order_by(Todo.day.asc(), Todo.id.asc())
            .all()
        )

        return WeeklyData(
            user_id=user_id,
            year=year,
            week=week,
            week_start=start,
            week_end=end,
            completed=[_to_completed(t) for t in todos if t.completed],
            incomplete=[_to_incomplete(t) for t in todos if not t.completed],
            previous_summary=self.get_previous_summary(db, user_id, year, week),
            account_created_at=user.created_at,
        )

    def get_previous_summary(
        self, db: Session, user_id: str, year: int, week: int
    ) -> str | None:
        """Summary text of the week before ``(year, week)``, if one was generated."""
        prev_year, prev_week = shift_week(year, week, -1)
        reflection = self.get_reflection(db, user_id, prev_year, prev_week)
        if reflection is None:
            return None
        return _reflection_text(reflection)

    # ------------------------------------------------------------------
    # Weekly reflections
    # ------------------------------------------------------------------

    def get_reflection(
        self, db: Session, user_id: str, year: int, week: int
    ) -> WeeklyReflection | None:
        return db.get(WeeklyReflection, format_custom_id(user_id, year, week))

    def upsert_reflection(
        self,
        db: Session,
        data: WeeklyData,
        result: SummaryResult,
        generated_at: datetime,
    ) -> WeeklyReflection:
        """Create or overwrite the reflection for ``data``'s user and week."""
        reflection = db.get(WeeklyReflection, data.custom_id)
        if reflection is None:
            reflection = WeeklyReflection(
                id=data.custom_id,
                user_id=data.user_id,
                year=data.year,
                week=data.week,
            )
            db.add(reflection)

        reflection.month = week_month(data.year, data.week)
        reflection.completed_todos = [todo.to_document() for todo in data.completed]
        reflection.incomplete_count = len(data.incomplete)
        reflection.summary = result.summary
        reflection.notes = [note.to_document() for note in result.notes]
        reflection.notes_generated_at = generated_at
        reflection.updated_at = generated_at
        db.commit()
        db.refresh(reflection)
        return reflection
