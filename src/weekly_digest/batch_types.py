"""Typed values passed between the weekly summary pipeline stages.

Everything here is a plain frozen dataclass so it can cross the boundary
between the database layer, the prompt builder and the batch provider without
dragging ORM sessions along.

Per-item batch results are a tagged union: ``SummaryResult`` when the provider
produced a usable summary, ``GenerationError`` otherwise. Both carry an ``ok``
tag so callers can branch with ``if result.ok`` or ``isinstance``.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Literal, Union

from weekly_digest.custom_ids import format_custom_id


def _iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


# ---------------------------------------------------------------------------
# Weekly data snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CompletedTodo:
    """A todo completed during the target week."""

    day: date
    text: str
    created_at: datetime | None = None
    completed_at: datetime | None = None
    move_count: int = 0
    completed_with_time_box: bool = False
    has_url: bool = False
    tags: tuple[str, ...] = ()

    def to_document(self) -> dict[str, Any]:
        """Snapshot stored on the weekly reflection (camelCase for the web client)."""
        return {
            "date": self.day.isoformat(),
            "text": self.text,
            "createdAt": _iso(self.created_at),
            "completedAt": _iso(self.completed_at),
            "moveCount": self.move_count,
            "completedWithTimeBox": self.completed_with_time_box,
            "hasUrl": self.has_url,
            "tags": list(self.tags),
        }


@dataclass(frozen=True)
class IncompleteTodo:
    """A todo scheduled during the target week but not completed."""

    day: date
    text: str
    created_at: datetime | None = None
    move_count: int = 0
    has_url: bool = False
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class WeeklyData:
    """Everything the prompt needs about one user's week."""

    user_id: str
    year: int
    week: int
    week_start: date
    week_end: date
    completed: list[CompletedTodo] = field(default_factory=list)
    incomplete: list[IncompleteTodo] = field(default_factory=list)
    previous_summary: str | None = None
    account_created_at: datetime | None = None

    @property
    def custom_id(self) -> str:
        return format_custom_id(self.user_id, self.year, self.week)

    @property
    def is_first_week(self) -> bool:
        """True when the account was created during (or after) this week."""
        if self.account_created_at is None:
            return False
        return self.account_created_at.date() >= self.week_start

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "year": self.year,
            "week": self.week,
            "weekStart": self.week_start.isoformat(),
            "weekEnd": self.week_end.isoformat(),
            "completedTodos": [todo.to_document() for todo in self.completed],
            "incompleteTodos": [
                {
                    "date": todo.day.isoformat(),
                    "text": todo.text,
                    "createdAt": _iso(todo.created_at),
                    "moveCount": todo.move_count,
                    "hasUrl": todo.has_url,
                    "tags": list(todo.tags),
                }
                for todo in self.incomplete
            ],
            "previousSummary": self.previous_summary,
            "accountCreatedAt": _iso(self.account_created_at),
            "isFirstWeek": self.is_first_week,
        }


# ---------------------------------------------------------------------------
# Provider contract values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BatchRequest:
    """One line of a batch: a custom id and the chat completion body."""

    custom_id: str
    body: dict[str, Any]


@dataclass(frozen=True)
class BatchSubmission:
    """Provider acknowledgement of a submitted batch."""

    batch_id: str
    request_count: int
    input_file_id: str | None = None


@dataclass(frozen=True)
class RequestCounts:
    total: int = 0
    completed: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"total": self.total, "completed": self.completed, "failed": self.failed}


@dataclass(frozen=True)
class BatchStatus:
    """Provider-side view of a batch, as returned by ``check_status``."""

    batch_id: str
    status: str
    output_file_id: str | None = None
    error_file_id: str | None = None
    request_counts: RequestCounts = field(default_factory=RequestCounts)


# ---------------------------------------------------------------------------
# Per-item results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WeekNote:
    """One highlight of the week as written by the model."""

    title: str
    summary: str
    tags: tuple[str, ...] = ()

    def to_document(self) -> dict[str, Any]:
        return {"title": self.title, "summary": self.summary, "tags": list(self.tags)}


@dataclass(frozen=True)
class SummaryResult:
    custom_id: str
    summary: str
    notes: tuple[WeekNote, ...] = ()
    ok: Literal[True] = True


@dataclass(frozen=True)
class GenerationError:
    custom_id: str
    error: str
    ok: Literal[False] = False


ItemResult = Union[SummaryResult, GenerationError]
