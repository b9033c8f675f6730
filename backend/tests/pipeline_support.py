"""Fakes and data builders shared by the pipeline tests.

Everything runs against an in-memory SQLite database and scripted fakes for
the batch provider, the notification sink and the clock.
"""

import json
from datetime import date, datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.models import Base
from app.models.todo import Todo
from app.models.user import User
from weekly_digest.batch_types import BatchStatus, BatchSubmission, RequestCounts


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


def make_session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)


def add_user(
    session_factory,
    user_id: str,
    *,
    subscription_status: str = "active",
    role: str = "user",
    created_at: datetime = datetime(2023, 1, 15),
) -> None:
    db = session_factory()
    try:
        db.add(
            User(
                id=user_id,
                email=f"{user_id}@example.com",
                name=user_id.upper(),
                role=role,
                subscription_status=subscription_status,
                created_at=created_at,
            )
        )
        db.commit()
    finally:
        db.close()


def add_todo(
    session_factory,
    user_id: str,
    day: date,
    text: str,
    *,
    completed: bool = True,
    **fields,
) -> None:
    db = session_factory()
    try:
        completed_at = datetime.combine(day, datetime.min.time()) + timedelta(hours=17)
        db.add(
            Todo(
                user_id=user_id,
                day=day,
                text=text,
                completed=completed,
                completed_at=completed_at if completed else None,
                created_at=datetime.combine(day, datetime.min.time()),
                **fields,
            )
        )
        db.commit()
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Provider output helpers
# ---------------------------------------------------------------------------


def success_line(custom_id: str, summary: str = "A focused week.") -> str:
    content = json.dumps(
        {
            "summary": summary,
            "notes": [{"title": "Highlights", "summary": summary, "tags": ["work"]}],
        }
    )
    return json.dumps(
        {
            "custom_id": custom_id,
            "response": {
                "status_code": 200,
                "body": {"choices": [{"message": {"role": "assistant", "content": content}}]},
            },
            "error": None,
        }
    )


def error_line(custom_id: str, message: str = "Rate limit reached") -> str:
    return json.dumps(
        {
            "custom_id": custom_id,
            "response": None,
            "error": {"code": "rate_limit_exceeded", "message": message},
        }
    )


def jsonl(*lines: str) -> bytes:
    return ("\n".join(lines) + "\n").encode("utf-8")


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeBatchProvider:
    """Scripted BatchProvider.

    ``statuses`` maps batch id to the BatchStatus returned by check_status
    (or an exception to raise); ``files`` maps file id to output bytes.
    """

    def __init__(self) -> None:
        self.statuses: dict[str, BatchStatus | Exception] = {}
        self.files: dict[str, bytes] = {}
        self.submitted: list[tuple[list, dict | None]] = []
        self.status_calls: list[str] = []
        self.submit_error: Exception | None = None
        self.next_batch_id = "batch_1"

    def set_status(
        self,
        batch_id: str,
        status: str,
        *,
        output_file_id: str | None = None,
        error_file_id: str | None = None,
    ) -> None:
        self.statuses[batch_id] = BatchStatus(
            batch_id=batch_id,
            status=status,
            output_file_id=output_file_id,
            error_file_id=error_file_id,
            request_counts=RequestCounts(),
        )

    async def submit(self, requests, metadata=None) -> BatchSubmission:
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append((list(requests), metadata))
        return BatchSubmission(batch_id=self.next_batch_id, request_count=len(requests))

    async def check_status(self, batch_id: str) -> BatchStatus:
        self.status_calls.append(batch_id)
        status = self.statuses[batch_id]
        if isinstance(status, Exception):
            raise status
        return status

    async def download_output(self, file_id: str) -> bytes:
        return self.files[file_id]


class FakeNotifier:
    """NotificationSink that records every report."""

    def __init__(self) -> None:
        self.submitted = []
        self.completed = []
        self.failed = []
        self.errors = []

    async def batch_submitted(self, report) -> bool:
        self.submitted.append(report)
        return True

    async def batch_completed(self, report) -> bool:
        self.completed.append(report)
        return True

    async def batch_failed(self, report) -> bool:
        self.failed.append(report)
        return True

    async def pipeline_error(self, context, error) -> bool:
        self.errors.append((context, error))
        return True


class FakeClock:
    """Clock frozen at ``current``; ``advance`` moves both wall and monotonic time."""

    def __init__(self, current: datetime = datetime(2024, 3, 9, 18, 0)) -> None:
        self.current = current
        self.mono = 0.0
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.current

    def monotonic(self) -> float:
        return self.mono

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)
        self.mono += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)

