"""BatchJob model: one submission to the batch provider, from submit to consume.

Status lifecycle:
    submitted → validating → in_progress → processing → completed
          ↘            ↘             ↘              ↘ failed
           failed | cancelled (provider gave up)

``processing`` means the provider finished and the output is being reconciled
into weekly reflections. ``completed`` means reconciliation finished, whether
or not individual items failed.
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base

BATCH_TYPE_WEEKLY_SUMMARY = "weekly-summary"

BATCH_STATUS_SUBMITTED = "submitted"
BATCH_STATUS_VALIDATING = "validating"
BATCH_STATUS_IN_PROGRESS = "in_progress"
BATCH_STATUS_PROCESSING = "processing"
BATCH_STATUS_COMPLETED = "completed"
BATCH_STATUS_FAILED = "failed"
BATCH_STATUS_CANCELLED = "cancelled"

VALID_BATCH_STATUSES: list[str] = [
    BATCH_STATUS_SUBMITTED,
    BATCH_STATUS_VALIDATING,
    BATCH_STATUS_IN_PROGRESS,
    BATCH_STATUS_PROCESSING,
    BATCH_STATUS_COMPLETED,
    BATCH_STATUS_FAILED,
    BATCH_STATUS_CANCELLED,
]

PENDING_BATCH_STATUSES: frozenset[str] = frozenset(
    {
        BATCH_STATUS_SUBMITTED,
        BATCH_STATUS_VALIDATING,
        BATCH_STATUS_IN_PROGRESS,
        BATCH_STATUS_PROCESSING,
    }
)

TERMINAL_BATCH_STATUSES: frozenset[str] = frozenset(
    {BATCH_STATUS_COMPLETED, BATCH_STATUS_FAILED, BATCH_STATUS_CANCELLED}
)

# Allowed status moves. Same-state entries let a re-poll or a re-consume
# rewrite a job without regressing it.
BATCH_STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    BATCH_STATUS_SUBMITTED: frozenset(
        {
            BATCH_STATUS_VALIDATING,
            BATCH_STATUS_IN_PROGRESS,
            BATCH_STATUS_PROCESSING,
            BATCH_STATUS_FAILED,
            BATCH_STATUS_CANCELLED,
        }
    ),
    BATCH_STATUS_VALIDATING: frozenset(
        {
            BATCH_STATUS_VALIDATING,
            BATCH_STATUS_IN_PROGRESS,
            BATCH_STATUS_PROCESSING,
            BATCH_STATUS_FAILED,
            BATCH_STATUS_CANCELLED,
        }
    ),
    BATCH_STATUS_IN_PROGRESS: frozenset(
        {
            BATCH_STATUS_IN_PROGRESS,
            BATCH_STATUS_PROCESSING,
            BATCH_STATUS_FAILED,
            BATCH_STATUS_CANCELLED,
        }
    ),
    BATCH_STATUS_PROCESSING: frozenset(
        {BATCH_STATUS_PROCESSING, BATCH_STATUS_COMPLETED, BATCH_STATUS_FAILED}
    ),
    BATCH_STATUS_COMPLETED: frozenset({BATCH_STATUS_COMPLETED}),
    BATCH_STATUS_FAILED: frozenset(),
    BATCH_STATUS_CANCELLED: frozenset(),
}


class BatchJob(Base):
    __tablename__ = "batch_jobs"

    # --- Identity ---
    # Provider-assigned batch id
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    type: Mapped[str] = mapped_column(String(40), default=BATCH_TYPE_WEEKLY_SUMMARY)
    week: Mapped[int] = mapped_column(Integer)
    year: Mapped[int] = mapped_column(Integer)

    # --- Status tracking ---
    status: Mapped[str] = mapped_column(
        String(20), default=BATCH_STATUS_SUBMITTED, index=True
    )
    # Last raw status string reported by the provider
    provider_status: Mapped[str | None] = mapped_column(String(30), default=None)
    total_requests: Mapped[int] = mapped_column(Integer, default=0)
    # Custom ids of every submitted request: list[str]
    custom_ids: Mapped[list] = mapped_column(JSON, default=list)

    # --- Provider artifacts ---
    output_file_id: Mapped[str | None] = mapped_column(String(128), default=None)
    error_file_id: Mapped[str | None] = mapped_column(String(128), default=None)

    # --- Results (set by consumption) ---
    success_count: Mapped[int | None] = mapped_column(Integer, default=None)
    error_count: Mapped[int | None] = mapped_column(Integer, default=None)
    # list[{"customId": str, "error": str}]
    errors: Mapped[list] = mapped_column(JSON, default=list)
    failure_reason: Mapped[str | None] = mapped_column(Text, default=None)

    # --- Timestamps ---
    submitted_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_BATCH_STATUSES
