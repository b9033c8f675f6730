"""Batch job store - creates, advances and queries BatchJob records.

The single source of truth for orchestration state. Every status change goes
through ``_check_transition`` so a job can never move backwards through its
lifecycle (see app.models.batch_job).

Writes are last-write-wins: there is no row locking here. Exclusivity between
poll cycles is the job of the lease in app.services.lease.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.batch_job import (
    BATCH_STATUS_CANCELLED,
    BATCH_STATUS_COMPLETED,
    BATCH_STATUS_FAILED,
    BATCH_STATUS_SUBMITTED,
    BATCH_STATUS_TRANSITIONS,
    BATCH_TYPE_WEEKLY_SUMMARY,
    PENDING_BATCH_STATUSES,
    TERMINAL_BATCH_STATUSES,
    VALID_BATCH_STATUSES,
    BatchJob,
)
from app.services.errors import InvalidStatusTransitionError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _check_transition(job: BatchJob, status: str) -> None:
    if status not in VALID_BATCH_STATUSES:
        raise ValueError(f"Unknown batch status: {status}")
    if status not in BATCH_STATUS_TRANSITIONS.get(job.status, frozenset()):
        raise InvalidStatusTransitionError(job.id, job.status, status)


class BatchJobService:
    """CRUD operations and status transitions for BatchJob records."""

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(
        self,
        db: Session,
        batch_id: str,
        week: int,
        year: int,
        total_requests: int,
        *,
        custom_ids: list[str] | None = None,
        job_type: str = BATCH_TYPE_WEEKLY_SUMMARY,
        submitted_at: datetime | None = None,
    ) -> BatchJob:
        """Persist a freshly submitted batch in SUBMITTED state."""
        job = BatchJob(
            id=batch_id,
            type=job_type,
            week=week,
            year=year,
            status=BATCH_STATUS_SUBMITTED,
            total_requests=total_requests,
            custom_ids=list(custom_ids or []),
            errors=[],
            submitted_at=submitted_at or _utcnow(),
        )
        db.add(job)
        db.commit()
        db.refresh(job)
        logger.info(
            "Created batch job %s for week %d/%d with %d requests",
            batch_id,
            week,
            year,
            total_requests,
            extra={"batch_id": batch_id, "week": week, "year": year},
        )
        return job

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update_status(
        self,
        db: Session,
        batch_id: str,
        status: str,
        *,
        output_file_id: str | None = None,
        error_file_id: str | None = None,
        provider_status: str | None = None,
    ) -> BatchJob | None:
        """Move a job to ``status`` and record any provider artifacts.

        File ids are only written when given, so a poll that has not seen
        them yet never clears values recorded earlier.

        Raises:
            InvalidStatusTransitionError: If the move is not allowed.
        """
        job = self.get(db, batch_id)
        if not job:
            logger.warning("update_status: batch job %s not found", batch_id)
            return None

        _check_transition(job, status)
        previous = job.status
        job.status = status
        if output_file_id is not None:
            job.output_file_id = output_file_id
        if error_file_id is not None:
            job.error_file_id = error_file_id
        if provider_status is not None:
            job.provider_status = provider_status
        db.commit()
        db.refresh(job)

        if previous != status:
            logger.info(
                "Batch job %s: %s → %s",
                batch_id,
                previous,
                status,
                extra={"batch_id": batch_id, "status": status},
            )
        return job

    def complete(
        self,
        db: Session,
        batch_id: str,
        success_count: int,
        error_count: int,
        errors: list[dict[str, str]],
        *,
        completed_at: datetime | None = None,
    ) -> BatchJob | None:
        """Record consumption counters and move the job to COMPLETED."""
        job = self.get(db, batch_id)
        if not job:
            logger.warning("complete: batch job %s not found", batch_id)
            return None

        _check_transition(job, BATCH_STATUS_COMPLETED)
        job.status = BATCH_STATUS_COMPLETED
        job.success_count = success_count
        job.error_count = error_count
        job.errors = list(errors)
        job.completed_at = completed_at or _utcnow()
        db.commit()
        db.refresh(job)
        logger.info(
            "Batch job %s completed: %d succeeded, %d failed",
            batch_id,
            success_count,
            error_count,
            extra={"batch_id": batch_id, "status": BATCH_STATUS_COMPLETED},
        )
        return job

    def fail(
        self,
        db: Session,
        batch_id: str,
        reason: str,
        *,
        status: str = BATCH_STATUS_FAILED,
        completed_at: datetime | None = None,
    ) -> BatchJob | None:
        """Move a job to FAILED (or CANCELLED) and record why."""
        if status not in (BATCH_STATUS_FAILED, BATCH_STATUS_CANCELLED):
            raise ValueError(f"fail() cannot set status {status}")

        job = self.get(db, batch_id)
        if not job:
            logger.warning("fail: batch job %s not found", batch_id)
            return None

        _check_transition(job, status)
        job.status = status
        job.failure_reason = reason
        job.completed_at = completed_at or _utcnow()
        db.commit()
        db.refresh(job)
        logger.warning(
            "Batch job %s %s: %s",
            batch_id,
            status,
            reason,
            extra={"batch_id": batch_id, "status": status},
        )
        return job

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, db: Session, batch_id: str) -> BatchJob | None:
        return db.get(BatchJob, batch_id)

    def list_by_status(self, db: Session, statuses: Iterable[str]) -> list[BatchJob]:
        """Jobs in any of ``statuses``, oldest submission first."""
        return (
            db.query(BatchJob)
            .filter(BatchJob.status.in_(list(statuses)))
            .order_by(BatchJob.submitted_at.asc())
            .all()
        )

    def list_pending(self, db: Session) -> list[BatchJob]:
        return self.list_by_status(db, PENDING_BATCH_STATUSES)

    def find_open_job(
        self,
        db: Session,
        week: int,
        year: int,
        job_type: str = BATCH_TYPE_WEEKLY_SUMMARY,
    ) -> BatchJob | None:
        """Return a non-terminal job for the same period, if one exists."""
        return (
            db.query(BatchJob)
            .filter(
                BatchJob.week == week,
                BatchJob.year == year,
                BatchJob.type == job_type,
                BatchJob.status.in_(list(PENDING_BATCH_STATUSES)),
            )
            .order_by(BatchJob.submitted_at.desc())
            .first()
        )

    def list_recent(self, db: Session, limit: int = 10) -> list[BatchJob]:
        """The most recent jobs, newest submission first."""
        return (
            db.query(BatchJob)
            .order_by(BatchJob.submitted_at.desc())
            .limit(limit)
            .all()
        )

    def list_older_than(
        self,
        db: Session,
        cutoff: datetime,
        *,
        terminal_only: bool = True,
    ) -> list[BatchJob]:
        """Jobs whose completion (or, failing that, submission) precedes ``cutoff``."""
        reference = func.coalesce(BatchJob.completed_at, BatchJob.submitted_at)
        q = db.query(BatchJob).filter(reference < cutoff)
        if terminal_only:
            q = q.filter(BatchJob.status.in_(list(TERMINAL_BATCH_STATUSES)))
        return q.order_by(reference.asc()).all()

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, db: Session, batch_id: str) -> bool:
        job = self.get(db, batch_id)
        if not job:
            return False
        db.delete(job)
        db.commit()
        logger.info("Deleted batch job %s", batch_id, extra={"batch_id": batch_id})
        return True
