"""Batch consumer - reconciles provider output into weekly reflections.

For every result line:
    * the custom id is parsed back into (user, year, week); a malformed id is
      an item error;
    * a provider error is an item error;
    * a summary is written by re-reading the user's week from the store and
      upserting the reflection keyed by the custom id.

Item errors never abort the loop. When every line is handled the job is
completed with its counters, whatever the mix of successes and errors, and a
report goes to the notification sink.

When the job knows its submitted custom ids, the counters cover exactly those
requests: ``success + error == total``. Lines that match no submitted id
(unparseable ``line:<n>`` entries, ids from another job) are never written and
only appear in the error list as detail.

Consuming the same batch again rewrites the same reflections and the same
counters with the job's first completion time, so a manual re-run after a
partial write failure is safe.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from app.database import session_scope
from app.models.batch_job import (
    BATCH_STATUS_CANCELLED,
    BATCH_STATUS_COMPLETED,
    BATCH_STATUS_FAILED,
    BATCH_STATUS_PROCESSING,
    BatchJob,
)
from app.services.batch_job_service import BatchJobService
from app.services.errors import (
    BatchJobNotFoundError,
    BatchNotReadyError,
    InvalidStatusTransitionError,
)
from app.services.notifications import ConsumeReport, LogNotificationSink, NotificationSink
from app.services.scheduler import Clock, SystemClock
from app.services.weekly_data import WeeklyDataAccess
from weekly_digest.batch_client import BatchProvider, parse_batch_output
from weekly_digest.batch_types import ItemResult, SummaryResult
from weekly_digest.custom_ids import InvalidCustomIdError, parse_custom_id

logger = logging.getLogger(__name__)

PROVIDER_COMPLETED = "completed"
MISSING_RESULT_ERROR = "No result returned by provider"
LINE_KEY_PREFIX = "line:"


@dataclass(frozen=True)
class _JobSnapshot:
    id: str
    week: int
    year: int
    status: str
    output_file_id: str | None
    error_file_id: str | None
    custom_ids: tuple[str, ...]
    completed_at: datetime | None

    @classmethod
    def of(cls, job: BatchJob) -> "_JobSnapshot":
        return cls(
            id=job.id,
            week=job.week,
            year=job.year,
            status=job.status,
            output_file_id=job.output_file_id,
            error_file_id=job.error_file_id,
            custom_ids=tuple(job.custom_ids or ()),
            completed_at=job.completed_at,
        )


class BatchConsumer:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        provider: BatchProvider,
        *,
        store: BatchJobService | None = None,
        data_access: WeeklyDataAccess | None = None,
        notifier: NotificationSink | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.provider = provider
        self.store = store or BatchJobService()
        self.data_access = data_access or WeeklyDataAccess()
        self.notifier = notifier or LogNotificationSink()
        self.clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def consume(self, batch_id: str) -> ConsumeReport:
        """Download, reconcile and complete one batch job.

        Raises:
            BatchJobNotFoundError: If there is no such job.
            BatchNotReadyError: If the provider has not finished the batch.
            InvalidStatusTransitionError: If the job already failed or was cancelled.
        """
        job = await self._prepare(batch_id)
        results = await self.download_results(job.output_file_id, job.error_file_id)
        generated_at = job.completed_at or self.clock.now()
        submitted = set(job.custom_ids)

        success_count = 0
        errors: list[dict[str, str]] = []
        for custom_id, result in results.items():
            if submitted and custom_id not in submitted:
                message = self._unexpected(batch_id, custom_id, result)
                errors.append({"customId": custom_id, "error": message})
                continue
            error = self._apply(custom_id, result, generated_at)
            if error is None:
                success_count += 1
            else:
                errors.append({"customId": custom_id, "error": error})

        for custom_id in job.custom_ids:
            if custom_id not in results:
                logger.warning(
                    "No result for %s in batch %s",
                    custom_id,
                    batch_id,
                    extra={"batch_id": batch_id, "custom_id": custom_id},
                )
                errors.append({"customId": custom_id, "error": MISSING_RESULT_ERROR})

        # Only submitted requests are counted; other entries are detail.
        error_count = len(submitted) - success_count if submitted else len(errors)

        with session_scope(self._session_factory) as db:
            self.store.complete(
                db,
                batch_id,
                success_count,
                error_count,
                errors,
                completed_at=generated_at,
            )

        report = ConsumeReport(
            batch_id=batch_id,
            week=job.week,
            year=job.year,
            success_count=success_count,
            error_count=error_count,
            errors=errors,
        )
        await self.notifier.batch_completed(report)
        return report

    async def download_results(
        self, output_file_id: str | None, error_file_id: str | None
    ) -> dict[str, ItemResult]:
        """Fetch and merge the output and error artifacts.

        A custom id present in both keeps its output-file entry.
        """
        results: dict[str, ItemResult] = {}
        if error_file_id:
            results.update(parse_batch_output(await self.provider.download_output(error_file_id)))
        if output_file_id:
            results.update(parse_batch_output(await self.provider.download_output(output_file_id)))
        return results

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _prepare(self, batch_id: str) -> _JobSnapshot:
        """Make sure the job is in PROCESSING (or COMPLETED) with its file ids."""
        with session_scope(self._session_factory) as db:
            job = self.store.get(db, batch_id)
            if job is None:
                raise BatchJobNotFoundError(batch_id)
            snapshot = _JobSnapshot.of(job)

        if snapshot.status in (BATCH_STATUS_FAILED, BATCH_STATUS_CANCELLED):
            raise InvalidStatusTransitionError(batch_id, snapshot.status, BATCH_STATUS_COMPLETED)

        has_output = bool(snapshot.output_file_id or snapshot.error_file_id)
        if snapshot.status in (BATCH_STATUS_PROCESSING, BATCH_STATUS_COMPLETED) and has_output:
            return snapshot

        status = await self.provider.check_status(batch_id)
        if status.status != PROVIDER_COMPLETED or not (
            status.output_file_id or status.error_file_id
        ):
            raise BatchNotReadyError(
                f"Batch {batch_id} is {status.status}; no output to consume yet"
            )

        with session_scope(self._session_factory) as db:
            job = self.store.update_status(
                db,
                batch_id,
                BATCH_STATUS_PROCESSING,
                output_file_id=status.output_file_id,
                error_file_id=status.error_file_id,
                provider_status=status.status,
            )
            if job is None:
                raise BatchJobNotFoundError(batch_id)
            return _JobSnapshot.of(job)

    def _unexpected(self, batch_id: str, custom_id: str, result: ItemResult) -> str:
        """Describe a result line that matches no submitted request."""
        if custom_id.startswith(LINE_KEY_PREFIX) and not result.ok:
            return result.error
        logger.warning(
            "Ignoring unexpected result %s in batch %s",
            custom_id,
            batch_id,
            extra={"batch_id": batch_id, "custom_id": custom_id},
        )
        return f"Unexpected result for {custom_id}"

    def _apply(self, custom_id: str, result: ItemResult, generated_at: datetime) -> str | None:
        """Handle one result line; return an error message or None on success."""
        try:
            parsed = parse_custom_id(custom_id)
        except InvalidCustomIdError as exc:
            logger.warning("Skipping result with bad custom id: %s", exc)
            return str(exc)

        if not isinstance(result, SummaryResult):
            return result.error

        try:
            with session_scope(self._session_factory) as db:
                data = self.data_access.get_weekly_data(
                    db, parsed.user_id, parsed.year, parsed.week
                )
                self.data_access.upsert_reflection(db, data, result, generated_at)
        except Exception as exc:
            logger.exception(
                "Failed to write reflection for %s",
                custom_id,
                extra={"custom_id": custom_id},
            )
            return f"Failed to write reflection: {exc}"

        return None
