"""Batch submitter - turns one week of user data into one provider batch.

Flow:
    1. Resolve the target period (default: the week before "now").
    2. Refuse if a non-terminal job already exists for that week.
    3. Build one request per eligible user with completed todos; users with
       nothing completed (or whose data cannot be read) are skipped.
    4. Submit all requests as a single batch.
    5. Only after the provider accepts it, persist the BatchJob.

A provider failure leaves no job behind and propagates to the caller;
resubmitting is the retry.
"""

import logging
from typing import Callable

from sqlalchemy.orm import Session

from app.database import session_scope
from app.models.batch_job import BATCH_TYPE_WEEKLY_SUMMARY
from app.services.batch_job_service import BatchJobService
from app.services.errors import OpenBatchJobExistsError
from app.services.notifications import LogNotificationSink, NotificationSink, SubmissionReport
from app.services.scheduler import Clock, SystemClock
from app.services.weekly_data import WeeklyDataAccess
from weekly_digest.batch_client import BatchProvider
from weekly_digest.batch_types import BatchRequest
from weekly_digest.prompt_generator import PromptBuilder
from weekly_digest.weeks import previous_week, validate_week

logger = logging.getLogger(__name__)


class BatchSubmitter:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        provider: BatchProvider,
        *,
        store: BatchJobService | None = None,
        data_access: WeeklyDataAccess | None = None,
        prompt_builder: PromptBuilder | None = None,
        notifier: NotificationSink | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.provider = provider
        self.store = store or BatchJobService()
        self.data_access = data_access or WeeklyDataAccess()
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.notifier = notifier or LogNotificationSink()
        self.clock = clock or SystemClock()

    def resolve_period(self, week: int | None, year: int | None) -> tuple[int, int]:
        """Return ``(year, week)``, defaulting to the previous sequential week.

        Raises:
            InvalidWeekError: If the resulting week does not exist.
        """
        if week is None:
            prev_year, prev_week = previous_week(self.clock.now())
            year, week = (year or prev_year), prev_week
        elif year is None:
            year = self.clock.now().year
        validate_week(year, week)
        return year, week

    def build_requests(
        self, db: Session, year: int, week: int
    ) -> tuple[list[BatchRequest], list[str], int]:
        """Build requests for every eligible user.

        Returns:
            (requests, skipped user ids, number of eligible users)
        """
        users = self.data_access.list_eligible_users(db)
        requests: list[BatchRequest] = []
        skipped: list[str] = []

        for user in users:
            try:
                data = self.data_access.get_weekly_data(db, user.id, year, week)
                if not data.completed:
                    skipped.append(user.id)
                    continue
                requests.append(self.prompt_builder.build(data))
            except Exception:
                logger.exception(
                    "Could not build weekly summary request for user %s",
                    user.id,
                    extra={"user_id": user.id, "week": week, "year": year},
                )
                skipped.append(user.id)

        return requests, skipped, len(users)

    async def submit(self, week: int | None = None, year: int | None = None) -> SubmissionReport:
        """Submit weekly summary requests for one week.

        Raises:
            InvalidWeekError: If the period is invalid.
            OpenBatchJobExistsError: If a job for the week is still open.
            openai.OpenAIError: If the provider rejects the batch.
        """
        year, week = self.resolve_period(week, year)

        with session_scope(self._session_factory) as db:
            open_job = self.store.find_open_job(db, week, year)
            if open_job is not None:
                raise OpenBatchJobExistsError(open_job.id, week, year)
            requests, skipped, total_users = self.build_requests(db, year, week)

        logger.info(
            "Built %d weekly summary requests for week %d/%d (%d skipped)",
            len(requests),
            week,
            year,
            len(skipped),
            extra={"week": week, "year": year},
        )

        if not requests:
            return SubmissionReport(
                batch_id=None,
                week=week,
                year=year,
                total_users=total_users,
                requests_submitted=0,
                skipped_users=skipped,
            )

        try:
            submission = await self.provider.submit(
                requests,
                metadata={
                    "type": BATCH_TYPE_WEEKLY_SUMMARY,
                    "week": str(week),
                    "year": str(year),
                },
            )
        except Exception as exc:
            logger.exception(
                "Batch submission for week %d/%d failed",
                week,
                year,
                extra={"week": week, "year": year},
            )
            await self.notifier.pipeline_error(f"submission of week {week}/{year}", exc)
            raise

        with session_scope(self._session_factory) as db:
            self.store.create(
                db,
                submission.batch_id,
                week,
                year,
                len(requests),
                custom_ids=[request.custom_id for request in requests],
                submitted_at=self.clock.now(),
            )

        report = SubmissionReport(
            batch_id=submission.batch_id,
            week=week,
            year=year,
            total_users=total_users,
            requests_submitted=len(requests),
            skipped_users=skipped,
        )
        await self.notifier.batch_submitted(report)
        return report
