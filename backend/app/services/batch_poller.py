"""Batch poller - one scheduled pass over every pending batch job.

Per job:
    * provider ``completed`` → record file ids, move to ``processing`` and
      consume the output in the same cycle;
    * provider ``failed`` / ``expired`` / ``cancelled`` → terminal, notify,
      no retry;
    * anything else → record the new status if it moved forward, otherwise
      leave the row untouched.

An exception on one job is logged and the cycle moves on to the next one.
Jobs stay in their last known state and are picked up by the next tick.

Only one cycle runs at a time: the cycle holds a CycleLease and skips itself
when another process owns it. A wall-clock budget defers the remaining jobs
to the next tick instead of overrunning.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Any, Callable

from sqlalchemy.orm import Session

from app.database import session_scope
from app.logging_config import bind_correlation_id
from app.models.batch_job import (
    BATCH_STATUS_CANCELLED,
    BATCH_STATUS_FAILED,
    BATCH_STATUS_IN_PROGRESS,
    BATCH_STATUS_PROCESSING,
    BATCH_STATUS_VALIDATING,
    TERMINAL_BATCH_STATUSES,
    VALID_BATCH_STATUSES,
)
from app.services.batch_consumer import BatchConsumer
from app.services.batch_job_service import BatchJobService
from app.services.job_janitor import JobJanitor
from app.services.lease import CycleLease
from app.services.notifications import FailureReport, LogNotificationSink, NotificationSink
from app.services.scheduler import Clock, SystemClock
from weekly_digest.batch_client import BatchProvider

logger = logging.getLogger(__name__)

# Provider status → job status
PROVIDER_STATUS_MAP: dict[str, str] = {
    "validating": BATCH_STATUS_VALIDATING,
    "in_progress": BATCH_STATUS_IN_PROGRESS,
    "finalizing": BATCH_STATUS_IN_PROGRESS,
    "cancelling": BATCH_STATUS_IN_PROGRESS,
    "completed": BATCH_STATUS_PROCESSING,
    "failed": BATCH_STATUS_FAILED,
    "expired": BATCH_STATUS_FAILED,
    "cancelled": BATCH_STATUS_CANCELLED,
}

# Outcomes of poll_job
OUTCOME_SKIPPED = "skipped"
OUTCOME_UNCHANGED = "unchanged"
OUTCOME_ADVANCED = "advanced"
OUTCOME_CONSUMED = "consumed"
OUTCOME_FAILED = "failed"


def _rank(status: str) -> int:
    return VALID_BATCH_STATUSES.index(status)


@dataclass
class PollCycleReport:
    cycle_id: str
    skipped: bool = False
    checked: list[str] = field(default_factory=list)
    advanced: list[str] = field(default_factory=list)
    consumed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    errored: list[str] = field(default_factory=list)
    deferred: list[str] = field(default_factory=list)
    swept: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class BatchPoller:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        provider: BatchProvider,
        consumer: BatchConsumer,
        *,
        store: BatchJobService | None = None,
        janitor: JobJanitor | None = None,
        lease: CycleLease | None = None,
        notifier: NotificationSink | None = None,
        clock: Clock | None = None,
        budget_seconds: float = 300,
        retention: timedelta = timedelta(days=30),
    ) -> None:
        self._session_factory = session_factory
        self.provider = provider
        self.consumer = consumer
        self.store = store or BatchJobService()
        self.clock = clock or SystemClock()
        self.janitor = janitor or JobJanitor(session_factory, store=self.store, clock=self.clock)
        self.lease = lease or CycleLease(session_factory, clock=self.clock)
        self.notifier = notifier or LogNotificationSink()
        self.budget_seconds = budget_seconds
        self.retention = retention

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> PollCycleReport:
        """Poll every pending job once, then sweep expired jobs.

        Raises:
            Exception: Only failures outside the per-job loop (listing jobs,
                the sweep itself); they are reported to the sink first.
        """
        with bind_correlation_id(prefix="cycle-") as cycle_id:
            report = PollCycleReport(cycle_id=cycle_id)

            if not self.lease.acquire():
                logger.warning("Poll cycle skipped: lease %s is held", self.lease.name)
                report.skipped = True
                return report

            try:
                await self._run(report)
            except Exception as exc:
                logger.exception("Poll cycle aborted")
                await self.notifier.pipeline_error("poll cycle", exc)
                raise
            finally:
                self.lease.release()

            logger.info("Poll cycle finished", extra={"report": report.to_dict()})
            return report

    async def _run(self, report: PollCycleReport) -> None:
        started = self.clock.monotonic()

        with session_scope(self._session_factory) as db:
            batch_ids = [job.id for job in self.store.list_pending(db)]

        if not batch_ids:
            logger.info("No pending batch jobs")

        for index, batch_id in enumerate(batch_ids):
            if self.clock.monotonic() - started >= self.budget_seconds:
                report.deferred = batch_ids[index:]
                logger.warning(
                    "Poll cycle budget of %ss exhausted; deferring %d jobs",
                    self.budget_seconds,
                    len(report.deferred),
                )
                break

            report.checked.append(batch_id)
            try:
                outcome = await self.poll_job(batch_id)
            except Exception:
                logger.exception(
                    "Error polling batch job %s; leaving it for the next cycle",
                    batch_id,
                    extra={"batch_id": batch_id},
                )
                report.errored.append(batch_id)
                continue

            if outcome == OUTCOME_CONSUMED:
                report.consumed.append(batch_id)
            elif outcome == OUTCOME_FAILED:
                report.failed.append(batch_id)
            elif outcome == OUTCOME_ADVANCED:
                report.advanced.append(batch_id)

        report.swept = self.janitor.sweep(self.retention)

    # ------------------------------------------------------------------
    # Single job
    # ------------------------------------------------------------------

    async def poll_job(self, batch_id: str) -> str:
        """Advance one job from the provider's view of it. Returns the outcome."""
        with session_scope(self._session_factory) as db:
            job = self.store.get(db, batch_id)
            current = job.status if job is not None else None
            week, year = (job.week, job.year) if job is not None else (0, 0)

        if current is None or current in TERMINAL_BATCH_STATUSES:
            return OUTCOME_SKIPPED

        status = await self.provider.check_status(batch_id)
        target = PROVIDER_STATUS_MAP.get(status.status)
        log_extra = {"batch_id": batch_id, "status": status.status}

        if target is None:
            logger.warning("Unknown provider status %r for %s", status.status, batch_id, extra=log_extra)
            return OUTCOME_UNCHANGED

        if target == BATCH_STATUS_PROCESSING:
            if not (status.output_file_id or status.error_file_id):
                return await self._fail(
                    batch_id, week, year, BATCH_STATUS_FAILED, "Batch completed without output"
                )
            with session_scope(self._session_factory) as db:
                self.store.update_status(
                    db,
                    batch_id,
                    BATCH_STATUS_PROCESSING,
                    output_file_id=status.output_file_id,
                    error_file_id=status.error_file_id,
                    provider_status=status.status,
                )
            await self.consumer.consume(batch_id)
            return OUTCOME_CONSUMED

        if target in (BATCH_STATUS_FAILED, BATCH_STATUS_CANCELLED):
            return await self._fail(
                batch_id, week, year, target, f"Provider batch {status.status}"
            )

        if _rank(target) <= _rank(current):
            logger.info("Batch job %s still %s", batch_id, current, extra=log_extra)
            return OUTCOME_UNCHANGED

        with session_scope(self._session_factory) as db:
            self.store.update_status(db, batch_id, target, provider_status=status.status)
        return OUTCOME_ADVANCED

    async def _fail(self, batch_id: str, week: int, year: int, status: str, reason: str) -> str:
        with session_scope(self._session_factory) as db:
            self.store.fail(db, batch_id, reason, status=status, completed_at=self.clock.now())
        await self.notifier.batch_failed(
            FailureReport(batch_id=batch_id, week=week, year=year, status=status, reason=reason)
        )
        return OUTCOME_FAILED
