"""Wires the weekly summary pipeline together from settings.

``get_pipeline()`` returns a process-wide singleton used by the admin API and
the scheduler; tests build their own with ``build_pipeline``.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

from sqlalchemy.orm import Session

from app.config import Settings, settings
from app.database import get_db
from app.services.batch_consumer import BatchConsumer
from app.services.batch_job_service import BatchJobService
from app.services.batch_poller import BatchPoller, PollCycleReport
from app.services.batch_submitter import BatchSubmitter
from app.services.email_service import get_email_service
from app.services.errors import OpenBatchJobExistsError
from app.services.job_janitor import JobJanitor
from app.services.lease import CycleLease
from app.services.notifications import LogNotificationSink, NotificationSink, SubmissionReport
from app.services.scheduler import Clock, PipelineScheduler, SystemClock, parse_schedule
from app.services.weekly_data import WeeklyDataAccess
from weekly_digest.batch_client import BatchProvider, OpenAIBatchProvider
from weekly_digest.prompt_generator import PromptBuilder

logger = logging.getLogger(__name__)

_pipeline: "Pipeline | None" = None


@dataclass
class Pipeline:
    session_factory: Callable[[], Session]
    settings: Settings
    clock: Clock
    provider: BatchProvider
    notifier: NotificationSink
    store: BatchJobService
    data_access: WeeklyDataAccess
    prompt_builder: PromptBuilder
    submitter: BatchSubmitter
    consumer: BatchConsumer
    janitor: JobJanitor
    poller: BatchPoller

    async def scheduled_submit(self) -> SubmissionReport | None:
        """Submit the previous week; an already open job is not an error here."""
        try:
            return await self.submitter.submit()
        except OpenBatchJobExistsError as exc:
            logger.info("Scheduled submission skipped: %s", exc)
            return None

    async def scheduled_poll(self) -> PollCycleReport:
        return await self.poller.run_cycle()

    def build_scheduler(self) -> PipelineScheduler:
        return PipelineScheduler(
            self.clock,
            submit_schedule=parse_schedule(self.settings.submit_schedule),
            poll_schedule=parse_schedule(self.settings.poll_schedule),
            submit_action=self.scheduled_submit,
            poll_action=self.scheduled_poll,
            tick_seconds=self.settings.scheduler_tick_seconds,
        )


def _default_notifier() -> NotificationSink:
    email = get_email_service()
    return email if email.configured else LogNotificationSink()


def build_pipeline(
    *,
    session_factory: Callable[[], Session] = get_db,
    config: Settings = settings,
    provider: BatchProvider | None = None,
    notifier: NotificationSink | None = None,
    clock: Clock | None = None,
) -> Pipeline:
    clock = clock or SystemClock()
    provider = provider or OpenAIBatchProvider(
        config.openai_api_key, completion_window=config.batch_completion_window
    )
    notifier = notifier or _default_notifier()
    store = BatchJobService()
    data_access = WeeklyDataAccess()
    prompt_builder = PromptBuilder(model=config.openai_model)

    consumer = BatchConsumer(
        session_factory,
        provider,
        store=store,
        data_access=data_access,
        notifier=notifier,
        clock=clock,
    )
    janitor = JobJanitor(session_factory, store=store, clock=clock)
    poller = BatchPoller(
        session_factory,
        provider,
        consumer,
        store=store,
        janitor=janitor,
        lease=CycleLease(
            session_factory,
            ttl=timedelta(seconds=config.poll_lease_ttl_seconds),
            clock=clock,
        ),
        notifier=notifier,
        clock=clock,
        budget_seconds=config.poll_cycle_budget_seconds,
        retention=timedelta(days=config.batch_retention_days),
    )
    submitter = BatchSubmitter(
        session_factory,
        provider,
        store=store,
        data_access=data_access,
        prompt_builder=prompt_builder,
        notifier=notifier,
        clock=clock,
    )

    return Pipeline(
        session_factory=session_factory,
        settings=config,
        clock=clock,
        provider=provider,
        notifier=notifier,
        store=store,
        data_access=data_access,
        prompt_builder=prompt_builder,
        submitter=submitter,
        consumer=consumer,
        janitor=janitor,
        poller=poller,
    )


def get_pipeline() -> Pipeline:
    """Return the module-level Pipeline singleton."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline()
    return _pipeline
