"""Tests for BatchSubmitter: period resolution, request building and the submit flow."""

from datetime import date

import pytest

from app.models.batch_job import BATCH_STATUS_SUBMITTED
from app.services.batch_job_service import BatchJobService
from app.services.batch_submitter import BatchSubmitter
from app.services.errors import OpenBatchJobExistsError
from pipeline_support import add_todo, add_user
from weekly_digest.weeks import InvalidWeekError


def _submitter(session_factory, provider, notifier, clock) -> BatchSubmitter:
    return BatchSubmitter(session_factory, provider, notifier=notifier, clock=clock)


def _seed_week_10(session_factory) -> None:
    add_user(session_factory, "u1")
    add_user(session_factory, "u2")
    add_user(session_factory, "u3")
    add_user(session_factory, "u4", subscription_status="canceled")
    add_todo(session_factory, "u1", date(2024, 3, 4), "Write report")
    add_todo(session_factory, "u2", date(2024, 3, 7), "Water plants")
    add_todo(session_factory, "u3", date(2024, 3, 5), "Unfinished", completed=False)
    add_todo(session_factory, "u4", date(2024, 3, 5), "Not subscribed")


def _get_job(session_factory, batch_id):
    db = session_factory()
    try:
        return BatchJobService().get(db, batch_id)
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Period resolution
# ---------------------------------------------------------------------------


class TestResolvePeriod:
    def test_defaults_to_previous_week(self, session_factory, provider, notifier, clock):
        # Saturday 2024-03-09 belongs to week 11, so the previous week is 10
        submitter = _submitter(session_factory, provider, notifier, clock)
        assert submitter.resolve_period(None, None) == (2024, 10)

    def test_explicit_week_uses_current_year(self, session_factory, provider, notifier, clock):
        submitter = _submitter(session_factory, provider, notifier, clock)
        assert submitter.resolve_period(5, None) == (2024, 5)

    def test_invalid_week(self, session_factory, provider, notifier, clock):
        submitter = _submitter(session_factory, provider, notifier, clock)
        with pytest.raises(InvalidWeekError):
            submitter.resolve_period(53, 2023)


# ---------------------------------------------------------------------------
# submit
# ---------------------------------------------------------------------------


class TestSubmit:
    @pytest.mark.asyncio
    async def test_submits_one_request_per_user_with_completed_todos(
        self, session_factory, provider, notifier, clock
    ):
        _seed_week_10(session_factory)
        submitter = _submitter(session_factory, provider, notifier, clock)

        report = await submitter.submit()

        assert report.batch_id == "batch_1"
        assert (report.week, report.year) == (10, 2024)
        assert report.total_users == 3
        assert report.requests_submitted == 2
        assert report.skipped_users == ["u3"]

        requests, metadata = provider.submitted[0]
        assert [r.custom_id for r in requests] == ["u1_2024_10", "u2_2024_10"]
        assert metadata == {"type": "weekly-summary", "week": "10", "year": "2024"}

        job = _get_job(session_factory, "batch_1")
        assert job.status == BATCH_STATUS_SUBMITTED
        assert job.total_requests == 2
        assert job.custom_ids == ["u1_2024_10", "u2_2024_10"]
        assert job.submitted_at == clock.now()

        assert notifier.submitted == [report]

    @pytest.mark.asyncio
    async def test_open_job_for_week_blocks_resubmission(
        self, session_factory, provider, notifier, clock
    ):
        _seed_week_10(session_factory)
        submitter = _submitter(session_factory, provider, notifier, clock)
        await submitter.submit(week=10, year=2024)

        with pytest.raises(OpenBatchJobExistsError) as exc_info:
            await submitter.submit(week=10, year=2024)

        assert exc_info.value.batch_id == "batch_1"
        assert len(provider.submitted) == 1

    @pytest.mark.asyncio
    async def test_nothing_to_submit(self, session_factory, provider, notifier, clock):
        add_user(session_factory, "u1")
        submitter = _submitter(session_factory, provider, notifier, clock)

        report = await submitter.submit(week=10, year=2024)

        assert report.batch_id is None
        assert report.requests_submitted == 0
        assert report.skipped_users == ["u1"]
        assert provider.submitted == []
        assert notifier.submitted == []

    @pytest.mark.asyncio
    async def test_provider_failure_leaves_no_job(
        self, session_factory, provider, notifier, clock
    ):
        _seed_week_10(session_factory)
        provider.submit_error = RuntimeError("upload rejected")
        submitter = _submitter(session_factory, provider, notifier, clock)

        with pytest.raises(RuntimeError):
            await submitter.submit(week=10, year=2024)

        assert _get_job(session_factory, "batch_1") is None
        assert len(notifier.errors) == 1
        assert "week 10/2024" in notifier.errors[0][0]
        assert notifier.submitted == []

    @pytest.mark.asyncio
    async def test_unreadable_user_is_skipped(self, session_factory, provider, notifier, clock):
        _seed_week_10(session_factory)
        submitter = _submitter(session_factory, provider, notifier, clock)
        original = submitter.data_access.get_weekly_data

        def flaky(db, user_id, year, week):
            if user_id == "u2":
                raise RuntimeError("corrupt row")
            return original(db, user_id, year, week)

        submitter.data_access.get_weekly_data = flaky

        report = await submitter.submit(week=10, year=2024)

        assert report.requests_submitted == 1
        assert sorted(report.skipped_users) == ["u2", "u3"]
