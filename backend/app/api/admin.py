"""Admin API - privileged entry points into the weekly summary pipeline.

Implements (all require an API key whose owner has the ``admin`` role):
  POST /api/admin/weekly-summaries                      - submit a week
  GET  /api/admin/batches                               - last N batch jobs
  GET  /api/admin/batches/{batch_id}                    - full job record
  GET  /api/admin/batches/{batch_id}/status             - live provider status
  POST /api/admin/batches/{batch_id}/consume            - consume a finished batch
  POST /api/admin/poll-cycle                            - run one poll cycle now
  GET  /api/admin/users/{user_id}/weeks/{year}/{week}/summary-data
                                                        - week data + request preview
"""

import logging
from datetime import datetime
from typing import Any

import openai
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from app.database import session_scope
from app.deps import require_admin
from app.models.batch_job import BatchJob
from app.services.errors import (
    BatchJobNotFoundError,
    BatchNotReadyError,
    InvalidStatusTransitionError,
    OpenBatchJobExistsError,
    UserNotFoundError,
)
from app.services.pipeline import Pipeline, get_pipeline
from weekly_digest.custom_ids import InvalidCustomIdError
from weekly_digest.weeks import InvalidWeekError, MAX_WEEK

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------


class TriggerRequest(BaseModel):
    week: int | None = Field(default=None, ge=1, le=MAX_WEEK)
    year: int | None = Field(default=None, ge=2000, le=2100)


class TriggerResponse(BaseModel):
    batch_id: str | None
    week: int
    year: int
    total_users: int
    requests_submitted: int
    skipped_users: list[str]


class BatchJobSummary(BaseModel):
    """Row of the batch job list."""

    id: str
    type: str
    week: int
    year: int
    status: str
    submitted_at: datetime
    completed_at: datetime | None
    total_requests: int
    success_count: int | None
    error_count: int | None

    model_config = {"from_attributes": True}


class BatchJobDetails(BatchJobSummary):
    provider_status: str | None
    output_file_id: str | None
    error_file_id: str | None
    failure_reason: str | None
    errors: list[dict[str, str]]


class BatchJobListResponse(BaseModel):
    jobs: list[BatchJobSummary]
    count: int


class RequestCountsResponse(BaseModel):
    total: int
    completed: int
    failed: int


class BatchStatusResponse(BaseModel):
    batch_id: str
    status: str
    job_status: str
    output_file_id: str | None
    error_file_id: str | None
    request_counts: RequestCountsResponse


class ConsumeResponse(BaseModel):
    batch_id: str
    success_count: int
    error_count: int
    errors: list[dict[str, str]]


class PollCycleResponse(BaseModel):
    cycle_id: str
    skipped: bool
    checked: list[str]
    advanced: list[str]
    consumed: list[str]
    failed: list[str]
    errored: list[str]
    deferred: list[str]
    swept: int


class SummaryDataResponse(BaseModel):
    data: dict[str, Any]
    request: dict[str, Any]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_job(pipeline: Pipeline, batch_id: str) -> BatchJob:
    with session_scope(pipeline.session_factory) as db:
        job = pipeline.store.get(db, batch_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Batch job not found")
    return job


def _provider_error(action: str, exc: openai.OpenAIError) -> HTTPException:
    logger.exception("Batch provider call failed during %s", action)
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=f"Batch provider error during {action}: {exc}",
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/weekly-summaries", response_model=TriggerResponse)
async def trigger_weekly_summaries(
    body: TriggerRequest,
    pipeline: Pipeline = Depends(get_pipeline),
) -> TriggerResponse:
    """Submit weekly summary requests (defaults to the previous week).

    Returns 409 if a batch for that week is still open, 422 for a week the
    year does not have, and 502 if the provider rejects the batch.
    """
    try:
        report = await pipeline.submitter.submit(week=body.week, year=body.year)
    except InvalidWeekError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except OpenBatchJobExistsError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except openai.OpenAIError as exc:
        raise _provider_error("submission", exc) from exc

    return TriggerResponse(**report.to_dict())


@router.get("/batches", response_model=BatchJobListResponse)
def list_batch_jobs(pipeline: Pipeline = Depends(get_pipeline)) -> BatchJobListResponse:
    """The most recent batch jobs, newest first."""
    with session_scope(pipeline.session_factory) as db:
        jobs = pipeline.store.list_recent(db, pipeline.settings.batch_list_limit)
        items = [BatchJobSummary.model_validate(job) for job in jobs]
    return BatchJobListResponse(jobs=items, count=len(items))


@router.get("/batches/{batch_id}", response_model=BatchJobDetails)
def get_batch_job_details(
    batch_id: str,
    pipeline: Pipeline = Depends(get_pipeline),
) -> BatchJobDetails:
    job = _load_job(pipeline, batch_id)
    return BatchJobDetails.model_validate(job)


@router.get("/batches/{batch_id}/status", response_model=BatchStatusResponse)
async def check_batch_status(
    batch_id: str,
    pipeline: Pipeline = Depends(get_pipeline),
) -> BatchStatusResponse:
    """Ask the provider for the live status of a known batch job."""
    job = _load_job(pipeline, batch_id)
    try:
        provider_status = await pipeline.provider.check_status(batch_id)
    except openai.OpenAIError as exc:
        raise _provider_error("status check", exc) from exc

    return BatchStatusResponse(
        batch_id=batch_id,
        status=provider_status.status,
        job_status=job.status,
        output_file_id=provider_status.output_file_id,
        error_file_id=provider_status.error_file_id,
        request_counts=RequestCountsResponse(**provider_status.request_counts.to_dict()),
    )


@router.post("/batches/{batch_id}/consume", response_model=ConsumeResponse)
async def consume_batch(
    batch_id: str,
    pipeline: Pipeline = Depends(get_pipeline),
) -> ConsumeResponse:
    """Consume a finished batch now. Safe to repeat on a completed job."""
    try:
        report = await pipeline.consumer.consume(batch_id)
    except BatchJobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (BatchNotReadyError, InvalidStatusTransitionError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except openai.OpenAIError as exc:
        raise _provider_error("consumption", exc) from exc

    return ConsumeResponse(
        batch_id=report.batch_id,
        success_count=report.success_count,
        error_count=report.error_count,
        errors=report.errors,
    )


@router.post("/poll-cycle", response_model=PollCycleResponse)
async def run_poll_cycle(pipeline: Pipeline = Depends(get_pipeline)) -> PollCycleResponse:
    """Run one poll cycle immediately (skipped if another cycle holds the lease)."""
    report = await pipeline.poller.run_cycle()
    return PollCycleResponse(**report.to_dict())


@router.get(
    "/users/{user_id}/weeks/{year}/{week}/summary-data",
    response_model=SummaryDataResponse,
)
def get_summary_data(
    user_id: str,
    year: int,
    week: int,
    pipeline: Pipeline = Depends(get_pipeline),
) -> SummaryDataResponse:
    """Return a user's week and the exact request that would be submitted for it."""
    try:
        with session_scope(pipeline.session_factory) as db:
            data = pipeline.data_access.get_weekly_data(db, user_id, year, week)
    except UserNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (InvalidWeekError, InvalidCustomIdError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return SummaryDataResponse(data=data.to_dict(), request=pipeline.prompt_builder.preview(data))
