"""Exceptions raised by the weekly summary pipeline services."""


class PipelineError(Exception):
    """Base class for orchestration errors surfaced to callers."""


class BatchJobNotFoundError(PipelineError):
    def __init__(self, batch_id: str):
        super().__init__(f"Batch job {batch_id} not found")
        self.batch_id = batch_id


class OpenBatchJobExistsError(PipelineError):
    """A non-terminal job already exists for the requested week."""

    def __init__(self, batch_id: str, week: int, year: int):
        super().__init__(
            f"Batch job {batch_id} for week {week}/{year} is still open"
        )
        self.batch_id = batch_id
        self.week = week
        self.year = year


class BatchNotReadyError(PipelineError):
    """The provider has not produced output for the batch yet."""


class InvalidStatusTransitionError(PipelineError):
    def __init__(self, batch_id: str, current: str, requested: str):
        super().__init__(
            f"Batch job {batch_id} cannot move from {current} to {requested}"
        )
        self.batch_id = batch_id
        self.current = current
        self.requested = requested


class UserNotFoundError(PipelineError):
    def __init__(self, user_id: str):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id
