"""Pipeline reports and the sink that receives them.

The pipeline only depends on the ``NotificationSink`` protocol. ``EmailService``
(email_service.py) delivers reports to the operator mailbox; ``LogNotificationSink``
writes them to the log and is used when SMTP is not configured.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmissionReport:
    """Outcome of TriggerWeeklySummaries. ``batch_id`` is None when nothing was submitted."""

    batch_id: str | None
    week: int
    year: int
    total_users: int
    requests_submitted: int
    skipped_users: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ConsumeReport:
    batch_id: str
    week: int
    year: int
    success_count: int
    error_count: int
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FailureReport:
    """A batch the provider gave up on."""

    batch_id: str
    week: int
    year: int
    status: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class NotificationSink(Protocol):
    """Receives pipeline reports. Implementations must not raise."""

    async def batch_submitted(self, report: SubmissionReport) -> bool: ...

    async def batch_completed(self, report: ConsumeReport) -> bool: ...

    async def batch_failed(self, report: FailureReport) -> bool: ...

    async def pipeline_error(self, context: str, error: BaseException) -> bool: ...


class LogNotificationSink:
    """NotificationSink that only writes structured log lines."""

    async def batch_submitted(self, report: SubmissionReport) -> bool:
        logger.info("Batch submitted", extra={"report": report.to_dict()})
        return True

    async def batch_completed(self, report: ConsumeReport) -> bool:
        logger.info("Batch consumed", extra={"report": report.to_dict()})
        return True

    async def batch_failed(self, report: FailureReport) -> bool:
        logger.warning("Batch failed", extra={"report": report.to_dict()})
        return True

    async def pipeline_error(self, context: str, error: BaseException) -> bool:
        logger.error("Pipeline error during %s: %s", context, error)
        return True
