"""Job janitor - deletes terminal batch jobs past the retention window."""

import logging
from datetime import timedelta
from typing import Callable

from sqlalchemy.orm import Session

from app.database import session_scope
from app.services.batch_job_service import BatchJobService
from app.services.scheduler import Clock, SystemClock

logger = logging.getLogger(__name__)


class JobJanitor:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        store: BatchJobService | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.store = store or BatchJobService()
        self.clock = clock or SystemClock()

    def sweep(self, retention: timedelta) -> int:
        """Delete completed, failed and cancelled jobs older than ``retention``.

        Age is measured from ``completed_at``, or ``submitted_at`` when the
        job never completed. One failed delete does not stop the others.

        Returns:
            Number of jobs deleted.
        """
        cutoff = self.clock.now() - retention
        with session_scope(self._session_factory) as db:
            batch_ids = [job.id for job in self.store.list_older_than(db, cutoff)]

        deleted = 0
        for batch_id in batch_ids:
            try:
                with session_scope(self._session_factory) as db:
                    if self.store.delete(db, batch_id):
                        deleted += 1
            except Exception:
                logger.exception(
                    "Failed to delete batch job %s", batch_id, extra={"batch_id": batch_id}
                )

        if batch_ids:
            logger.info(
                "Swept %d of %d expired batch jobs (cutoff %s)",
                deleted,
                len(batch_ids),
                cutoff.isoformat(),
            )
        return deleted
