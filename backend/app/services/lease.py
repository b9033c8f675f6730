"""Compare-and-swap lease guarding the poll cycle.

A lease is a row in ``scheduler_leases``. Acquiring it is a single
conditional UPDATE (only if expired or already ours) followed, when the row
does not exist yet, by an INSERT that loses cleanly on a primary key clash.
The TTL bounds how long a crashed holder can block the next cycle.
"""

import logging
import uuid
from datetime import timedelta
from typing import Callable

from sqlalchemy import delete, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.scheduler_lease import SchedulerLease
from app.services.scheduler import Clock, SystemClock

logger = logging.getLogger(__name__)

POLL_CYCLE_LEASE = "poll-cycle"


class CycleLease:
    """A named, TTL-bounded lease held by one process at a time."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        name: str = POLL_CYCLE_LEASE,
        *,
        ttl: timedelta = timedelta(minutes=6),
        clock: Clock | None = None,
        holder: str | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.name = name
        self.ttl = ttl
        self.clock = clock or SystemClock()
        self.holder = holder or uuid.uuid4().hex

    def acquire(self) -> bool:
        """Take the lease if it is free, expired, or already ours."""
        now = self.clock.now()
        expires_at = now + self.ttl
        db = self._session_factory()
        try:
            result = db.execute(
                update(SchedulerLease)
                .where(
                    SchedulerLease.name == self.name,
                    or_(
                        SchedulerLease.expires_at <= now,
                        SchedulerLease.holder == self.holder,
                    ),
                )
                .values(holder=self.holder, expires_at=expires_at)
            )
            if result.rowcount == 1:
                db.commit()
                return True
            db.rollback()

            if db.get(SchedulerLease, self.name) is not None:
                return False

            db.add(SchedulerLease(name=self.name, holder=self.holder, expires_at=expires_at))
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                return False
            return True
        finally:
            db.close()

    def release(self) -> None:
        """Give the lease back; a no-op if another holder took it over."""
        db = self._session_factory()
        try:
            db.execute(
                delete(SchedulerLease).where(
                    SchedulerLease.name == self.name,
                    SchedulerLease.holder == self.holder,
                )
            )
            db.commit()
        finally:
            db.close()
