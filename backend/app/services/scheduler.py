"""Clock abstraction and the in-process weekly scheduler.

Everything time-related in the pipeline reads an injected ``Clock`` so tests
can freeze or advance time without sleeping.

``PipelineScheduler`` replaces platform cron: every ``tick_seconds`` it checks
the current UTC (weekday, hour) against the configured schedules and fires
each action at most once per matching slot. Overlap between processes is
handled by the poll-cycle lease and the submitter's open-job guard, not here.
"""

import asyncio
import logging
import time
from datetime import date, datetime, timezone
from typing import Awaitable, Callable, Protocol

from app.logging_config import bind_correlation_id

logger = logging.getLogger(__name__)

DAY_NAMES: dict[str, int] = {
    "mon": 0,
    "tue": 1,
    "wed": 2,
    "thu": 3,
    "fri": 4,
    "sat": 5,
    "sun": 6,
}

# (weekday, hour) pairs in UTC, Monday = 0
Schedule = frozenset[tuple[int, int]]


class Clock(Protocol):
    def now(self) -> datetime:
        """Current time as a naive UTC datetime."""
        ...

    def monotonic(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


def parse_schedule(text: str) -> Schedule:
    """Parse ``"sat 21; sun 0,3,9"`` into a set of (weekday, hour) slots.

    Raises:
        ValueError: On an unknown day name or an hour outside 0-23.
    """
    slots: set[tuple[int, int]] = set()
    for group in text.split(";"):
        group = group.strip()
        if not group:
            continue
        day, _, hours = group.partition(" ")
        weekday = DAY_NAMES.get(day.strip().lower()[:3])
        if weekday is None or not hours.strip():
            raise ValueError(f"Invalid schedule entry: {group!r}")
        for hour in hours.split(","):
            value = int(hour.strip())
            if not 0 <= value <= 23:
                raise ValueError(f"Invalid hour in schedule entry: {group!r}")
            slots.add((weekday, value))
    return frozenset(slots)


class PipelineScheduler:
    """Fires the submit and poll actions on their weekly UTC slots."""

    def __init__(
        self,
        clock: Clock,
        *,
        submit_schedule: Schedule,
        poll_schedule: Schedule,
        submit_action: Callable[[], Awaitable[object]],
        poll_action: Callable[[], Awaitable[object]],
        tick_seconds: float = 60,
    ) -> None:
        self.clock = clock
        self.tick_seconds = tick_seconds
        self._jobs = [
            ("submit", submit_schedule, submit_action),
            ("poll", poll_schedule, poll_action),
        ]
        self._last_fired: dict[str, tuple[date, int]] = {}

    async def tick(self) -> list[str]:
        """Run every action whose slot matches now and has not fired yet.

        Returns the names of the actions that fired. Action failures are
        logged and never propagate.
        """
        now = self.clock.now()
        slot = (now.weekday(), now.hour)
        slot_key = (now.date(), now.hour)
        fired: list[str] = []

        for name, schedule, action in self._jobs:
            if slot not in schedule or self._last_fired.get(name) == slot_key:
                continue
            self._last_fired[name] = slot_key
            fired.append(name)

            with bind_correlation_id(prefix=f"{name}-"):
                logger.info("Scheduled %s run starting", name, extra={"slot": str(slot_key)})
                try:
                    await action()
                except Exception:
                    logger.exception("Scheduled %s run failed", name)

        return fired

    async def run_forever(self) -> None:
        logger.info("Scheduler started (tick every %ss)", self.tick_seconds)
        while True:
            await self.tick()
            await self.clock.sleep(self.tick_seconds)
