"""Tests for schedule parsing and the in-process PipelineScheduler."""

from datetime import datetime

import pytest

from app.services.scheduler import PipelineScheduler, parse_schedule
from pipeline_support import FakeClock


class TestParseSchedule:
    def test_default_poll_schedule(self):
        slots = parse_schedule("sat 21; sun 0,3,9,12,15,21")
        assert (5, 21) in slots
        assert (6, 0) in slots
        assert (6, 21) in slots
        assert len(slots) == 7

    def test_full_day_names_and_blank_groups(self):
        assert parse_schedule("Saturday 18;") == frozenset({(5, 18)})

    @pytest.mark.parametrize("text", ["funday 3", "sat", "sat 24", "sat x"])
    def test_invalid_entries(self, text):
        with pytest.raises(ValueError):
            parse_schedule(text)


class _Recorder:
    def __init__(self, fail: bool = False):
        self.calls = 0
        self.fail = fail

    async def __call__(self):
        self.calls += 1
        if self.fail:
            raise RuntimeError("boom")


def _scheduler(clock, submit, poll):
    return PipelineScheduler(
        clock,
        submit_schedule=parse_schedule("sat 18"),
        poll_schedule=parse_schedule("sat 21; sun 0"),
        submit_action=submit,
        poll_action=poll,
        tick_seconds=60,
    )


class TestPipelineScheduler:
    @pytest.mark.asyncio
    async def test_fires_matching_slot_once(self):
        clock = FakeClock(datetime(2024, 3, 9, 18, 0))
        submit, poll = _Recorder(), _Recorder()
        scheduler = _scheduler(clock, submit, poll)

        assert await scheduler.tick() == ["submit"]
        clock.advance(60)
        assert await scheduler.tick() == []
        assert (submit.calls, poll.calls) == (1, 0)

    @pytest.mark.asyncio
    async def test_fires_poll_on_its_slots(self):
        clock = FakeClock(datetime(2024, 3, 9, 21, 5))
        submit, poll = _Recorder(), _Recorder()
        scheduler = _scheduler(clock, submit, poll)

        assert await scheduler.tick() == ["poll"]
        clock.advance(3 * 3600)
        assert await scheduler.tick() == ["poll"]
        assert poll.calls == 2

    @pytest.mark.asyncio
    async def test_same_slot_next_week_fires_again(self):
        clock = FakeClock(datetime(2024, 3, 9, 18, 0))
        submit = _Recorder()
        scheduler = _scheduler(clock, submit, _Recorder())

        await scheduler.tick()
        clock.advance(7 * 24 * 3600)
        await scheduler.tick()
        assert submit.calls == 2

    @pytest.mark.asyncio
    async def test_action_failure_does_not_propagate(self):
        clock = FakeClock(datetime(2024, 3, 9, 18, 0))
        scheduler = _scheduler(clock, _Recorder(fail=True), _Recorder())

        assert await scheduler.tick() == ["submit"]

    @pytest.mark.asyncio
    async def test_outside_schedule_does_nothing(self):
        clock = FakeClock(datetime(2024, 3, 6, 12, 0))
        submit, poll = _Recorder(), _Recorder()

        assert await _scheduler(clock, submit, poll).tick() == []
        assert (submit.calls, poll.calls) == (0, 0)
