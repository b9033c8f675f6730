"""Tests for the poll-cycle CycleLease."""

from datetime import timedelta

from app.services.lease import CycleLease


def _lease(session_factory, clock, holder):
    return CycleLease(session_factory, clock=clock, holder=holder, ttl=timedelta(minutes=6))


class TestCycleLease:
    def test_first_holder_acquires(self, session_factory, clock):
        assert _lease(session_factory, clock, "a").acquire()

    def test_second_holder_is_refused_while_held(self, session_factory, clock):
        assert _lease(session_factory, clock, "a").acquire()
        assert not _lease(session_factory, clock, "b").acquire()

    def test_holder_can_renew(self, session_factory, clock):
        lease = _lease(session_factory, clock, "a")
        assert lease.acquire()
        assert lease.acquire()

    def test_expired_lease_can_be_taken_over(self, session_factory, clock):
        assert _lease(session_factory, clock, "a").acquire()
        clock.advance(6 * 60)
        assert _lease(session_factory, clock, "b").acquire()
        assert not _lease(session_factory, clock, "a").acquire()

    def test_release_frees_the_lease(self, session_factory, clock):
        lease = _lease(session_factory, clock, "a")
        lease.acquire()
        lease.release()
        assert _lease(session_factory, clock, "b").acquire()

    def test_release_by_non_holder_is_a_no_op(self, session_factory, clock):
        assert _lease(session_factory, clock, "a").acquire()
        _lease(session_factory, clock, "b").release()
        assert not _lease(session_factory, clock, "b").acquire()

    def test_leases_are_independent_by_name(self, session_factory, clock):
        assert CycleLease(session_factory, "one", clock=clock, holder="a").acquire()
        assert CycleLease(session_factory, "two", clock=clock, holder="b").acquire()
