import pytest

from pipeline_support import FakeBatchProvider, FakeClock, FakeNotifier, make_session_factory


@pytest.fixture
def session_factory():
    return make_session_factory()


@pytest.fixture
def provider() -> FakeBatchProvider:
    return FakeBatchProvider()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
