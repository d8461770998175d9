import pytest

from tests.fakes import (
    FakeBulkRepository,
    FakeClock,
    FakeDateTimeClock,
    FakeNotificationRepository,
    FakeRedisBackend,
)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def dt_clock():
    return FakeDateTimeClock()


@pytest.fixture
def fake_backend(clock):
    return FakeRedisBackend(clock)


@pytest.fixture
def job_repository():
    return FakeNotificationRepository()


@pytest.fixture
def bulk_repository():
    return FakeBulkRepository()
