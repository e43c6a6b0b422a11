import pytest

from pixcheckout.scheduler import PollScheduler


@pytest.fixture
def scheduler():
    s = PollScheduler()
    s.start()
    yield s
    s.shutdown()


def test_schedule_replaces_job_with_same_id(scheduler):
    scheduler.every("checkout:abc", lambda: None, 5)
    scheduler.every("checkout:abc", lambda: None, 5)

    assert scheduler.job_ids() == ["checkout:abc"]


def test_cancel_is_idempotent(scheduler):
    scheduler.every("checkout:abc", lambda: None, 5)

    assert scheduler.cancel("checkout:abc") is True
    assert scheduler.cancel("checkout:abc") is False
    assert scheduler.job_ids() == []


def test_start_and_shutdown():
    scheduler = PollScheduler()

    scheduler.start()
    scheduler.start()
    assert scheduler.running

    scheduler.shutdown()
    scheduler.shutdown()
    assert not scheduler.running
