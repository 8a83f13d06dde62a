import asyncio

import pytest

from fakes import EMPTY_URL, FakeRoomClient, status
from roomflow.core.errors import InvalidRequestError, NetworkError
from roomflow.services.lifecycle import LifecycleGuard
from roomflow.services.poller import FIRST_STAGE_TERMINAL, TIMEOUT_STATUS, poll_job_status


def _poll(client, **kwargs):
    kwargs.setdefault("interval_ms", 0)
    kwargs.setdefault("max_attempts", 5)
    return poll_job_status(client, "job-1", FIRST_STAGE_TERMINAL, **kwargs)


def test_returns_first_terminal_status():
    client = FakeRoomClient(
        first_stage=[
            status("queued"),
            status("processing"),
            status("empty_complete", empty_url=EMPTY_URL),
            status("processing"),
        ]
    )
    seen = []
    result = asyncio.run(_poll(client, on_status=seen.append))
    assert result.status == "empty_complete"
    assert result.empty_url == EMPTY_URL
    assert seen == ["queued", "processing", "empty_complete"]
    assert len(client.checks) == 3


def test_error_status_is_terminal():
    client = FakeRoomClient(first_stage=[status("error", message="bad input")])
    result = asyncio.run(_poll(client))
    assert result.status == "error"
    assert result.message == "bad input"


def test_exhausted_attempts_return_timeout_status():
    client = FakeRoomClient(first_stage=[status("processing")])
    result = asyncio.run(_poll(client, max_attempts=4, interval_ms=1))
    assert result.status == TIMEOUT_STATUS
    assert "4 attempts" in result.message
    assert len(client.checks) == 4


@pytest.mark.parametrize("kwargs", [{"max_attempts": 0}, {"interval_ms": -1}])
def test_rejects_bad_arguments(kwargs):
    with pytest.raises(ValueError):
        asyncio.run(_poll(FakeRoomClient(), **kwargs))


def test_rejected_request_is_raised_immediately():
    client = FakeRoomClient(first_stage=[InvalidRequestError("status check failed: 404")])
    with pytest.raises(InvalidRequestError):
        asyncio.run(_poll(client))
    assert len(client.checks) == 1


def test_consecutive_failure_counter_resets_on_success():
    client = FakeRoomClient(
        first_stage=[
            NetworkError("reset"),
            NetworkError("reset"),
            status("processing"),
            NetworkError("reset"),
            NetworkError("reset"),
            status("done", empty_url=EMPTY_URL),
        ]
    )
    result = asyncio.run(_poll(client, max_attempts=10, max_consecutive_failures=3))
    assert result.status == "done"


def test_too_many_consecutive_failures_raise():
    client = FakeRoomClient(first_stage=[NetworkError("reset")])
    with pytest.raises(NetworkError):
        asyncio.run(_poll(client, max_attempts=10, max_consecutive_failures=2))
    assert len(client.checks) == 2


def test_unmounted_guard_never_checks():
    async def scenario():
        guard = LifecycleGuard()
        guard.mark_unmounted()
        client = FakeRoomClient()
        with pytest.raises(asyncio.CancelledError):
            await _poll(client, guard=guard)
        assert client.checks == []

    asyncio.run(scenario())


def test_unmount_cuts_the_interval_short():
    async def scenario():
        guard = LifecycleGuard()
        client = FakeRoomClient(first_stage=[status("processing")])
        seen = []
        task = asyncio.ensure_future(
            _poll(client, guard=guard, interval_ms=60_000, on_status=seen.append)
        )
        while not seen:
            await asyncio.sleep(0)
        guard.mark_unmounted()
        await asyncio.wait_for(asyncio.wait({task}), timeout=1)
        assert task.cancelled()
        assert seen == ["processing"]
        assert len(client.checks) == 1

    asyncio.run(scenario())


def test_guard_sleep_reports_teardown():
    async def scenario():
        guard = LifecycleGuard()
        assert await guard.sleep(0) is True
        guard.mark_unmounted()
        assert await guard.sleep(10) is False
        assert not guard.is_mounted()
        assert not guard.has_started()

    asyncio.run(scenario())
