import asyncio
import logging
from typing import Callable, Collection, Optional, Protocol

from roomflow.core.config import (
    POLL_INTERVAL_MS,
    POLL_MAX_ATTEMPTS,
    POLL_MAX_CONSECUTIVE_FAILURES,
)
from roomflow.core.errors import InvalidRequestError, TransportError
from roomflow.schemas.pipeline import JobStatus
from roomflow.services.lifecycle import LifecycleGuard

logger = logging.getLogger(__name__)

TIMEOUT_STATUS = "timeout"
FIRST_STAGE_TERMINAL = frozenset({"done", "empty_complete", "error"})
SECOND_STAGE_TERMINAL = frozenset({"done", "error", "style_error"})


class StatusSource(Protocol):
    async def check_status(self, job_id: str) -> JobStatus: ...


def timeout_status(max_attempts: int, interval_ms: int) -> JobStatus:
    seconds = max_attempts * interval_ms / 1000
    return JobStatus(
        status=TIMEOUT_STATUS,
        message=f"Processing timed out after {seconds:g} seconds ({max_attempts} attempts).",
    )


async def poll_job_status(
    client: StatusSource,
    job_id: str,
    terminal_statuses: Collection[str],
    interval_ms: int = POLL_INTERVAL_MS,
    max_attempts: int = POLL_MAX_ATTEMPTS,
    on_status: Optional[Callable[[str], None]] = None,
    guard: Optional[LifecycleGuard] = None,
    max_consecutive_failures: int = POLL_MAX_CONSECUTIVE_FAILURES,
) -> JobStatus:
    """Check `job_id` until a terminal status shows up or attempts run out.

    Running out of attempts is not an error: the synthetic `timeout` status
    is returned like any other terminal status. Failed checks count as
    attempts; up to `max_consecutive_failures` network/remote failures in a
    row are tolerated, a rejected request is raised at once.

    When the guard is unmounted the loop stops without reporting anything
    further and the coroutine ends with CancelledError.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    if interval_ms < 0:
        raise ValueError("interval_ms must be >= 0")

    failures = 0
    for attempt in range(1, max_attempts + 1):
        _ensure_mounted(guard)
        logger.debug(f"poll attempt {attempt}/{max_attempts} for job {job_id}")
        try:
            result = await client.check_status(job_id)
        except InvalidRequestError:
            raise
        except TransportError as exc:
            failures += 1
            logger.warning(
                f"status check failed for job {job_id} ({failures}/{max_consecutive_failures}): {exc}"
            )
            if failures >= max_consecutive_failures:
                raise
        else:
            failures = 0
            _ensure_mounted(guard)
            if on_status is not None:
                on_status(result.status)
            if result.status in terminal_statuses:
                logger.info(f"job {job_id} reached {result.status} after {attempt} checks")
                return result

        if attempt == max_attempts:
            break
        if guard is None:
            await asyncio.sleep(interval_ms / 1000)
        elif not await guard.sleep(interval_ms / 1000):
            _ensure_mounted(guard)

    logger.warning(f"job {job_id} timed out after {max_attempts} checks")
    return timeout_status(max_attempts, interval_ms)


def _ensure_mounted(guard: Optional[LifecycleGuard]) -> None:
    if guard is not None and not guard.is_mounted():
        raise asyncio.CancelledError()
