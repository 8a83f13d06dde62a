import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Collection, Coroutine, Dict, Optional, Protocol

from roomflow.core.config import (
    POLL_INTERVAL_MS,
    POLL_MAX_ATTEMPTS,
    POLL_MAX_CONSECUTIVE_FAILURES,
    STYLE_POLL_INTERVAL_MS,
    STYLE_POLL_MAX_ATTEMPTS,
)
from roomflow.core.errors import ErrorKind, InvalidRequestError, TransportError
from roomflow.schemas.pipeline import ErrorRecord, Job, JobStatus, Stage, StageParams
from roomflow.services import styles
from roomflow.services.image_payload import ImagePayload
from roomflow.services.lifecycle import LifecycleGuard
from roomflow.services.poller import (
    FIRST_STAGE_TERMINAL,
    SECOND_STAGE_TERMINAL,
    TIMEOUT_STATUS,
    poll_job_status,
)

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[Stage, frozenset] = {
    Stage.IDLE: frozenset({Stage.UPLOADING}),
    Stage.UPLOADING: frozenset({Stage.FIRST_STAGE_POLLING, Stage.FAILED}),
    Stage.FIRST_STAGE_POLLING: frozenset({Stage.AWAITING_STYLE_SELECTION, Stage.FAILED}),
    Stage.AWAITING_STYLE_SELECTION: frozenset({Stage.SECOND_STAGE_POLLING, Stage.FAILED}),
    Stage.SECOND_STAGE_POLLING: frozenset({Stage.COMPLETE, Stage.FAILED}),
    Stage.COMPLETE: frozenset(),
    Stage.FAILED: frozenset({Stage.UPLOADING, Stage.SECOND_STAGE_POLLING}),
}

FIRST_STAGE_SUCCESS = frozenset({"done", "empty_complete"})
SECOND_STAGE_SUCCESS = frozenset({"done"})

# The only mapping from failed terminal statuses to error kinds.
STATUS_ERROR_KINDS: Dict[str, ErrorKind] = {
    "error": ErrorKind.REMOTE,
    "style_error": ErrorKind.REMOTE,
    TIMEOUT_STATUS: ErrorKind.TIMEOUT,
}

PIPELINE_STAGES = frozenset({Stage.UPLOADING, Stage.FIRST_STAGE_POLLING})
STYLE_STAGES = frozenset({Stage.AWAITING_STYLE_SELECTION, Stage.SECOND_STAGE_POLLING})

# Leaving Failed depends on where the failure happened.
RETRY_ORIGINS: Dict[Stage, frozenset] = {
    Stage.UPLOADING: PIPELINE_STAGES,
    Stage.SECOND_STAGE_POLLING: STYLE_STAGES,
}

PROGRESS_STEP = 0.02
PROGRESS_CAP = 0.9


class RoomTransport(Protocol):
    async def upload(self, image: ImagePayload, params: StageParams) -> str: ...

    async def check_status(self, job_id: str) -> JobStatus: ...

    async def trigger_second_stage(self, job_id: str, style_id: str) -> None: ...


class ResultStore(Protocol):
    async def save_room(self, job_id: str, **fields: Any) -> Any: ...

    async def update_room(self, job_id: str, **fields: Any) -> Any: ...


class Notifier(Protocol):
    async def notify_processing_complete(self, job_id: str, style_label: str) -> None: ...


@dataclass(frozen=True)
class PollSettings:
    interval_ms: int = POLL_INTERVAL_MS
    max_attempts: int = POLL_MAX_ATTEMPTS
    style_interval_ms: int = STYLE_POLL_INTERVAL_MS
    style_max_attempts: int = STYLE_POLL_MAX_ATTEMPTS
    max_consecutive_failures: int = POLL_MAX_CONSECUTIVE_FAILURES


def is_retryable(stage: Stage, kind: ErrorKind) -> bool:
    if stage == Stage.SECOND_STAGE_POLLING:
        return True
    return kind != ErrorKind.VALIDATION


def is_terminal_job(job: Job) -> bool:
    if job.stage == Stage.COMPLETE:
        return True
    return (
        job.stage == Stage.FAILED
        and job.last_error is not None
        and not job.last_error.retryable
    )


class JobOrchestrator:
    """Drives one room job through upload, emptying, style selection and styling.

    Actions (`start`, `retry`, `select_style`, `retry_style_only`) return at
    once: True when accepted, False when ignored because of the current stage,
    a step already in flight, a terminal job or teardown. The accepted step
    runs as a single asyncio task, so at most one upload or poll loop is
    active per orchestrator. Expected failures end up in `Job.last_error`;
    they are never raised to the caller.
    """

    def __init__(
        self,
        client: RoomTransport,
        params: Optional[StageParams] = None,
        poll: Optional[PollSettings] = None,
        store: Optional[ResultStore] = None,
        notifier: Optional[Notifier] = None,
        on_change: Optional[Callable[[Job], None]] = None,
        guard: Optional[LifecycleGuard] = None,
    ) -> None:
        self.client = client
        self.params = params or StageParams()
        self.poll = poll or PollSettings()
        self.store = store
        self.notifier = notifier
        self.on_change = on_change
        self.guard = guard or LifecycleGuard()
        self._job = Job(params=self.params)
        self._image: Optional[ImagePayload] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def stage(self) -> Stage:
        return self._job.stage

    def snapshot(self) -> Job:
        return self._job.model_copy(deep=True)

    def is_busy(self) -> bool:
        return self._task is not None and not self._task.done()

    def is_terminal(self) -> bool:
        return is_terminal_job(self._job)

    # actions

    def start(self, image: Optional[ImagePayload]) -> bool:
        if self.guard.has_started() or not self._accepts_action():
            logger.info("start ignored: pipeline already started or torn down")
            return False
        if self._job.stage != Stage.IDLE:
            return False
        self.guard.mark_started()
        self._image = image
        self._begin_first_stage()
        return True

    def retry(self) -> bool:
        error = self._retryable_error()
        if error is None or error.stage not in PIPELINE_STAGES:
            logger.info("retry ignored: no pipeline-wide failure to retry")
            return False
        # A re-upload yields a new job id, so the run starts from a fresh Job.
        self._job = Job(
            params=self.params,
            stage=Stage.FAILED,
            selected_style=self._job.selected_style,
            last_error=error,
        )
        self.guard.mark_started()
        self._begin_first_stage()
        return True

    def select_style(self, style_id: str) -> bool:
        if not styles.is_known_style(style_id):
            raise ValueError(f"Unknown style: {style_id}")
        if not self._accepts_action() or self._job.stage != Stage.AWAITING_STYLE_SELECTION:
            logger.info(f"style selection ignored in stage {self._job.stage.value}")
            return False
        label = styles.style_label(style_id)
        self._update(
            selected_style=style_id,
            progress=0.2,
            status_text=f"Applying {label} style...",
        )
        self._spawn(self._run_second_stage(retrying=False))
        return True

    def retry_style_only(self) -> bool:
        error = self._retryable_error()
        job = self._job
        if error is None or error.stage not in STYLE_STAGES:
            logger.info("style retry ignored: no style failure to retry")
            return False
        if not job.selected_style or not job.job_id:
            logger.warning("style retry ignored: job id or selected style missing")
            return False
        self._transition(
            Stage.SECOND_STAGE_POLLING,
            progress=0.2,
            status_text=f"Retrying {styles.style_label(job.selected_style)} style...",
        )
        self._spawn(self._run_second_stage(retrying=True))
        return True

    def cancel(self) -> None:
        if self.guard.is_mounted():
            logger.info(f"cancelling pipeline for job {self._job.job_id}")
        self.guard.mark_unmounted()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait_idle(self) -> None:
        """Wait for the step in flight; re-raises unexpected errors from it."""
        task = self._task
        if task is None:
            return
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()

    # pipeline steps

    def _begin_first_stage(self) -> None:
        self._transition(Stage.UPLOADING, progress=0.1, status_text="Uploading image...")
        self._spawn(self._run_first_stage())

    async def _run_first_stage(self) -> None:
        try:
            if self._image is None:
                raise InvalidRequestError("No image provided")
            job_id = await self.client.upload(self._image, self.params)
        except TransportError as exc:
            self._fail(Stage.UPLOADING, exc.kind, str(exc))
            return

        if not self._transition(
            Stage.FIRST_STAGE_POLLING,
            job_id=job_id,
            original_name=self._image.filename,
            last_error=None,
            progress=0.3,
            status_text="Processing your image...",
        ):
            return
        logger.info(f"job {job_id} uploaded, polling first stage")

        try:
            result = await self._poll(
                job_id,
                FIRST_STAGE_TERMINAL,
                self.poll.interval_ms,
                self.poll.max_attempts,
            )
        except TransportError as exc:
            self._fail(Stage.FIRST_STAGE_POLLING, exc.kind, str(exc))
            return

        if result.status not in FIRST_STAGE_SUCCESS:
            self._fail_from_status(Stage.FIRST_STAGE_POLLING, result)
            return
        empty_url = result.first_stage_url
        if not empty_url:
            self._fail(
                Stage.FIRST_STAGE_POLLING,
                ErrorKind.REMOTE,
                "No empty room image was generated. Please try again.",
            )
            return
        # Publishing the stage is the last thing this step does.
        await self._record_first_stage(job_id, empty_url)
        self._transition(
            Stage.AWAITING_STYLE_SELECTION,
            first_stage_result_url=empty_url,
            progress=1.0,
            status_text="Room cleaned successfully!",
        )

    async def _run_second_stage(self, retrying: bool) -> None:
        job_id = self._job.job_id
        style_id = self._job.selected_style
        label = styles.style_label(style_id)
        try:
            await self.client.trigger_second_stage(job_id, style_id)
        except TransportError as exc:
            failed_stage = Stage.SECOND_STAGE_POLLING if retrying else Stage.AWAITING_STYLE_SELECTION
            self._fail(failed_stage, exc.kind, f"Style application failed: {exc}")
            return

        fields: Dict[str, Any] = {
            "last_error": None,
            "progress": 0.3,
            "status_text": f"Processing {label} elements...",
        }
        accepted = self._update(**fields) if retrying else self._transition(
            Stage.SECOND_STAGE_POLLING, **fields
        )
        if not accepted:
            return

        try:
            result = await self._poll(
                job_id,
                SECOND_STAGE_TERMINAL,
                self.poll.style_interval_ms,
                self.poll.style_max_attempts,
            )
        except TransportError as exc:
            self._fail(Stage.SECOND_STAGE_POLLING, exc.kind, str(exc))
            return

        if result.status not in SECOND_STAGE_SUCCESS:
            self._fail_from_status(Stage.SECOND_STAGE_POLLING, result)
            return
        if not result.styled_url:
            self._fail(
                Stage.SECOND_STAGE_POLLING,
                ErrorKind.REMOTE,
                "No styled image was generated. Please try again.",
            )
            return
        if self._transition(
            Stage.COMPLETE,
            second_stage_result_url=result.styled_url,
            progress=1.0,
            status_text="Room styling complete!",
        ):
            logger.info(f"job {job_id} complete ({label})")
            await self._record_completion(job_id, result.styled_url, label)

    async def _poll(
        self,
        job_id: str,
        terminal: Collection[str],
        interval_ms: int,
        max_attempts: int,
    ) -> JobStatus:
        return await poll_job_status(
            self.client,
            job_id,
            terminal,
            interval_ms=interval_ms,
            max_attempts=max_attempts,
            on_status=partial(self._on_status, terminal),
            guard=self.guard,
            max_consecutive_failures=self.poll.max_consecutive_failures,
        )

    def _on_status(self, terminal: Collection[str], status: str) -> None:
        if status in terminal:
            return
        progress = min(self._job.progress + PROGRESS_STEP, PROGRESS_CAP)
        progress = max(progress, self._job.progress)
        self._update(progress=round(progress, 4), status_text=self._progress_text(progress))

    def _progress_text(self, progress: float) -> str:
        if self._job.stage == Stage.SECOND_STAGE_POLLING:
            messages = styles.loading_messages(self._job.selected_style, self.params.mode)[1:]
            span = (progress - 0.3) / (PROGRESS_CAP - 0.3)
            index = min(max(int(span * len(messages)), 0), len(messages) - 1)
            return messages[index]
        if progress < 0.4:
            return "Analyzing room structure..."
        if progress < 0.6:
            return "Removing furniture..." if self.params.mode == "empty" else "Decluttering room..."
        if progress < 0.8:
            return "Processing walls and lighting..."
        return "Almost ready..."

    # collaborators

    async def _record_first_stage(self, job_id: str, empty_url: str) -> None:
        if self.store is None or not self.guard.is_mounted():
            return
        try:
            await self.store.save_room(
                job_id,
                original_name=self._job.original_name,
                room_type=self.params.room_type,
                empty_url=empty_url,
                status="processing",
            )
        except Exception as exc:
            logger.warning(f"failed to save room record for job {job_id}: {exc}")

    async def _record_completion(self, job_id: str, styled_url: str, label: str) -> None:
        if not self.guard.is_mounted():
            return
        if self.store is not None:
            try:
                await self.store.update_room(
                    job_id, styled_url=styled_url, style=label, status="completed"
                )
            except Exception as exc:
                logger.warning(f"failed to update room record for job {job_id}: {exc}")
        if self.notifier is not None:
            try:
                await self.notifier.notify_processing_complete(job_id, label)
            except Exception as exc:
                logger.warning(f"completion notification failed for job {job_id}: {exc}")

    # state plumbing

    def _accepts_action(self) -> bool:
        return self.guard.is_mounted() and not self.is_busy() and not self.is_terminal()

    def _retryable_error(self) -> Optional[ErrorRecord]:
        if not self._accepts_action() or self._job.stage != Stage.FAILED:
            return None
        return self._job.last_error

    def _spawn(self, step: Coroutine[Any, Any, None]) -> None:
        self._task = asyncio.get_running_loop().create_task(step)
        self._task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"pipeline step crashed for job {self._job.job_id}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    def _fail_from_status(self, stage: Stage, result: JobStatus) -> None:
        kind = STATUS_ERROR_KINDS.get(result.status, ErrorKind.REMOTE)
        message = result.message or f"Processing failed with status {result.status}"
        if stage == Stage.SECOND_STAGE_POLLING and kind == ErrorKind.REMOTE:
            message = f"Style application failed: {message}"
        self._fail(stage, kind, message)

    def _fail(self, stage: Stage, kind: ErrorKind, message: str) -> None:
        record = ErrorRecord(
            kind=kind, message=message, stage=stage, retryable=is_retryable(stage, kind)
        )
        fields: Dict[str, Any] = {"last_error": record, "status_text": message}
        if stage in PIPELINE_STAGES:
            fields["progress"] = 0.0
        if self._transition(Stage.FAILED, **fields):
            logger.warning(
                f"job {self._job.job_id} failed in {stage.value} ({kind.value}): {message}"
            )

    def _transition(self, stage: Stage, **fields: Any) -> bool:
        current = self._job.stage
        if stage not in TRANSITIONS[current]:
            raise RuntimeError(f"illegal stage transition {current.value} -> {stage.value}")
        if current == Stage.FAILED:
            failed_in = self._job.last_error.stage if self._job.last_error else None
            if failed_in not in RETRY_ORIGINS[stage]:
                raise RuntimeError(f"cannot leave a {failed_in} failure towards {stage.value}")
        return self._update(stage=stage, **fields)

    def _update(self, **fields: Any) -> bool:
        if not self.guard.is_mounted():
            return False
        job_id = fields.get("job_id")
        if job_id is not None and self._job.job_id not in (None, job_id):
            raise RuntimeError("job_id is immutable once assigned")
        for key, value in fields.items():
            setattr(self._job, key, value)
        if self.on_change is not None:
            self.on_change(self.snapshot())
        return True
