import asyncio
import logging
import time
import uuid
from dataclasses import asdict
from functools import partial
from typing import Any, Dict, Optional, Tuple

from roomflow.core import config
from roomflow.db import rooms_repo
from roomflow.schemas.pipeline import Job, StageParams
from roomflow.services.image_payload import ImagePayload
from roomflow.services.orchestrator import (
    JobOrchestrator,
    PollSettings,
    RoomTransport,
    is_terminal_job,
)
from roomflow.websocket.manager import manager

logger = logging.getLogger(__name__)

pipeline_lock = asyncio.Lock()
pipelines: Dict[str, JobOrchestrator] = {}
_evictions: Dict[str, asyncio.Task] = {}
started_at = time.time()

# Wired in on startup
_client: Optional[RoomTransport] = None
_poll_settings = PollSettings()


def set_client(client: Optional[RoomTransport], poll: Optional[PollSettings] = None) -> None:
    global _client, _poll_settings
    _client = client
    _poll_settings = poll or PollSettings()


def has_client() -> bool:
    return _client is not None


def get_client() -> RoomTransport:
    if _client is None:
        raise RuntimeError("room service client not initialized")
    return _client


async def create_pipeline(
    image: ImagePayload, params: StageParams
) -> Tuple[str, JobOrchestrator]:
    pipeline_id = f"pipeline_{uuid.uuid4().hex}"
    orchestrator = JobOrchestrator(
        get_client(),
        params=params,
        poll=_poll_settings,
        store=rooms_repo,
        notifier=manager,
        on_change=partial(_on_job_change, pipeline_id),
    )
    async with pipeline_lock:
        pipelines[pipeline_id] = orchestrator
    orchestrator.start(image)
    await manager.emit_log("info", f"pipeline created {pipeline_id} ({image.filename})")
    return pipeline_id, orchestrator


def _on_job_change(pipeline_id: str, job: Job) -> None:
    manager.publish_job(pipeline_id, job)
    if is_terminal_job(job) and pipeline_id not in _evictions:
        task = asyncio.get_running_loop().create_task(_evict_when_done(pipeline_id))
        _evictions[pipeline_id] = task
        task.add_done_callback(lambda _task: _evictions.pop(pipeline_id, None))


async def _evict_when_done(pipeline_id: str) -> None:
    """Drop a finished pipeline once its last step ended and retention ran out.

    The outcome itself lives on in the rooms table.
    """
    async with pipeline_lock:
        orchestrator = pipelines.get(pipeline_id)
    if orchestrator is None:
        return
    try:
        await orchestrator.wait_idle()
    except Exception as exc:
        logger.warning(f"pipeline {pipeline_id} ended with an error: {exc}")
    await asyncio.sleep(config.PIPELINE_RETENTION_SEC)
    async with pipeline_lock:
        if pipelines.get(pipeline_id) is not orchestrator:
            return
        del pipelines[pipeline_id]
    orchestrator.cancel()
    await manager.emit_log(
        "info", f"pipeline evicted {pipeline_id} ({orchestrator.stage.value})"
    )


async def get_pipeline(pipeline_id: str) -> Optional[JobOrchestrator]:
    async with pipeline_lock:
        return pipelines.get(pipeline_id)


async def list_pipelines() -> Dict[str, Job]:
    async with pipeline_lock:
        return {pid: orch.snapshot() for pid, orch in pipelines.items()}


async def discard_pipeline(pipeline_id: str) -> Optional[Job]:
    async with pipeline_lock:
        orchestrator = pipelines.pop(pipeline_id, None)
    if orchestrator is None:
        return None
    orchestrator.cancel()
    await manager.emit_log("info", f"pipeline discarded {pipeline_id}")
    return orchestrator.snapshot()


async def discard_all() -> None:
    async with pipeline_lock:
        orchestrators = list(pipelines.values())
        pipelines.clear()
        evictions = list(_evictions.values())
    for task in evictions:
        task.cancel()
    for orchestrator in orchestrators:
        orchestrator.cancel()


def status_snapshot() -> Dict[str, Any]:
    active = sum(1 for orch in pipelines.values() if orch.is_busy())
    return {
        "uptime_sec": int(time.time() - started_at),
        "pipelines": {
            "total": len(pipelines),
            "active": active,
            "idle": len(pipelines) - active,
        },
        "room_service": _client is not None,
        "poll": asdict(_poll_settings),
    }


def release_client() -> Optional[RoomTransport]:
    global _client
    client, _client = _client, None
    return client
