import base64
import binascii
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from roomflow.api.deps import verify_token
from roomflow.schemas.pipeline import PipelineCreate, PipelineResponse, StyleSelect
from roomflow.services import pipelines
from roomflow.services.image_payload import ImagePayload
from roomflow.services.orchestrator import JobOrchestrator
from roomflow.services.styles import is_known_style

router = APIRouter()


async def _require_pipeline(pipeline_id: str) -> JobOrchestrator:
    orchestrator = await pipelines.get_pipeline(pipeline_id)
    if orchestrator is None:
        raise HTTPException(status_code=404, detail="pipeline not found")
    return orchestrator


def _response(pipeline_id: str, orchestrator: JobOrchestrator, accepted: bool) -> PipelineResponse:
    return PipelineResponse(
        pipeline_id=pipeline_id, accepted=accepted, job=orchestrator.snapshot()
    )


@router.post("/pipelines", response_model=PipelineResponse)
async def create_pipeline_api(
    request: PipelineCreate, _: None = Depends(verify_token)
) -> PipelineResponse:
    try:
        data = base64.b64decode(request.image_base64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="image_base64 is not valid base64")
    image = ImagePayload(data=data, filename=request.filename)
    pipeline_id, orchestrator = await pipelines.create_pipeline(image, request.params)
    return _response(pipeline_id, orchestrator, True)


@router.get("/pipelines")
async def list_pipelines_api(_: None = Depends(verify_token)) -> Dict[str, Any]:
    snapshots = await pipelines.list_pipelines()
    return {
        "pipelines": [
            {"pipeline_id": pid, "job": job.model_dump(mode="json")}
            for pid, job in snapshots.items()
        ]
    }


@router.get("/pipelines/{pipeline_id}", response_model=PipelineResponse)
async def get_pipeline_api(
    pipeline_id: str, _: None = Depends(verify_token)
) -> PipelineResponse:
    orchestrator = await _require_pipeline(pipeline_id)
    return _response(pipeline_id, orchestrator, True)


@router.post("/pipelines/{pipeline_id}/style", response_model=PipelineResponse)
async def select_style_api(
    pipeline_id: str, request: StyleSelect, _: None = Depends(verify_token)
) -> PipelineResponse:
    if not is_known_style(request.style_id):
        raise HTTPException(status_code=422, detail=f"unknown style {request.style_id}")
    orchestrator = await _require_pipeline(pipeline_id)
    accepted = orchestrator.select_style(request.style_id)
    return _response(pipeline_id, orchestrator, accepted)


@router.post("/pipelines/{pipeline_id}/retry", response_model=PipelineResponse)
async def retry_api(pipeline_id: str, _: None = Depends(verify_token)) -> PipelineResponse:
    orchestrator = await _require_pipeline(pipeline_id)
    return _response(pipeline_id, orchestrator, orchestrator.retry())


@router.post("/pipelines/{pipeline_id}/retry-style", response_model=PipelineResponse)
async def retry_style_api(
    pipeline_id: str, _: None = Depends(verify_token)
) -> PipelineResponse:
    orchestrator = await _require_pipeline(pipeline_id)
    return _response(pipeline_id, orchestrator, orchestrator.retry_style_only())


@router.post("/pipelines/{pipeline_id}/cancel", response_model=PipelineResponse)
async def cancel_api(pipeline_id: str, _: None = Depends(verify_token)) -> PipelineResponse:
    job = await pipelines.discard_pipeline(pipeline_id)
    if job is None:
        raise HTTPException(status_code=404, detail="pipeline not found")
    return PipelineResponse(pipeline_id=pipeline_id, accepted=True, job=job)
