from typing import Any, Dict

from fastapi import APIRouter, Depends

from roomflow.api.deps import verify_token
from roomflow.services import pipelines
from roomflow.utils.time import utc_now

router = APIRouter()


@router.get("/health")
async def health(_: None = Depends(verify_token)) -> Dict[str, Any]:
    return {
        "status": "ok" if pipelines.has_client() else "degraded",
        "room_service": pipelines.has_client(),
        "time": utc_now(),
    }
