from typing import Any, Dict

from fastapi import APIRouter, Depends

from roomflow.api.deps import verify_token
from roomflow.services.styles import catalogue

router = APIRouter()


@router.get("/styles")
async def list_styles(_: None = Depends(verify_token)) -> Dict[str, Any]:
    return {"styles": catalogue()}
