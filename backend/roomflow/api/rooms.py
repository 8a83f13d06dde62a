from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from roomflow.api.deps import verify_token
from roomflow.db import rooms_repo
from roomflow.schemas.rooms import RoomRecord

router = APIRouter()


@router.get("/rooms")
async def list_rooms(_: None = Depends(verify_token)) -> Dict[str, Any]:
    return {"rooms": await rooms_repo.list_rooms()}


@router.get("/rooms/{job_id}", response_model=RoomRecord)
async def get_room(job_id: str, _: None = Depends(verify_token)) -> RoomRecord:
    room = await rooms_repo.load_room(job_id)
    if not room:
        raise HTTPException(status_code=404, detail="room not found")
    return RoomRecord(**room)


@router.delete("/rooms/{job_id}")
async def delete_room(job_id: str, _: None = Depends(verify_token)) -> Dict[str, Any]:
    if not await rooms_repo.delete_room(job_id):
        raise HTTPException(status_code=404, detail="room not found")
    return {"job_id": job_id, "deleted": True}
