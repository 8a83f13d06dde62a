from typing import Literal, Optional

from pydantic import BaseModel

RoomStatus = Literal["processing", "completed", "failed"]


class RoomRecord(BaseModel):
    job_id: str
    original_name: Optional[str] = None
    room_type: Optional[str] = None
    style: Optional[str] = None
    empty_url: Optional[str] = None
    styled_url: Optional[str] = None
    status: RoomStatus
    created_at: str
    updated_at: str
