from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from roomflow.core.errors import ErrorKind


class Stage(str, Enum):
    IDLE = "Idle"
    UPLOADING = "Uploading"
    FIRST_STAGE_POLLING = "FirstStagePolling"
    AWAITING_STYLE_SELECTION = "AwaitingStyleSelection"
    SECOND_STAGE_POLLING = "SecondStagePolling"
    COMPLETE = "Complete"
    FAILED = "Failed"


class ErrorRecord(BaseModel):
    kind: ErrorKind
    message: str
    stage: Stage
    retryable: bool


class StageParams(BaseModel):
    mode: Literal["empty", "clean"] = "empty"
    room_type: str = "living-room"
    design_style: Optional[str] = None
    quality: Optional[Literal["standard", "premium", "ultra"]] = None


class Job(BaseModel):
    job_id: Optional[str] = None
    stage: Stage = Stage.IDLE
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    status_text: str = "Initializing..."
    original_name: Optional[str] = None
    first_stage_result_url: Optional[str] = None
    second_stage_result_url: Optional[str] = None
    last_error: Optional[ErrorRecord] = None
    selected_style: Optional[str] = None
    params: StageParams = Field(default_factory=StageParams)


class JobStatus(BaseModel):
    """Payload of the remote status endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: str
    original_url: Optional[str] = Field(default=None, alias="originalUrl")
    empty_url: Optional[str] = Field(default=None, alias="emptyUrl")
    clean_url: Optional[str] = Field(default=None, alias="cleanUrl")
    styled_url: Optional[str] = Field(default=None, alias="styledUrl")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")
    message: Optional[str] = None

    @property
    def first_stage_url(self) -> Optional[str]:
        return self.empty_url or self.clean_url


class PipelineCreate(BaseModel):
    image_base64: str = Field(..., min_length=1)
    filename: str = "room.jpg"
    params: StageParams = Field(default_factory=StageParams)


class StyleSelect(BaseModel):
    style_id: str = Field(..., min_length=1)


class PipelineResponse(BaseModel):
    pipeline_id: str
    accepted: bool = True
    job: Job
