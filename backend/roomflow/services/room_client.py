import logging
from typing import Any, Dict, Optional
from urllib.parse import quote, unquote

import httpx

from roomflow.core.config import (
    HTTP_CONNECT_TIMEOUT_SEC,
    HTTP_TIMEOUT_SEC,
    ROOM_API_KEY,
    ROOM_API_URL,
    STORAGE_PUBLIC_URL,
    STYLE_WEBHOOK_URL,
)
from roomflow.core.errors import InvalidRequestError, NetworkError, RemoteError
from roomflow.schemas.pipeline import JobStatus, StageParams
from roomflow.services.image_payload import ImagePayload
from roomflow.utils.time import utc_now_millis

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(HTTP_TIMEOUT_SEC, connect=HTTP_CONNECT_TIMEOUT_SEC)
FIRST_STAGE_READY = {"done", "empty_complete"}
URL_SAFE_CHARS = ":/?&=%#+@"


def build_auth_headers(api_key: str) -> Dict[str, str]:
    headers = {"Accept": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
        headers["apikey"] = api_key
    return headers


def normalize_artifact_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    fixed = url.strip().replace(" ", "%20")
    if "%25" in fixed:
        # double-encoded by the worker; decoding also brings back raw spaces
        fixed = quote(unquote(fixed), safe=URL_SAFE_CHARS)
    if not fixed.startswith(("http://", "https://")):
        fixed = f"https://{fixed}"
    return fixed


def _parse_json(response: httpx.Response, context: str) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as exc:
        raise RemoteError(
            f"{context}: invalid JSON in response: {response.text[:100]}",
            status_code=response.status_code,
        ) from exc


class RoomServiceClient:
    """Stateless adapter for the remote room processing service.

    Maps every failure onto the transport taxonomy: connectivity problems
    become NetworkError, 4xx responses InvalidRequestError and 5xx responses
    RemoteError. Nothing here retries; that is the caller's decision.
    """

    def __init__(
        self,
        upload_url: str = ROOM_API_URL,
        style_url: str = STYLE_WEBHOOK_URL,
        api_key: str = ROOM_API_KEY,
        storage_url: str = STORAGE_PUBLIC_URL,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.upload_url = upload_url.rstrip("/")
        self.style_url = style_url
        self.storage_url = storage_url.rstrip("/")
        self.headers = build_auth_headers(api_key)
        self._client = client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
        self._owns_client = client is None

    async def __aenter__(self) -> "RoomServiceClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self, method: str, url: str, context: str, **kwargs: Any
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method, url, headers=self.headers, **kwargs
            )
        except httpx.RequestError as exc:
            raise NetworkError(f"{context} failed: {exc}") from exc
        if response.status_code >= 400:
            detail = response.text.strip() or response.reason_phrase
            error_cls = RemoteError if response.status_code >= 500 else InvalidRequestError
            raise error_cls(
                f"{context} failed: {response.status_code} - {detail}",
                status_code=response.status_code,
            )
        return response

    async def upload(self, image: ImagePayload, params: StageParams) -> str:
        mime_type, width, height = image.describe()
        form: Dict[str, str] = {
            "mode": params.mode,
            "roomType": params.room_type,
            "imageWidth": str(width),
            "imageHeight": str(height),
        }
        if params.design_style:
            form["designStyle"] = params.design_style
        if params.quality:
            form["quality"] = params.quality
        logger.info(
            f"uploading {image.filename} ({width}x{height}, {mime_type}) mode={params.mode}"
        )
        response = await self._request(
            "POST",
            self.upload_url,
            "upload",
            data=form,
            files={"file": (image.filename, image.data, mime_type)},
        )
        body = _parse_json(response, "upload")
        job_id = body.get("jobId") if isinstance(body, dict) else None
        if not job_id:
            raise RemoteError("Upload failed - no job ID returned")
        return str(job_id)

    async def check_status(self, job_id: str) -> JobStatus:
        response = await self._request(
            "GET", f"{self.upload_url}/{quote(job_id, safe='')}", "status check"
        )
        body = _parse_json(response, "status check")
        if not isinstance(body, dict) or not body.get("status"):
            raise RemoteError("Invalid response format: missing status field")
        return self._with_artifacts(job_id, JobStatus.model_validate(body))

    async def trigger_second_stage(self, job_id: str, style_id: str) -> None:
        if not style_id:
            raise InvalidRequestError("Style ID is required")
        payload = {"jobId": job_id, "styleId": style_id, "timestamp": utc_now_millis()}
        logger.info(f"triggering style {style_id} for job {job_id}")
        await self._request("POST", self.style_url, "style application", json=payload)

    def _with_artifacts(self, job_id: str, status: JobStatus) -> JobStatus:
        update: Dict[str, Optional[str]] = {
            "original_url": normalize_artifact_url(status.original_url),
            "empty_url": normalize_artifact_url(status.empty_url),
            "clean_url": normalize_artifact_url(status.clean_url),
            "styled_url": normalize_artifact_url(status.styled_url),
        }
        missing_first_stage = not update["empty_url"] and not update["clean_url"]
        if status.status in FIRST_STAGE_READY and missing_first_stage and self.storage_url:
            update["empty_url"] = f"{self.storage_url}/empty/{job_id}.jpg"
            update["clean_url"] = f"{self.storage_url}/clean/{job_id}.jpg"
            logger.info(f"derived artifact urls for job {job_id} from storage base")
        return status.model_copy(update=update)
