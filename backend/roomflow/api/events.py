from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from roomflow.api.deps import verify_ws_token
from roomflow.services import pipelines
from roomflow.utils.time import utc_now
from roomflow.websocket.manager import manager

router = APIRouter()


@router.websocket("/events")
async def events(websocket: WebSocket) -> None:
    """Push pipeline snapshots; new subscribers also get the current state.

    The socket is registered before the snapshot is taken, so a state change
    lands either in the greeting or as a later `pipeline.state` message.
    """
    if not await verify_ws_token(websocket):
        return
    await manager.connect(websocket)
    snapshots = await pipelines.list_pipelines()
    await websocket.send_json(
        {
            "type": "connected",
            "timestamp": utc_now(),
            "pipelines": [
                {"pipeline_id": pid, "job": job.model_dump(mode="json")}
                for pid, job in snapshots.items()
            ],
        }
    )
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)
