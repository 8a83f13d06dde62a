import asyncio
from typing import Any, Dict, Optional

from fastapi import WebSocket

from roomflow.core.logging import logger
from roomflow.schemas.pipeline import Job
from roomflow.utils.time import utc_now


class WebSocketManager:
    def __init__(self) -> None:
        self.connections: set[WebSocket] = set()
        self._pending: set[asyncio.Task] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.connections.add(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        self.connections.discard(websocket)

    async def broadcast(self, payload: Dict[str, Any]) -> None:
        dead: list[WebSocket] = []
        for conn in list(self.connections):
            try:
                await conn.send_json(payload)
            except RuntimeError:
                dead.append(conn)
        for conn in dead:
            self.connections.discard(conn)

    def publish(self, payload: Dict[str, Any]) -> None:
        """Broadcast from synchronous code running inside the event loop."""
        task = asyncio.get_running_loop().create_task(self.broadcast(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def publish_job(self, pipeline_id: str, job: Job) -> None:
        self.publish(
            {
                "type": "pipeline.state",
                "pipeline_id": pipeline_id,
                "job": job.model_dump(mode="json"),
            }
        )

    async def notify_processing_complete(self, job_id: str, style_label: str) -> None:
        logger.info(f"room ready {job_id} ({style_label})")
        await self.broadcast(
            {
                "type": "pipeline.complete",
                "job_id": job_id,
                "title": "Room Transformation Complete!",
                "body": f"Your {style_label} room design is ready to view.",
                "timestamp": utc_now(),
            }
        )

    async def emit_log(
        self, level: str, message: str, meta: Optional[Dict[str, Any]] = None
    ) -> None:
        log_message = message.strip()
        if not log_message:
            return
        if level == "error":
            logger.error(log_message)
        elif level == "warn":
            logger.warning(log_message)
        else:
            logger.info(log_message)
        await self.broadcast(
            {
                "type": "log",
                "level": level,
                "message": log_message,
                "timestamp": utc_now(),
                "meta": meta,
            }
        )


manager = WebSocketManager()
