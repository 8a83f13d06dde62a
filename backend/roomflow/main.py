from fastapi import FastAPI

from roomflow.api import events, health, pipelines, rooms, status, styles
from roomflow.core.config import BACKEND_PORT, ensure_dirs
from roomflow.core.logging import attach_file_handler, detach_file_handlers
from roomflow.db.connection import close_db, connect_db
from roomflow.services import pipelines as pipeline_registry
from roomflow.services.room_client import RoomServiceClient
from roomflow.websocket.manager import manager

app = FastAPI(title="Roomflow Backend", version="0.1.0")

app.include_router(health.router)
app.include_router(status.router)
app.include_router(styles.router)
app.include_router(pipelines.router)
app.include_router(rooms.router)
app.include_router(events.router)


@app.on_event("startup")
async def on_startup() -> None:
    ensure_dirs()
    attach_file_handler()
    await connect_db()
    pipeline_registry.set_client(RoomServiceClient())
    await manager.emit_log("info", "backend started")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await pipeline_registry.discard_all()
    client = pipeline_registry.release_client()
    aclose = getattr(client, "aclose", None)
    if aclose is not None:
        await aclose()
    await close_db()
    detach_file_handlers()


def run() -> None:
    import uvicorn

    uvicorn.run(
        "roomflow.main:app",
        host="127.0.0.1",
        port=BACKEND_PORT,
        log_level="info",
    )


if __name__ == "__main__":
    run()
