from typing import Optional

from fastapi import HTTPException, Request, WebSocket

from roomflow.core import config

TOKEN_HEADER = "X-Backend-Token"


def _token_matches(presented: Optional[str]) -> bool:
    return not config.BACKEND_TOKEN or presented == config.BACKEND_TOKEN


async def verify_token(request: Request) -> None:
    if not _token_matches(request.headers.get(TOKEN_HEADER)):
        raise HTTPException(status_code=401, detail="unauthorized")


async def verify_ws_token(websocket: WebSocket) -> bool:
    # mobile websocket clients cannot always set headers on the upgrade
    presented = websocket.headers.get(TOKEN_HEADER) or websocket.query_params.get("token")
    if not _token_matches(presented):
        await websocket.close(code=1008)
        return False
    return True
