import jwt
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError

from edulink_chat.utils.dependencies import user_from_token
from edulink_chat.utils.websocket_manager import manager


router = APIRouter(prefix="/realtime", tags=["realtime"])


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
    # browsers cannot set headers on a WebSocket, so the JWT travels as ?token=
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4401)
        return
    try:
        user = user_from_token(token)
    except (jwt.PyJWTError, PydanticValidationError):
        await websocket.close(code=4401)
        return

    await manager.connect(user.id, websocket)
    try:
        while True:
            # inbound frames are keepalives only; sends go through HTTP
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(user.id, websocket)
