from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from switchboard.logging_config import get_logger
from switchboard.services.broadcast_service import Topic

logger = get_logger("realtime")

router = APIRouter()


@router.websocket("/ws")
async def observer_socket(websocket: WebSocket):
    runtime = getattr(websocket.app.state, "runtime", None)
    if runtime is None:
        await websocket.close(code=1013)
        return

    hub = runtime.broadcaster
    await hub.attach(websocket)
    try:
        await hub.send_to(websocket, Topic.TRANSPORT_STATUS, runtime.supervisor.get_status().model_dump(mode="json"))
        while True:
            text = await websocket.receive_text()
            if text.strip().lower() == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        hub.detach(websocket)
