# devbox/api/events.py
"""
Status event streams: Server-Sent Events and WebSocket.
"""
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from devbox.core.logging import log
from devbox.lib.channels import QueueChannel, WebSocketChannel
from devbox.sandbox import get_orchestrator

router = APIRouter(tags=["Events"])


@router.get("/api/events")
async def project_events(project_id: str = Query(..., alias="projectId", min_length=1)):
    """Subscribe to one project's status events as an SSE stream."""
    orchestrator = get_orchestrator()
    channel = QueueChannel()
    await orchestrator.subscribe(project_id, channel)

    async def stream():
        try:
            async for frame in channel.events():
                yield frame
        finally:
            channel.close()
            await orchestrator.unsubscribe(project_id, channel)

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )


@router.websocket("/ws/{project_id}")
async def websocket_endpoint(websocket: WebSocket, project_id: str):
    orchestrator = get_orchestrator()
    await websocket.accept()
    channel = WebSocketChannel(websocket)
    await orchestrator.subscribe(project_id, channel)
    try:
        while True:
            # Clients only listen; incoming frames are ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    except Exception as e:
        log("API", f"WebSocket error: {e}", project_id=project_id)
    finally:
        await orchestrator.unsubscribe(project_id, channel)
