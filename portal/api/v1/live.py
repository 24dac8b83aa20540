"""
WebSocket plumbing shared by the live view endpoints

One connection mounts one view. State changes are pushed as
``{"type": "state", "view": ..., "data": ...}`` frames, command failures as
``{"type": "error", "error": ..., "message": ...}`` frames; the connection
stays open after a failed command.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel

from portal.dependencies.auth import get_ws_consultant
from portal.exceptions import PortalError, PreconditionError
from portal.schemas.records import ConsultantProfile
from portal.services.views import LiveView

logger = logging.getLogger(__name__)

FrameHandler = Callable[[Dict[str, Any]], Awaitable[None]]


async def authenticate_websocket(websocket: WebSocket) -> Optional[ConsultantProfile]:
    """Reject the handshake unless it carries a valid consultant token"""
    consultant = await get_ws_consultant(websocket)
    if consultant is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return None
    return consultant


def error_frame(error: PortalError) -> Dict[str, Any]:
    return {"type": "error", "error": error.error, "message": error.message}


async def serve_view(websocket: WebSocket, view: LiveView, handle_frame: FrameHandler) -> None:
    """Run ``view`` for the lifetime of ``websocket``"""
    outbox: asyncio.Queue = asyncio.Queue()
    view.add_listener(outbox.put_nowait)

    async def sender():
        while True:
            item = await outbox.get()
            if isinstance(item, BaseModel):
                item = {"type": "state", "view": view.name, "data": item.model_dump(mode="json")}
            try:
                await websocket.send_json(item)
            except (WebSocketDisconnect, RuntimeError):
                return

    await websocket.accept()
    sender_task = asyncio.create_task(sender())
    try:
        view.start()
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                outbox.put_nowait(error_frame(PreconditionError("Frames must be JSON objects.")))
                continue
            if not isinstance(frame, dict):
                outbox.put_nowait(error_frame(PreconditionError("Frames must be JSON objects.")))
                continue
            try:
                await handle_frame(frame)
            except PortalError as e:
                outbox.put_nowait(error_frame(e))
    except WebSocketDisconnect:
        logger.debug(f"{view.name} socket disconnected for {view.consultant_id}")
    finally:
        view.close()
        sender_task.cancel()


def unknown_action(frame: Dict[str, Any]) -> PreconditionError:
    return PreconditionError(f"Unknown action: {frame.get('action')!r}")
