"""Dashboard endpoints"""
from fastapi import APIRouter, Depends, WebSocket
import logging

from portal.api.v1.live import authenticate_websocket, serve_view, unknown_action
from portal.dependencies.auth import get_current_consultant, get_store, get_ws_store
from portal.schemas.records import ConsultantProfile
from portal.schemas.views import DashboardState
from portal.services.views import DashboardView
from portal.store.base import DocumentStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=DashboardState)
async def get_dashboard(
    current_consultant: ConsultantProfile = Depends(get_current_consultant),
    store: DocumentStore = Depends(get_store)
):
    """
    Current dashboard counters (one-shot reads)
    """
    return await DashboardView(store, current_consultant.id).refresh()


@router.websocket("/live")
async def dashboard_live(websocket: WebSocket):
    """
    Live dashboard counters

    Client frames: {"action": "refresh"}
    """
    consultant = await authenticate_websocket(websocket)
    if consultant is None:
        return

    view = DashboardView(get_ws_store(websocket), consultant.id)

    async def handle(frame):
        if frame.get("action") == "refresh":
            await view.refresh()
        else:
            raise unknown_action(frame)

    await serve_view(websocket, view, handle)
