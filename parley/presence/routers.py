import logging

from fastapi import APIRouter, Depends, Query, WebSocket
from starlette.concurrency import run_in_threadpool
from supabase import Client

from parley.core.dependencies import authenticate_websocket, current_user_id
from parley.core.realtime import RealtimeHub, get_hub
from parley.core.supabase_client import get_supabase
from parley.core.websockets import FramePump, serve

from .tracker import PresenceTracker, online_user_ids
from .schemas import OnlineUsersResponseModel


logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/online", response_model=OnlineUsersResponseModel, status_code=200)
def list_online_users(
    user_id: str = Depends(current_user_id),
    hub: RealtimeHub = Depends(get_hub),
):
    """Ids of users with at least one open presence socket."""
    return {"online": sorted(online_user_ids(hub))}


@router.websocket("/ws")
async def presence_socket(
    websocket: WebSocket,
    token: str = Query(...),
    supabase: Client = Depends(get_supabase),
    hub: RealtimeHub = Depends(get_hub),
):
    """
    Keeps you online for as long as the socket is open and pushes
    `{"type": "presence", "online": [...]}` whenever someone comes or goes.
    """
    user_id = await authenticate_websocket(websocket, token)
    if user_id is None:
        return

    await websocket.accept()
    pump = FramePump()
    tracker = PresenceTracker(supabase, hub, user_id)

    tracker.on_change(
        lambda users: pump.push({"type": "presence", "online": sorted(users)})
    )

    async def handle_frame(frame: dict):
        if frame.get("type") == "ping":
            pump.push({"type": "presence", "online": sorted(tracker.online_users)})
        else:
            pump.push({"type": "error", "detail": "Unknown frame type."})

    await run_in_threadpool(tracker.start)
    try:
        await serve(websocket, pump, handle_frame)
    finally:
        await run_in_threadpool(tracker.stop)
