import logging

from fastapi import APIRouter, Depends, Query, WebSocket
from starlette.concurrency import run_in_threadpool

from parley.chat.service import MessageStreamService, get_message_service
from parley.core.dependencies import authenticate_websocket
from parley.core.errors import ValidationError
from parley.core.websockets import FramePump, serve
from parley.utils.display import DEFAULT_CALLER_NAME, avatar_for, display_name

from .signaling import CALL_CHANNEL, CALL_EVENT, CallSession


logger = logging.getLogger(__name__)
router = APIRouter()


@router.websocket("/ws")
async def call_socket(
    websocket: WebSocket,
    token: str = Query(...),
    service: MessageStreamService = Depends(get_message_service),
):
    """
    Call signaling stub.

    Client frames: `{"action": "initiate", "call_type": "audio" | "video",
    "recipient_id": ...}`, then `accept`, `decline`, `end`, `mute`,
    `video`. Server frames: `state` after every change and `notice` for the
    toasts. Nothing but the initial call intent reaches the other side.
    """
    user_id = await authenticate_websocket(websocket, token)
    if user_id is None:
        return

    await websocket.accept()
    pump = FramePump()

    profile = await run_in_threadpool(service.sender_profile, user_id)
    session = CallSession(
        user_id,
        caller_name=display_name(profile, DEFAULT_CALLER_NAME),
        caller_avatar=avatar_for(user_id, profile.avatar_url if profile else None),
        channel=service.hub.channel(CALL_CHANNEL),
    )

    def push_state():
        pump.push({"type": "state", "call": session.snapshot()})

    def on_call(payload: dict):
        if session.receive(payload):
            push_state()
            pump.push(
                {
                    "type": "notice",
                    "detail": f"Incoming {session.call_type} call from {session.peer_name}",
                }
            )

    subscription = session.channel.on_broadcast(CALL_EVENT, on_call)

    async def handle_frame(frame: dict):
        action = frame.get("action")
        try:
            if action == "initiate":
                notice = session.initiate(
                    str(frame.get("call_type")),
                    recipient_id=frame.get("recipient_id"),
                    recipient_name=frame.get("recipient_name"),
                )
            elif action == "accept":
                notice = session.accept()
            elif action == "decline":
                notice = session.decline()
            elif action == "end":
                notice = session.end()
            elif action == "mute":
                notice = "Muted" if session.toggle_mute() else "Unmuted"
            elif action == "video":
                notice = "Video off" if session.toggle_video() else "Video on"
            elif action == "status":
                notice = None
            else:
                pump.push({"type": "error", "detail": "Unknown action."})
                return
        except ValidationError as e:
            pump.push({"type": "error", "detail": e.message})
            return

        push_state()
        if notice:
            pump.push({"type": "notice", "detail": notice})

    push_state()
    try:
        await serve(websocket, pump, handle_frame)
    finally:
        subscription.unsubscribe()
