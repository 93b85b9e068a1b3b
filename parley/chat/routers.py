import logging
import threading

from fastapi import APIRouter, Depends, Query, Response, WebSocket, status
from starlette.concurrency import run_in_threadpool

from parley.core.dependencies import authenticate_websocket, current_user_id
from parley.core.errors import ParleyError, TransientError
from parley.core.websockets import FramePump, serve
from parley.models.domain import Message

from .service import MessageStreamService, get_message_service
from .view import Composer, HistoryLoaded, InsertReceived, RoomStore, is_echo
from .schemas import (
    SendMessageModel,
    SendMessageResponseModel,
    GetMessagesResponseModel,
    MarkReadResponseModel,
)


logger = logging.getLogger(__name__)
router = APIRouter()


@router.get(
    "/rooms/{room_id}/messages",
    response_model=GetMessagesResponseModel,
    status_code=200,
)
def get_messages(
    room_id: str,
    user_id: str = Depends(current_user_id),
    service: MessageStreamService = Depends(get_message_service),
):
    """
    Retrieve all messages for a room.

    Returns the full history ordered from oldest to newest. Sender details
    are looked up once for all senders and merged into every message.

    **Returns**
    - `messages`: List of message objects
        - `id`, `sender_id`, `content`, `created_at`, `is_read`
        - `sender_name`: full name, username or "Unknown User"
        - `sender_avatar`: profile avatar or a generated one

    **Errors**
    - 401: Invalid or expired authentication token
    - 503: Failed to load messages
    """
    return {"room_id": room_id, "messages": service.load_history(room_id)}


@router.post(
    "/rooms/{room_id}/messages",
    response_model=SendMessageResponseModel,
    status_code=201,
    responses={204: {"description": "Blank message, nothing sent"}},
)
def send_message(
    room_id: str,
    data: SendMessageModel,
    user_id: str = Depends(current_user_id),
    service: MessageStreamService = Depends(get_message_service),
):
    """
    Send a message to a room.

    Blank or whitespace-only content is a no-op answered with 204. The new
    message is relayed to every subscriber of the room.

    **Errors**
    - 401: Unauthorized
    - 503: Failed to send message
    """
    message = service.post_message(user_id, room_id, data.content, client_id=data.client_id)

    if message is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return {"message": message.with_sender(service.sender_profile(user_id))}


@router.post(
    "/rooms/{room_id}/read", response_model=MarkReadResponseModel, status_code=200
)
def mark_room_read(
    room_id: str,
    user_id: str = Depends(current_user_id),
    service: MessageStreamService = Depends(get_message_service),
):
    """Mark every message in the room that you did not send as read."""
    return {"updated": service.mark_read(user_id, room_id)}


@router.websocket("/ws/{room_id}")
async def room_socket(
    websocket: WebSocket,
    room_id: str,
    token: str = Query(...),
    service: MessageStreamService = Depends(get_message_service),
):
    """
    Live room.

    Server frames: `history` on connect, then `message` for every message
    someone else posts, `ack` / `error` answering your own `send` frames.
    Client frames: `{"type": "send", "content": ..., "client_id": ...}` and
    `{"type": "read"}`.
    """
    user_id = await authenticate_websocket(websocket, token)
    if user_id is None:
        return

    await websocket.accept()
    pump = FramePump()
    store = RoomStore()

    sender = await run_in_threadpool(service.sender_profile, user_id)
    composer = Composer(service, store, user_id, room_id, sender=sender)

    # live inserts stay in the store until the history frame has gone out
    gate = threading.Lock()
    history_sent = threading.Event()

    def on_insert(message: Message):
        with gate:
            if store.dispatch(InsertReceived(message)) and history_sent.is_set():
                pump.push({"type": "message", "message": message.model_dump(mode="json")})

    # subscribed before the history read so nothing posted meanwhile is lost
    subscription = service.subscribe(
        room_id, on_insert, is_echo=lambda row: is_echo(store.snapshot(), row)
    )

    async def handle_frame(frame: dict):
        kind = frame.get("type")

        if kind == "send":
            composer.draft = str(frame.get("content") or "")
            client_id = frame.get("client_id")
            try:
                message = await run_in_threadpool(composer.submit, client_id)
            except TransientError as e:
                pump.push({"type": "error", "client_id": client_id, "detail": e.message})
                return

            if message is not None:
                pump.push(
                    {
                        "type": "ack",
                        "client_id": message.client_id,
                        "message": message.model_dump(mode="json"),
                    }
                )

        elif kind == "read":
            try:
                await run_in_threadpool(service.mark_read, user_id, room_id)
            except TransientError as e:
                pump.push({"type": "notice", "detail": e.message})

        else:
            pump.push({"type": "error", "detail": "Unknown frame type."})

    try:
        try:
            history = await run_in_threadpool(service.load_history, room_id)
        except ParleyError as e:
            history = []
            pump.push({"type": "notice", "detail": e.message})

        with gate:
            store.dispatch(HistoryLoaded(tuple(history)))
            pump.push(
                {
                    "type": "history",
                    "room_id": room_id,
                    "messages": [m.model_dump(mode="json") for m in store.snapshot().messages],
                }
            )
            history_sent.set()

        await serve(websocket, pump, handle_frame)
    finally:
        subscription.unsubscribe()
