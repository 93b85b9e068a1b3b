import logging

from fastapi import APIRouter, Depends, Query, Request, WebSocket
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from parley.core.dependencies import authenticate_websocket, current_user_id
from parley.core.websockets import FramePump, serve

from .schemas import AssistantChatModel, AssistantChatResponseModel
from .service import (
    AssistantBridge,
    AssistantConversation,
    AssistantError,
    Turn,
    get_assistant_bridge,
)


logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "/chat",
    response_model=AssistantChatResponseModel,
    status_code=200,
    responses={400: {"description": "Invalid body"}, 500: {"description": "AI error"}},
)
async def assistant_chat(
    request: Request,
    user_id: str = Depends(current_user_id),
    bridge: AssistantBridge = Depends(get_assistant_bridge),
):
    """
    Ask the assistant.

    **Input**
    - `prompt`: The new user message.
    - `history`: Earlier turns as `{role: "user" | "assistant", content}`.

    **Returns**
    - `response`: The assistant's reply text.

    **Errors**
    - 400: `{"error": "Invalid JSON format"}`
    - 500: `{"error": <reason>}` when the AI service fails
    """
    try:
        data = AssistantChatModel.model_validate(await request.json())
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Invalid JSON format"})

    try:
        text = await run_in_threadpool(bridge.ask, data.prompt, data.history)
    except AssistantError as e:
        return JSONResponse(status_code=500, content={"error": e.message})

    return {"response": text}


def _turn_frame(turn: Turn) -> dict:
    return {
        "type": "turn",
        "role": turn.role,
        "content": turn.content,
        "timestamp": turn.timestamp.isoformat(),
    }


@router.websocket("/ws")
async def assistant_socket(
    websocket: WebSocket,
    token: str = Query(...),
    bridge: AssistantBridge = Depends(get_assistant_bridge),
):
    """
    Conversation kept for the life of the socket. Send
    `{"type": "prompt", "content": ...}`; receive `turn` frames (the welcome
    message first) and a `notice` frame when the assistant fails.
    """
    user_id = await authenticate_websocket(websocket, token)
    if user_id is None:
        return

    await websocket.accept()
    pump = FramePump()
    conversation = AssistantConversation(bridge)
    pump.push(_turn_frame(conversation.turns[0]))

    async def handle_frame(frame: dict):
        if frame.get("type") != "prompt":
            pump.push({"type": "error", "detail": "Unknown frame type."})
            return

        prompt = str(frame.get("content") or "")
        if not prompt.strip():
            return

        reply = await run_in_threadpool(conversation.send, prompt)
        # the user turn and the answer to it
        for turn in conversation.turns[-2:]:
            pump.push(_turn_frame(turn))
        if reply.notice:
            pump.push({"type": "notice", "detail": reply.notice})

    await serve(websocket, pump, handle_frame)
