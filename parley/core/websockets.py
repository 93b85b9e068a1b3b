import json
import asyncio
import logging
import contextlib
from typing import Awaitable, Callable

from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

FrameHandler = Callable[[dict], Awaitable[None]]


class FramePump:
    """
    Outgoing frame queue for one socket.

    Realtime callbacks fire on whichever thread published the event, so they
    hand frames to the socket's event loop instead of sending directly.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop = None):
        self.loop = loop or asyncio.get_running_loop()
        self.queue: asyncio.Queue = asyncio.Queue()

    def push(self, frame: dict):
        self.loop.call_soon_threadsafe(self.queue.put_nowait, frame)


async def serve(websocket: WebSocket, pump: FramePump, handle_frame: FrameHandler):
    """
    Run one accepted socket until the client disconnects: a writer task
    drains `pump`, the caller's handler gets every incoming JSON object.
    """

    async def writer():
        while True:
            frame = await pump.queue.get()
            await websocket.send_json(frame)

    writer_task = asyncio.create_task(writer())

    try:
        while True:
            text = await websocket.receive_text()
            try:
                frame = json.loads(text)
            except json.JSONDecodeError:
                pump.push({"type": "error", "detail": "Frames must be JSON objects."})
                continue

            if not isinstance(frame, dict):
                pump.push({"type": "error", "detail": "Frames must be JSON objects."})
                continue

            await handle_frame(frame)

    except WebSocketDisconnect:
        logger.info(f"websocket_closed path={websocket.url.path}")

    finally:
        writer_task.cancel()
        with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect):
            await writer_task
