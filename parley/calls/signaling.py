import time
import logging
import threading
from enum import Enum
from typing import Callable, Optional

from parley.core.errors import ValidationError
from parley.core.realtime import Channel
from parley.utils.display import generated_avatar
from parley.utils.env_helper import default_room

logger = logging.getLogger(__name__)

CALL_CHANNEL = "calls"
CALL_EVENT = "call"
CALL_TYPES = ("audio", "video")


class CallState(str, Enum):
    IDLE = "idle"
    RINGING = "ringing"
    CONNECTED = "connected"


class Direction(str, Enum):
    OUTGOING = "outgoing"
    INCOMING = "incoming"


def format_duration(seconds: int) -> str:
    mins, secs = divmod(max(0, int(seconds)), 60)
    return f"{mins:02d}:{secs:02d}"


class CallSession:
    """
    Call UI state for one participant: idle -> ringing -> connected -> idle.

    Only the call intent travels over the channel. Declining or ending a
    call is local: the peer is not told, and no media is ever negotiated.
    """

    def __init__(
        self,
        user_id: str,
        caller_name: str,
        caller_avatar: str,
        channel: Channel,
        room_id: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.user_id = user_id
        self.caller_name = caller_name
        self.caller_avatar = caller_avatar
        self.channel = channel
        self.room_id = room_id or default_room()
        self._clock = clock
        self._lock = threading.RLock()
        self._reset()

    def _reset(self):
        self.state = CallState.IDLE
        self.direction: Optional[Direction] = None
        self.call_type: Optional[str] = None
        self.peer_name: Optional[str] = None
        self.peer_avatar: Optional[str] = None
        self.started_at: Optional[float] = None
        self.muted = False
        self.video_off = False

    @property
    def duration(self) -> int:
        if self.state != CallState.CONNECTED or self.started_at is None:
            return 0
        return int(self._clock() - self.started_at)

    def addressed_to_me(self, payload: dict) -> bool:
        recipient = payload.get("recipient_id")
        return (
            recipient in (self.user_id, self.room_id)
            and payload.get("caller_id") != self.user_id
        )

    def initiate(
        self,
        call_type: str,
        recipient_id: Optional[str] = None,
        recipient_name: Optional[str] = None,
        recipient_avatar: Optional[str] = None,
    ) -> str:
        if call_type not in CALL_TYPES:
            raise ValidationError(f"Unknown call type: {call_type}")

        recipient_id = recipient_id or self.room_id
        if recipient_id == self.user_id:
            raise ValidationError("You cannot call yourself")

        with self._lock:
            if self.state != CallState.IDLE:
                raise ValidationError("A call is already in progress")

            if recipient_id == self.room_id:
                recipient_name = recipient_name or f"{self.room_id.title()} Chat"

            self.state = CallState.RINGING
            self.direction = Direction.OUTGOING
            self.call_type = call_type
            self.peer_name = recipient_name or "User"
            self.peer_avatar = recipient_avatar or generated_avatar(recipient_id)

        self.channel.send(
            CALL_EVENT,
            {
                "call_type": call_type,
                "caller_name": self.caller_name,
                "caller_avatar": self.caller_avatar,
                "caller_id": self.user_id,
                "recipient_id": recipient_id,
            },
        )
        logger.info(
            f"call_initiated caller_id={self.user_id} recipient_id={recipient_id} type={call_type}"
        )
        return f"Initiating {call_type} call to {self.peer_name}"

    def receive(self, payload: dict) -> bool:
        """Ring for a call intent addressed to us; False when ignored."""
        if not self.addressed_to_me(payload):
            return False
        if payload.get("call_type") not in CALL_TYPES:
            return False

        with self._lock:
            if self.state != CallState.IDLE:
                logger.info(f"call_busy user_id={self.user_id} caller_id={payload.get('caller_id')}")
                return False

            self.state = CallState.RINGING
            self.direction = Direction.INCOMING
            self.call_type = payload["call_type"]
            self.peer_name = payload.get("caller_name") or "User"
            self.peer_avatar = payload.get("caller_avatar") or generated_avatar(
                str(payload.get("caller_id"))
            )
        return True

    def accept(self) -> str:
        with self._lock:
            if self.state != CallState.RINGING or self.direction != Direction.INCOMING:
                raise ValidationError("No incoming call to accept")
            self.state = CallState.CONNECTED
            self.started_at = self._clock()
        return "Call accepted"

    def decline(self) -> str:
        with self._lock:
            if self.state != CallState.RINGING or self.direction != Direction.INCOMING:
                raise ValidationError("No incoming call to decline")
            self._reset()
        return "Call declined"

    def end(self) -> str:
        with self._lock:
            if self.state == CallState.IDLE:
                raise ValidationError("No call in progress")
            self._reset()
        return "Call ended"

    def toggle_mute(self) -> bool:
        with self._lock:
            if self.state != CallState.CONNECTED:
                raise ValidationError("Not in a call")
            self.muted = not self.muted
            return self.muted

    def toggle_video(self) -> bool:
        with self._lock:
            if self.state != CallState.CONNECTED or self.call_type != "video":
                raise ValidationError("Not in a video call")
            self.video_off = not self.video_off
            return self.video_off

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "state": self.state.value,
                "direction": self.direction.value if self.direction else None,
                "call_type": self.call_type,
                "peer_name": self.peer_name,
                "peer_avatar": self.peer_avatar,
                "duration": format_duration(self.duration),
                "muted": self.muted,
                "video_off": self.video_off,
            }
