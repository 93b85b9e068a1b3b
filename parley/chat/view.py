import uuid
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, FrozenSet, Optional, Tuple, Union

from parley.core.errors import TransientError
from parley.models.domain import Message, Profile


"""
Room state of one connected client.

State is an immutable snapshot; every change goes through `reduce`, so
realtime callbacks never close over stale state.
"""


@dataclass(frozen=True)
class RoomState:
    messages: Tuple[Message, ...] = ()
    # client ids of optimistic messages not yet confirmed by the store
    pending: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class HistoryLoaded:
    messages: Tuple[Message, ...]


@dataclass(frozen=True)
class OptimisticAdded:
    message: Message


@dataclass(frozen=True)
class SendConfirmed:
    client_id: str
    message: Message


@dataclass(frozen=True)
class SendFailed:
    client_id: str


@dataclass(frozen=True)
class InsertReceived:
    message: Message


Action = Union[HistoryLoaded, OptimisticAdded, SendConfirmed, SendFailed, InsertReceived]


def _has_id(state: RoomState, message_id: str) -> bool:
    return any(m.id == message_id for m in state.messages)


def reduce(state: RoomState, action: Action) -> RoomState:
    """Returns `state` itself when the action changes nothing."""
    if isinstance(action, HistoryLoaded):
        # keeps live inserts that landed while history loaded, and unconfirmed sends
        loaded = {m.id for m in action.messages}
        newer = tuple(m for m in state.messages if m.id not in loaded)
        return replace(state, messages=tuple(action.messages) + newer)

    if isinstance(action, OptimisticAdded):
        client_id = action.message.client_id
        if not client_id:
            raise ValueError("Optimistic messages need a client_id")
        return RoomState(
            messages=state.messages + (action.message,),
            pending=state.pending | {client_id},
        )

    if isinstance(action, SendConfirmed):
        confirmed = action.message
        kept = []
        for m in state.messages:
            if m.client_id == action.client_id and m.id == action.client_id:
                # the relayed copy may have landed already
                if not _has_id(state, confirmed.id):
                    kept.append(confirmed)
            else:
                kept.append(m)
        return RoomState(messages=tuple(kept), pending=state.pending - {action.client_id})

    if isinstance(action, SendFailed):
        return RoomState(
            messages=tuple(
                m
                for m in state.messages
                if not (m.client_id == action.client_id and m.id == action.client_id)
            ),
            pending=state.pending - {action.client_id},
        )

    if isinstance(action, InsertReceived):
        message = action.message
        if message.client_id and message.client_id in state.pending:
            return state
        if _has_id(state, message.id):
            return state
        return replace(state, messages=state.messages + (message,))

    raise TypeError(f"Unknown action: {action!r}")


def is_echo(state: RoomState, row: dict) -> bool:
    """True for the relay of a message this client is still sending."""
    client_id = row.get("client_id")
    return bool(client_id) and client_id in state.pending


class RoomStore:
    """Holds the current snapshot; safe to dispatch from realtime threads."""

    def __init__(self, state: Optional[RoomState] = None):
        self._lock = threading.Lock()
        self._state = state or RoomState()

    def snapshot(self) -> RoomState:
        with self._lock:
            return self._state

    def dispatch(self, action: Action) -> bool:
        """Apply `action`; True when the state changed."""
        with self._lock:
            before = self._state
            self._state = reduce(before, action)
            return self._state is not before


class Composer:
    """
    Draft input of one user in one room.

    `submit()` ignores a blank draft and leaves it as typed. Otherwise the
    message is shown optimistically, posted, then confirmed and the draft
    cleared; a failed post rolls the optimistic copy back, keeps the draft
    and raises TransientError.
    """

    def __init__(
        self,
        service,
        store: RoomStore,
        user_id: str,
        room_id: str,
        sender: Optional[Profile] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.service = service
        self.store = store
        self.user_id = user_id
        self.room_id = room_id
        self.sender = sender
        self.draft = ""
        self._now = now or (lambda: datetime.now(timezone.utc))

    def submit(self, client_id: Optional[str] = None) -> Optional[Message]:
        text = self.draft
        if not text.strip():
            return None

        client_id = client_id or str(uuid.uuid4())
        optimistic = Message(
            id=client_id,
            sender_id=self.user_id,
            chat_room_id=self.room_id,
            content=text,
            created_at=self._now(),
            client_id=client_id,
        ).with_sender(self.sender)
        self.store.dispatch(OptimisticAdded(optimistic))

        try:
            stored = self.service.post_message(
                self.user_id, self.room_id, text, client_id=client_id
            )
        except TransientError:
            self.store.dispatch(SendFailed(client_id))
            raise

        stored = stored.with_sender(self.sender)
        self.store.dispatch(SendConfirmed(client_id, stored))
        self.draft = ""
        return stored
