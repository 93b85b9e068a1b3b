import logging
from typing import Callable, Dict, Iterable, List, Optional

from fastapi import Depends
from supabase import Client

from parley.core.errors import TransientError
from parley.core.realtime import ChangeEvent, RealtimeHub, Subscription, get_hub
from parley.core.supabase_client import execute, get_supabase
from parley.models.domain import Message, Profile

logger = logging.getLogger(__name__)

MESSAGE_COLUMNS = (
    "id, sender_id, recipient_id, chat_room_id, content, is_read, client_id, created_at"
)
SENDER_COLUMNS = "id, username, full_name, avatar_url"

EchoFilter = Callable[[dict], bool]


class MessageStreamService:
    """Append, read and relay the messages of a room."""

    def __init__(self, supabase: Client, hub: RealtimeHub):
        self.supabase = supabase
        self.hub = hub

    def post_message(
        self,
        current_user: str,
        room_id: str,
        text: str,
        client_id: Optional[str] = None,
    ) -> Optional[Message]:
        """
        Store a message and relay it to the room's subscribers.

        Blank or whitespace-only text is ignored: nothing is written and
        None is returned. `client_id` is the sender's tag for its optimistic
        copy and comes back on the relayed row.
        """
        if not text or not text.strip():
            return None

        row = {
            "sender_id": current_user,
            "chat_room_id": room_id,
            "content": text,
            "is_read": False,
        }
        if client_id:
            row["client_id"] = client_id

        res = execute(
            self.supabase.table("chat_messages").insert(row),
            "Failed to send message",
        )
        stored = res.data[0]

        logger.info(
            f"message_posted message_id={stored['id']} room_id={room_id} sender_id={current_user}"
        )
        self.hub.notify("chat_messages", "INSERT", stored)

        return Message(**stored)

    def load_history(self, room_id: str) -> List[Message]:
        """All messages of the room, oldest first, with sender details."""
        res = execute(
            self.supabase.table("chat_messages")
            .select(MESSAGE_COLUMNS)
            .eq("chat_room_id", room_id)
            .order("created_at", desc=False),
            "Failed to load messages",
        )
        messages = [Message(**row) for row in res.data or []]

        senders = self._profiles_by_id(m.sender_id for m in messages)
        return [m.with_sender(senders.get(m.sender_id)) for m in messages]

    def subscribe(
        self,
        room_id: str,
        on_insert: Callable[[Message], None],
        is_echo: Optional[EchoFilter] = None,
    ) -> Subscription:
        """
        Call `on_insert` with every new message of the room, sender details
        merged in. Rows for which `is_echo(row)` is true are skipped; that is
        how a sender drops the relay of a message it already shows.
        """

        def handle(event: ChangeEvent):
            row = event.record
            if is_echo is not None and is_echo(row):
                return

            message = Message(**row)
            on_insert(message.with_sender(self.sender_profile(message.sender_id)))

        return self.hub.on_changes(
            "chat_messages", handle, event_type="INSERT", filter=("chat_room_id", room_id)
        )

    def mark_read(self, current_user: str, room_id: str) -> int:
        """Flag other people's messages in the room as read; returns the count."""
        res = execute(
            self.supabase.table("chat_messages")
            .update({"is_read": True})
            .eq("chat_room_id", room_id)
            .eq("is_read", False)
            .neq("sender_id", current_user),
            "Failed to update messages",
        )
        return len(res.data or [])

    def _profiles_by_id(self, user_ids: Iterable[str]) -> Dict[str, Profile]:
        ids = sorted(set(user_ids))
        if not ids:
            return {}

        res = execute(
            self.supabase.table("profiles").select(SENDER_COLUMNS).in_("id", ids),
            "Failed to load messages",
        )
        return {row["id"]: Profile(**row) for row in res.data or []}

    def sender_profile(self, sender_id: str) -> Optional[Profile]:
        try:
            res = execute(
                self.supabase.table("profiles")
                .select(SENDER_COLUMNS)
                .eq("id", sender_id)
                .limit(1),
                "Failed to load sender",
            )
        except TransientError:
            logger.warning(f"sender_lookup_failed sender_id={sender_id}")
            return None

        return Profile(**res.data[0]) if res.data else None


def get_message_service(
    supabase: Client = Depends(get_supabase),
    hub: RealtimeHub = Depends(get_hub),
) -> MessageStreamService:
    return MessageStreamService(supabase, hub)
