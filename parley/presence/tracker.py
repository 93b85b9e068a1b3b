import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from supabase import Client

from parley.auth.session import SIGNED_OUT
from parley.core.errors import TransientError
from parley.core.realtime import RealtimeHub, Subscription
from parley.core.supabase_client import execute
from parley.models.domain import PresenceEntry

logger = logging.getLogger(__name__)

PRESENCE_CHANNEL = "online_users"

STATUS_ONLINE = "Online"
STATUS_OFFLINE = "Offline"


def online_map(state: Dict[str, List[dict]]) -> Dict[str, bool]:
    """Presence channel state -> {user_id: True} for every tracked meta."""
    users = {}
    for metas in state.values():
        for meta in metas:
            if meta.get("user_id"):
                users[meta["user_id"]] = True
    return users


def online_user_ids(hub: RealtimeHub) -> Set[str]:
    return set(online_map(hub.channel(PRESENCE_CHANNEL).presence_state()))


class PresenceTracker:
    """
    Online/offline view for one connected user.

    `start()` marks the profile Online and tracks the user on the shared
    presence channel; `stop()` does the reverse. The map behind `is_online`
    is rebuilt from every sync event and lives only in memory.
    """

    def __init__(
        self,
        supabase: Client,
        hub: RealtimeHub,
        user_id: str,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.user_id = user_id
        self._supabase = supabase
        self._channel = hub.channel(PRESENCE_CHANNEL)
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._online: Dict[str, bool] = {}
        self._listeners: List[Callable[[Dict[str, bool]], None]] = []
        self._subscriptions: List[Subscription] = []
        self._meta: Optional[dict] = None

    @property
    def online_users(self) -> Dict[str, bool]:
        with self._lock:
            return dict(self._online)

    def is_online(self, user_id: str) -> bool:
        with self._lock:
            return self._online.get(user_id, False)

    def on_change(self, callback: Callable[[Dict[str, bool]], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def start(self):
        if self._meta is not None:
            return

        self._subscriptions = [
            self._channel.on_presence("sync", self._on_sync),
            self._channel.on_presence("join", self._on_join),
            self._channel.on_presence("leave", self._on_leave),
        ]

        try:
            self._write_status(STATUS_ONLINE)
        except TransientError as e:
            logger.warning(f"presence_online_write_failed user_id={self.user_id} error={e.message}")

        entry = PresenceEntry(user_id=self.user_id, online_at=self._now())
        self._meta = entry.model_dump(mode="json")
        self._channel.track(self.user_id, self._meta)

    def stop(self):
        """Best effort: a failed Offline write is logged and teardown goes on."""
        if self._meta is None:
            return

        try:
            self._write_status(STATUS_OFFLINE)
        except TransientError as e:
            logger.warning(f"presence_offline_write_failed user_id={self.user_id} error={e.message}")
        finally:
            self._channel.untrack(self.user_id, self._meta)
            self._meta = None
            for subscription in self._subscriptions:
                subscription.unsubscribe()
            self._subscriptions = []
            with self._lock:
                self._online = {}

    def _write_status(self, status: str):
        execute(
            self._supabase.table("profiles").update({"status": status}).eq("id", self.user_id),
            f"Failed to set status to {status}.",
        )

    def _on_sync(self, state: Dict[str, List[dict]]):
        users = online_map(state)
        with self._lock:
            self._online = users
        for callback in list(self._listeners):
            callback(dict(users))

    def _on_join(self, key: str, metas: List[dict]):
        logger.info(f"presence_join key={key} count={len(metas)}")

    def _on_leave(self, key: str, metas: List[dict]):
        logger.info(f"presence_leave key={key} count={len(metas)}")


def drop_presence_on_sign_out(hub: RealtimeHub):
    """Session listener that untracks a user everywhere when they sign out."""

    def listener(event: str, user_id: Optional[str]):
        if event == SIGNED_OUT and user_id:
            hub.channel(PRESENCE_CHANNEL).untrack(user_id)

    return listener
