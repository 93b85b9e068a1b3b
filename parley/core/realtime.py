from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

PRESENCE_EVENTS = ("sync", "join", "leave")


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: str  # INSERT | UPDATE | DELETE
    record: Dict[str, Any]


@dataclass
class Subscription:
    """Handle returned by every `on_*` registration."""

    _remove: Callable[[], None]
    active: bool = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._remove()


@dataclass(eq=False)
class _ChangeListener:
    table: str
    event_type: str
    filter: Optional[Tuple[str, Any]]
    callback: Callable[[ChangeEvent], None]

    def matches(self, event: ChangeEvent) -> bool:
        if self.table != event.table:
            return False
        if self.event_type not in ("*", event.event_type):
            return False
        if self.filter is None:
            return True
        column, value = self.filter
        return event.record.get(column) == value


def _deliver(callback: Callable, *args) -> None:
    try:
        callback(*args)
    except Exception:
        logger.exception(f"realtime_callback_failed callback={callback!r}")


class Channel:
    """
    Named channel carrying broadcast events and a presence set.

    Presence keys map to a list of metas, one per tracked connection, so a
    user with two open tabs stays present until both untrack.
    """

    def __init__(self, name: str, lock: threading.RLock) -> None:
        self.name = name
        self._lock = lock
        self._broadcast: Dict[str, List[Callable[[dict], None]]] = {}
        self._presence: Dict[str, List[dict]] = {}
        self._presence_listeners: Dict[str, List[Callable]] = {
            event: [] for event in PRESENCE_EVENTS
        }

    def _register(self, registry: List[Callable], callback: Callable) -> Subscription:
        with self._lock:
            registry.append(callback)

        def remove() -> None:
            with self._lock:
                try:
                    registry.remove(callback)
                except ValueError:
                    pass

        return Subscription(remove)

    # broadcast

    def on_broadcast(self, event: str, callback: Callable[[dict], None]) -> Subscription:
        with self._lock:
            registry = self._broadcast.setdefault(event, [])
        return self._register(registry, callback)

    def send(self, event: str, payload: dict) -> int:
        """Deliver `payload` to every listener of `event`; returns the count."""
        with self._lock:
            listeners = list(self._broadcast.get(event, []))
        for callback in listeners:
            _deliver(callback, dict(payload))
        logger.debug(f"broadcast channel={self.name} event={event} listeners={len(listeners)}")
        return len(listeners)

    # presence

    def on_presence(self, event: str, callback: Callable) -> Subscription:
        """
        `sync` listeners get the full state, `join` and `leave` listeners get
        `(key, metas)`.
        """
        if event not in PRESENCE_EVENTS:
            raise ValueError(f"Unknown presence event: {event}")
        return self._register(self._presence_listeners[event], callback)

    def presence_state(self) -> Dict[str, List[dict]]:
        with self._lock:
            return {key: [dict(meta) for meta in metas] for key, metas in self._presence.items()}

    def track(self, key: str, meta: dict) -> None:
        with self._lock:
            self._presence.setdefault(key, []).append(dict(meta))
            joins = list(self._presence_listeners["join"])
        for callback in joins:
            _deliver(callback, key, [dict(meta)])
        self._sync()

    def untrack(self, key: str, meta: Optional[dict] = None) -> None:
        """Drop one meta for `key` (or all of them when `meta` is None)."""
        with self._lock:
            metas = self._presence.get(key)
            if not metas:
                return
            if meta is None or meta not in metas:
                left = list(metas)
                metas.clear()
            else:
                metas.remove(meta)
                left = [meta]
            if not metas:
                del self._presence[key]
            leaves = list(self._presence_listeners["leave"])
        for callback in leaves:
            _deliver(callback, key, left)
        self._sync()

    def _sync(self) -> None:
        state = self.presence_state()
        with self._lock:
            syncs = list(self._presence_listeners["sync"])
        for callback in syncs:
            _deliver(callback, state)


class RealtimeHub:
    """
    In-process stand-in for the hosted realtime service: named channels for
    broadcast and presence, plus a row-change feed that services publish to
    after each write.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._channels: Dict[str, Channel] = {}
        self._change_listeners: List[_ChangeListener] = []

    def channel(self, name: str) -> Channel:
        with self._lock:
            if name not in self._channels:
                self._channels[name] = Channel(name, self._lock)
            return self._channels[name]

    def on_changes(
        self,
        table: str,
        callback: Callable[[ChangeEvent], None],
        event_type: str = "*",
        filter: Optional[Tuple[str, Any]] = None,
    ) -> Subscription:
        listener = _ChangeListener(table, event_type, filter, callback)
        with self._lock:
            self._change_listeners.append(listener)

        def remove() -> None:
            with self._lock:
                try:
                    self._change_listeners.remove(listener)
                except ValueError:
                    pass

        return Subscription(remove)

    def notify(self, table: str, event_type: str, record: dict) -> None:
        event = ChangeEvent(table=table, event_type=event_type, record=dict(record))
        with self._lock:
            listeners = [l for l in self._change_listeners if l.matches(event)]
        for listener in listeners:
            _deliver(listener.callback, event)


hub = RealtimeHub()


def get_hub() -> RealtimeHub:
    return hub
