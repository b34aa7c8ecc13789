"""In-process push channel for row changes.

Writers publish a ``ChangeEvent`` after every committed insert, update or
delete; readers open a named channel, bind callbacks to a table plus an
equality filter, and subscribe. Delivery is synchronous on the publishing
thread, so callbacks must hand work off to their own event loop.
"""

import logging
import threading
from typing import Callable

from app.schemas.chat import ChangeEvent

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], None]


class Channel:
    def __init__(self, hub: "RealtimeHub", key: str):
        self.key = key
        self._hub = hub
        self._bindings: list[tuple[str, dict, ChangeCallback]] = []
        self.subscribed = False

    def on(self, table: str, filter: dict | None, callback: ChangeCallback) -> "Channel":
        if self.subscribed:
            raise RuntimeError(f"channel {self.key} is already subscribed")
        self._bindings.append((table, dict(filter or {}), callback))
        return self

    def subscribe(self) -> "Channel":
        self._hub._attach(self)
        return self

    def dispatch(self, event: ChangeEvent) -> int:
        delivered = 0
        for table, filter, callback in self._bindings:
            if table != event.table:
                continue
            if any(event.field(name) != value for name, value in filter.items()):
                continue
            try:
                callback(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Change callback failed on channel %s (%s %s)",
                    self.key,
                    event.event_type,
                    event.table,
                )
        return delivered


class RealtimeHub:
    def __init__(self):
        self._channels: list[Channel] = []
        self._lock = threading.Lock()

    def channel(self, key: str) -> Channel:
        return Channel(self, key)

    def _attach(self, channel: Channel):
        with self._lock:
            if channel.subscribed:
                return
            channel.subscribed = True
            self._channels.append(channel)
        logger.debug("Channel %s subscribed", channel.key)

    def remove_channel(self, channel: Channel) -> bool:
        with self._lock:
            if channel not in self._channels:
                return False
            self._channels.remove(channel)
            channel.subscribed = False
        logger.debug("Channel %s removed", channel.key)
        return True

    @property
    def channel_count(self) -> int:
        with self._lock:
            return len(self._channels)

    def publish(self, event: ChangeEvent) -> int:
        with self._lock:
            channels = list(self._channels)
        return sum(channel.dispatch(event) for channel in channels)

    def publish_many(self, events: list[ChangeEvent]):
        for event in events:
            self.publish(event)
