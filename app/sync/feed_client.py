"""Async stream view over the realtime hub.

``LiveFeedClient.subscribe(scope)`` opens one hub channel for a single
conversation or for every conversation of a business and exposes the
resulting change notifications as an async iterator. The channel is
released exactly once, either explicitly with ``unsubscribe()`` or by
leaving the ``async with`` block.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Literal

from app.realtime.hub import RealtimeHub
from app.schemas.chat import ChangeEvent

logger = logging.getLogger(__name__)

_CLOSED = object()


@dataclass(frozen=True)
class FeedScope:
    kind: Literal["conversation", "business"]
    id: str

    @classmethod
    def conversation(cls, conversation_id: str) -> "FeedScope":
        return cls("conversation", conversation_id)

    @classmethod
    def business(cls, business_id: str) -> "FeedScope":
        return cls("business", business_id)

    @property
    def key(self) -> str:
        if self.kind == "conversation":
            return f"messages:{self.id}"
        return f"conversations:{self.id}"


class Subscription:
    def __init__(self, hub: RealtimeHub, scope: FeedScope, loop: asyncio.AbstractEventLoop):
        self.scope = scope
        self._hub = hub
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()
        self._released = False

        channel = hub.channel(scope.key)
        if scope.kind == "conversation":
            channel.on("messages", {"conversation_id": scope.id}, self._deliver)
        else:
            channel.on("conversations", {"business_id": scope.id}, self._deliver)
            channel.on("messages", {"business_id": scope.id}, self._deliver)
        self._channel = channel.subscribe()
        logger.info("Subscribed to %s", scope.key)

    @property
    def active(self) -> bool:
        return not self._released

    def _deliver(self, event: ChangeEvent):
        if self._released:
            return
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, event)
        except RuntimeError:
            # owning loop is gone; nobody is left to read the queue
            logger.debug("Dropping %s event for closed loop on %s", event.event_type, self.scope.key)

    def unsubscribe(self):
        if self._released:
            return
        self._released = True
        self._hub.remove_channel(self._channel)
        self._queue.put_nowait(_CLOSED)
        logger.info("Unsubscribed from %s", self.scope.key)

    async def get(self) -> ChangeEvent | None:
        """Next event, or None once the subscription is released."""
        if self._released and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.unsubscribe()


class LiveFeedClient:
    def __init__(self, hub: RealtimeHub):
        self.hub = hub

    def subscribe(self, scope: FeedScope) -> Subscription:
        return Subscription(self.hub, scope, asyncio.get_running_loop())
