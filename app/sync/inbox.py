"""Live inbox for a business: conversation summaries kept fresh by the feed.

Any message or conversation change in the business scope marks the
summaries stale. Recomputation is coarse (the whole list is re-read)
and coalesced: while one refresh is running, further changes only set a
flag that triggers exactly one more refresh afterwards.
"""

import asyncio
import logging
from typing import Callable

from app.schemas.chat import ConversationSummary
from app.sync.backend import ChatBackend
from app.sync.feed_client import FeedScope, LiveFeedClient, Subscription

logger = logging.getLogger(__name__)


class InboxView:
    def __init__(self, backend: ChatBackend, feed: LiveFeedClient, business_id: str):
        self.backend = backend
        self.feed = feed
        self.business_id = business_id
        self.summaries: list[ConversationSummary] = []
        self.refresh_count = 0
        self._stale = False
        self._refresh_task: asyncio.Task | None = None
        self._subscription: Subscription | None = None
        self._pump_task: asyncio.Task | None = None
        self._listeners: list[Callable[[list[ConversationSummary]], None]] = []

    def add_listener(self, listener: Callable[[list[ConversationSummary]], None]):
        self._listeners.append(listener)

    @property
    def unread_total(self) -> int:
        return sum(s.unread_count for s in self.summaries)

    def summary(self, conversation_id: str) -> ConversationSummary | None:
        for summary in self.summaries:
            if summary.conversation.id == conversation_id:
                return summary
        return None

    async def start(self) -> list[ConversationSummary]:
        if self._subscription is None:
            self._subscription = self.feed.subscribe(FeedScope.business(self.business_id))
            self._pump_task = asyncio.create_task(self._pump(self._subscription))
        await self.refresh()
        return self.summaries

    async def refresh(self):
        self.summaries = await self.backend.list_summaries(self.business_id)
        self.refresh_count += 1
        for listener in list(self._listeners):
            try:
                listener(self.summaries)
            except Exception:
                logger.exception("Inbox listener failed for business %s", self.business_id)

    def invalidate(self):
        if self._refresh_task is not None and not self._refresh_task.done():
            self._stale = True
            return
        self._refresh_task = asyncio.create_task(self._refresh_until_clean())

    async def _refresh_until_clean(self):
        while True:
            self._stale = False
            try:
                await self.refresh()
            except Exception as e:
                logger.error(f"Inbox refresh failed for business {self.business_id}: {e}")
            if not self._stale:
                return

    async def wait_idle(self):
        while self._refresh_task is not None and not self._refresh_task.done():
            await self._refresh_task

    async def _pump(self, subscription: Subscription):
        async for _event in subscription:
            self.invalidate()

    async def mark_read(self, conversation_id: str) -> int:
        updated = await self.backend.mark_messages_as_read(self.business_id, conversation_id)
        self.invalidate()
        return updated

    async def stop(self):
        subscription, self._subscription = self._subscription, None
        pump, self._pump_task = self._pump_task, None
        if subscription is not None:
            subscription.unsubscribe()
        if pump is not None:
            await asyncio.gather(pump, return_exceptions=True)
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
            await asyncio.gather(self._refresh_task, return_exceptions=True)
        self._refresh_task = None

    async def __aenter__(self) -> "InboxView":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()
