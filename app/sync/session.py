"""Client-side driver for one open conversation.

A session owns the conversation's live subscription, the history fetches
and the optimistic sends, and funnels all three into a single
``ConversationTimeline``. Opening another conversation (or closing the
session) cancels any in-flight fetch and releases the subscription;
results that arrive for a conversation that is no longer open are
dropped.
"""

import asyncio
import logging
from typing import Callable

from app.models.chat import SenderType
from app.schemas.chat import Cursor, MessagePage
from app.services.pagination import DEFAULT_PAGE_SIZE, Direction
from app.sync.backend import ChatBackend
from app.sync.feed_client import FeedScope, LiveFeedClient, Subscription
from app.sync.timeline import ConversationTimeline, TimelineEntry

logger = logging.getLogger(__name__)

# upper bound on catch-up pages walked by one resync
MAX_CATCHUP_PAGES = 50

Listener = Callable[[ConversationTimeline], None]


class ConversationSession:
    def __init__(
        self,
        backend: ChatBackend,
        feed: LiveFeedClient,
        page_size: int = DEFAULT_PAGE_SIZE,
        match_window: float = 30.0,
    ):
        self.backend = backend
        self.feed = feed
        self.page_size = page_size
        self.match_window = match_window
        self.timeline: ConversationTimeline | None = None
        self._subscription: Subscription | None = None
        self._pump_task: asyncio.Task | None = None
        self._fetch_task: asyncio.Task | None = None
        self._listeners: list[Listener] = []

    @property
    def conversation_id(self) -> str | None:
        return self.timeline.conversation_id if self.timeline is not None else None

    def add_listener(self, listener: Listener):
        self._listeners.append(listener)

    def _changed(self, timeline: ConversationTimeline):
        if timeline is not self.timeline:
            return
        for listener in list(self._listeners):
            try:
                listener(timeline)
            except Exception:
                logger.exception("Timeline listener failed for %s", timeline.conversation_id)

    def _require(self) -> ConversationTimeline:
        if self.timeline is None:
            raise RuntimeError("No conversation is open")
        return self.timeline

    async def open(self, conversation_id: str) -> ConversationTimeline:
        await self.close()
        timeline = ConversationTimeline(conversation_id, self.match_window)
        self.timeline = timeline
        # subscribe first so nothing committed after the fetch can be missed
        subscription = self.feed.subscribe(FeedScope.conversation(conversation_id))
        self._subscription = subscription
        self._pump_task = asyncio.create_task(self._pump(subscription, timeline))
        await self._load(timeline, None)
        return timeline

    async def _load(
        self,
        timeline: ConversationTimeline,
        cursor: Cursor | None,
        direction: Direction = Direction.OLDER,
        prune: bool = False,
    ) -> MessagePage | None:
        task = asyncio.create_task(
            self.backend.fetch_page(timeline.conversation_id, cursor, self.page_size, direction)
        )
        self._fetch_task = task
        try:
            page = await task
        except asyncio.CancelledError:
            if self.timeline is timeline:
                raise
            logger.debug("Fetch for %s cancelled by conversation switch", timeline.conversation_id)
            return None
        finally:
            if self._fetch_task is task:
                self._fetch_task = None

        if self.timeline is not timeline:
            logger.debug("Discarding late page for %s", timeline.conversation_id)
            return None
        timeline.apply_page(
            page, older=direction == Direction.OLDER, prune=prune, authoritative=prune
        )
        self._changed(timeline)
        return page

    async def load_older(self) -> MessagePage | None:
        timeline = self._require()
        if not timeline.has_more or timeline.oldest_cursor is None:
            return None
        return await self._load(timeline, timeline.oldest_cursor)

    async def send(
        self,
        sender_type: SenderType,
        sender_id: str,
        content: str | None = None,
        image_url: str | None = None,
        reply_to_id: str | None = None,
    ) -> TimelineEntry:
        timeline = self._require()
        entry = timeline.add_pending(sender_type, sender_id, content, image_url, reply_to_id)
        self._changed(timeline)
        try:
            record = await self.backend.send_message(
                timeline.conversation_id,
                sender_type,
                sender_id,
                content=content,
                image_url=image_url,
                reply_to_id=reply_to_id,
            )
        except asyncio.CancelledError:
            timeline.fail(entry.temp_id, "cancelled")
            self._changed(timeline)
            raise
        except Exception as e:
            timeline.fail(entry.temp_id, str(e))
            self._changed(timeline)
            raise
        confirmed = timeline.confirm(entry.temp_id, record)
        self._changed(timeline)
        return confirmed or entry

    async def resync(self):
        """Catch up after the live feed was interrupted."""
        timeline = self._require()
        watermark = timeline.latest_watermark()
        if watermark is not None:
            cursor = watermark
            for _ in range(MAX_CATCHUP_PAGES):
                page = await self._load(timeline, cursor, Direction.NEWER, prune=True)
                if page is None or not page.has_more or page.next_cursor is None:
                    break
                cursor = page.next_cursor
            else:
                logger.warning("Catch-up for %s stopped after %d pages", timeline.conversation_id, MAX_CATCHUP_PAGES)

        # refreshing the newest page must not rewind "load earlier"
        loaded, oldest_cursor, has_more = timeline.loaded, timeline.oldest_cursor, timeline.has_more
        page = await self._load(timeline, None, Direction.OLDER, prune=True)
        if page is not None and loaded:
            timeline.oldest_cursor, timeline.has_more = oldest_cursor, has_more

    async def _pump(self, subscription: Subscription, timeline: ConversationTimeline):
        async for event in subscription:
            if self.timeline is not timeline:
                continue
            timeline.apply_event(event)
            self._changed(timeline)

    async def close(self):
        fetch, self._fetch_task = self._fetch_task, None
        subscription, self._subscription = self._subscription, None
        pump, self._pump_task = self._pump_task, None
        self.timeline = None

        if fetch is not None and not fetch.done():
            fetch.cancel()
        if subscription is not None:
            subscription.unsubscribe()
        if pump is not None:
            results = await asyncio.gather(pump, return_exceptions=True)
            if isinstance(results[0], Exception):
                logger.error(f"Feed pump for {subscription.scope.key} failed: {results[0]}")

    async def __aenter__(self) -> "ConversationSession":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
