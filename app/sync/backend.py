import asyncio
from typing import Callable, Protocol, TypeVar

from sqlalchemy.orm import Session

from app.database import session_scope
from app.models.chat import SenderType
from app.realtime.hub import RealtimeHub
from app.schemas.chat import ConversationSummary, Cursor, MessagePage, MessageRecord
from app.services.conversations import ConversationService
from app.services.message_store import MessageStore
from app.services.messages import MessageService
from app.services.notifications import EmailNotifier
from app.services.pagination import DEFAULT_PAGE_SIZE, Direction

T = TypeVar("T")


class ChatBackend(Protocol):
    """What the client-side sync layer needs from the server."""

    async def fetch_page(
        self,
        conversation_id: str,
        cursor: Cursor | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        direction: Direction = Direction.OLDER,
    ) -> MessagePage: ...

    async def send_message(
        self,
        conversation_id: str,
        sender_type: SenderType,
        sender_id: str,
        content: str | None = None,
        image_url: str | None = None,
        reply_to_id: str | None = None,
    ) -> MessageRecord: ...

    async def list_summaries(self, business_id: str) -> list[ConversationSummary]: ...

    async def mark_messages_as_read(self, business_id: str, conversation_id: str) -> int: ...


class ServiceBackend:
    """ChatBackend over the in-process services.

    Each call opens its own session on a worker thread so the blocking
    SQLAlchemy work never runs on the event loop.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        hub: RealtimeHub,
        notifier: EmailNotifier | None = None,
    ):
        self.session_factory = session_factory
        self.hub = hub
        self.notifier = notifier or EmailNotifier()

    def _run(self, action: Callable[[MessageStore], T]) -> T:
        with session_scope(self.session_factory) as db:
            return action(MessageStore(db, self.hub))

    async def _call(self, action: Callable[[MessageStore], T]) -> T:
        return await asyncio.to_thread(self._run, action)

    async def fetch_page(
        self,
        conversation_id: str,
        cursor: Cursor | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        direction: Direction = Direction.OLDER,
    ) -> MessagePage:
        return await self._call(
            lambda store: MessageService(store, self.notifier).get_page(
                conversation_id, cursor, page_size, direction
            )
        )

    async def send_message(
        self,
        conversation_id: str,
        sender_type: SenderType,
        sender_id: str,
        content: str | None = None,
        image_url: str | None = None,
        reply_to_id: str | None = None,
    ) -> MessageRecord:
        acting = sender_id if SenderType(sender_type) == SenderType.BUSINESS else None
        return await self._call(
            lambda store: MessageService(store, self.notifier).send_message(
                conversation_id,
                SenderType(sender_type),
                sender_id,
                content=content,
                image_url=image_url,
                reply_to_id=reply_to_id,
                acting_business_id=acting,
            )
        )

    async def list_summaries(self, business_id: str) -> list[ConversationSummary]:
        return await self._call(
            lambda store: ConversationService(store, self.notifier).list_summaries(business_id)
        )

    async def mark_messages_as_read(self, business_id: str, conversation_id: str) -> int:
        return await self._call(
            lambda store: MessageService(store, self.notifier).mark_messages_as_read(
                business_id, conversation_id
            )
        )
