"""Keyset pagination over a conversation's message history.

Pages are always returned oldest-first. ``Direction.OLDER`` walks back
from the newest message (what a chat window loads on open and on "load
earlier"); ``Direction.NEWER`` walks forward from a watermark and is what a
client uses to catch up after a reconnect.

Both directions order on ``(created_at, id)`` so messages that share a
timestamp are neither skipped nor repeated at a page boundary.
"""

import enum

from app.schemas.chat import Cursor, MessagePage
from app.services.message_store import MessageStore

DEFAULT_PAGE_SIZE = 20


class Direction(str, enum.Enum):
    OLDER = "older"
    NEWER = "newer"


def fetch_page(
    store: MessageStore,
    conversation_id: str,
    cursor: Cursor | None = None,
    page_size: int = DEFAULT_PAGE_SIZE,
    direction: Direction = Direction.OLDER,
) -> MessagePage:
    if page_size < 1:
        raise ValueError("page_size must be positive")

    if direction == Direction.OLDER:
        rows = store.select_messages(
            conversation_id, before=cursor, descending=True, limit=page_size + 1
        )
    else:
        rows = store.select_messages(
            conversation_id, after=cursor, descending=False, limit=page_size + 1
        )

    has_more = len(rows) > page_size
    rows = rows[:page_size]
    if direction == Direction.OLDER:
        rows.reverse()

    next_cursor = None
    if has_more and rows:
        boundary = rows[0] if direction == Direction.OLDER else rows[-1]
        next_cursor = Cursor.from_message(boundary)

    return MessagePage(items=rows, next_cursor=next_cursor, has_more=has_more)
