"""Per-conversation summaries for a business's inbox."""

from app.schemas.chat import ConversationRecord, ConversationSummary, MessageRecord
from app.services.message_store import MessageStore

CONVERSATION_LIST_LIMIT = 100


def summarize(
    conversation: ConversationRecord, unread_count: int, latest: MessageRecord | None
) -> ConversationSummary:
    return ConversationSummary(
        conversation=conversation,
        unread_count=unread_count,
        latest_message_preview=latest.preview if latest else "",
    )


def build_summaries(
    store: MessageStore, business_id: str, limit: int = CONVERSATION_LIST_LIMIT
) -> list[ConversationSummary]:
    """Pinned first, then most recently active; at most ``limit`` rows."""
    conversations = store.list_conversations(business_id, limit)
    unread = store.count_unread([c.id for c in conversations])
    return [
        summarize(c, unread.get(c.id, 0), store.latest_message(c.id))
        for c in conversations
    ]
