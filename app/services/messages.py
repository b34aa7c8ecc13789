import logging

from app.errors import ChatError, NotFound, Unauthorized, ValidationError
from app.models.chat import MessageStatus, SenderType
from app.schemas.chat import ConversationRecord, Cursor, MessagePage, MessageRecord
from app.services.message_store import MessageStore
from app.services.notifications import EmailNotifier
from app.services.pagination import DEFAULT_PAGE_SIZE, Direction, fetch_page

logger = logging.getLogger(__name__)


def _clean(content: str | None) -> str | None:
    if content is None:
        return None
    content = content.strip()
    return content or None


class MessageService:
    def __init__(self, store: MessageStore, notifier: EmailNotifier | None = None):
        self.store = store
        self.notifier = notifier or EmailNotifier()

    def _owned_conversation(self, business_id: str, conversation_id: str) -> ConversationRecord:
        conversation = self.store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFound(f"Conversation {conversation_id} not found")
        if conversation.business_id != business_id:
            raise Unauthorized("Conversation does not belong to this business")
        return conversation

    def _notify(self, message: MessageRecord, conversation: ConversationRecord):
        try:
            business = self.store.get_business(conversation.business_id)
            if business is not None:
                self.notifier.notify(message, conversation, business)
        except ChatError as e:
            logger.error(f"Failed to prepare email notification for {message.id}: {e}")

    def get_page(
        self,
        conversation_id: str,
        cursor: Cursor | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        direction: Direction = Direction.OLDER,
        business_id: str | None = None,
    ) -> MessagePage:
        if business_id is not None:
            self._owned_conversation(business_id, conversation_id)
        elif self.store.get_conversation(conversation_id) is None:
            raise NotFound(f"Conversation {conversation_id} not found")
        return fetch_page(self.store, conversation_id, cursor, page_size, direction)

    def send_message(
        self,
        conversation_id: str,
        sender_type: SenderType,
        sender_id: str,
        content: str | None = None,
        image_url: str | None = None,
        reply_to_id: str | None = None,
        acting_business_id: str | None = None,
    ) -> MessageRecord:
        content = _clean(content)
        if not content and not image_url:
            raise ValidationError("Message needs content or an image")

        conversation = self.store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFound(f"Conversation {conversation_id} not found")

        if sender_type == SenderType.BUSINESS:
            if acting_business_id != conversation.business_id or sender_id != conversation.business_id:
                raise Unauthorized("Conversation does not belong to this business")
        elif sender_id.lower() != conversation.customer_email.lower():
            raise Unauthorized("Sender is not the customer of this conversation")

        if reply_to_id:
            parent = self.store.get_message(reply_to_id)
            if parent is None or parent.conversation_id != conversation_id:
                raise ValidationError("reply_to_id must reference a message in this conversation")

        message = self.store.insert_message(
            conversation_id=conversation_id,
            sender_type=sender_type,
            sender_id=conversation.customer_email if sender_type == SenderType.CUSTOMER else sender_id,
            content=content,
            image_url=image_url,
            reply_to_id=reply_to_id,
            status=MessageStatus.SENT,
        )
        logger.info(f"Message {message.id} sent to conversation {conversation_id} by {sender_type.value}")
        self._notify(message, conversation)
        return message

    def edit_message(self, business_id: str, message_id: str, content: str) -> MessageRecord:
        content = _clean(content)
        if not content:
            raise ValidationError("Edited message can not be empty")
        message = self.store.get_message(message_id)
        if message is None:
            raise NotFound(f"Message {message_id} not found")
        self._owned_conversation(business_id, message.conversation_id)
        if message.sender_type != SenderType.BUSINESS or message.sender_id != business_id:
            raise Unauthorized("Only the business's own messages can be edited")
        return self.store.update_message(message_id, content=content)

    def delete_message(self, business_id: str, message_id: str) -> MessageRecord:
        message = self.store.get_message(message_id)
        if message is None:
            raise NotFound(f"Message {message_id} not found")
        self._owned_conversation(business_id, message.conversation_id)
        deleted = self.store.delete_message(message_id)
        logger.info(f"Message {message_id} deleted by business {business_id}")
        return deleted

    def mark_messages_as_read(self, business_id: str, conversation_id: str) -> int:
        self._owned_conversation(business_id, conversation_id)
        updated = self.store.mark_read_where(conversation_id)
        return len(updated)

    def mark_messages_as_delivered(self, business_id: str, conversation_id: str) -> int:
        """The business client has received the conversation's new messages."""
        self._owned_conversation(business_id, conversation_id)
        return len(self.store.mark_delivered_where(conversation_id))

    def broadcast_message(
        self, business_id: str, content: str, image_url: str | None = None
    ) -> list[MessageRecord]:
        content = _clean(content)
        if not content and not image_url:
            raise ValidationError("Broadcast needs content or an image")
        business = self.store.get_business(business_id)
        if business is None:
            raise NotFound(f"Business {business_id} not found")

        conversation_ids = self.store.list_conversation_ids(business_id)
        if not conversation_ids:
            return []

        messages = self.store.insert_messages(
            [
                {
                    "conversation_id": conversation_id,
                    "sender_type": SenderType.BUSINESS,
                    "sender_id": business_id,
                    "content": content,
                    "image_url": image_url,
                    "status": MessageStatus.SENT,
                }
                for conversation_id in conversation_ids
            ]
        )
        logger.info(f"Broadcast from {business_id} delivered to {len(messages)} conversations")

        try:
            conversations = {}
            for conversation_id in conversation_ids:
                conversation = self.store.get_conversation(conversation_id)
                if conversation is not None:
                    conversations[conversation_id] = conversation
            self.notifier.notify_many(messages, conversations, business)
        except ChatError as e:
            logger.error(f"Broadcast email notification error: {e}")
        return messages
