"""One-time automated welcome message per conversation.

``maybe_send_away`` is safe to call on every conversation-entry event. The
existence check keeps the common path to a single read; the delivery claim
in ``away_message_deliveries`` is what makes two near-simultaneous triggers
produce a single message.
"""

import logging

from app.errors import ChatError, DuplicateSend
from app.models.chat import MessageStatus, SenderType
from app.schemas.chat import MessageRecord
from app.services.message_store import MessageStore
from app.services.notifications import EmailNotifier

logger = logging.getLogger(__name__)


class AwayMessageService:
    def __init__(self, store: MessageStore, notifier: EmailNotifier | None = None):
        self.store = store
        self.notifier = notifier or EmailNotifier()

    def maybe_send_away(self, business_id: str, conversation_id: str) -> MessageRecord | None:
        try:
            business = self.store.get_business(business_id)
            if business is None:
                return None
            if not business.away_message_enabled or not (business.away_message or "").strip():
                return None
            content = business.away_message

            if self.store.find_business_message(conversation_id, business_id, content):
                logger.debug("Welcome message already present in conversation %s", conversation_id)
                return None

            self.store.claim_away_delivery(conversation_id, business_id, content)
            message = self.store.insert_message(
                conversation_id=conversation_id,
                sender_type=SenderType.BUSINESS,
                sender_id=business_id,
                content=content,
                status=MessageStatus.SENT,
            )
        except DuplicateSend as e:
            logger.info(f"Skipping welcome message: {e}")
            return None
        except ChatError as e:
            logger.error(f"Failed to send welcome message to conversation {conversation_id}: {e}")
            return None

        logger.info(f"Welcome message {message.id} sent to conversation {conversation_id}")
        try:
            conversation = self.store.get_conversation(conversation_id)
            if conversation is not None:
                self.notifier.notify(message, conversation, business)
        except ChatError as e:
            logger.error(f"Failed to notify welcome message {message.id}: {e}")
        return message
