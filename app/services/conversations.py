import logging

from app.errors import NotFound, Unauthorized, ValidationError
from app.schemas.chat import ConversationRecord, ConversationSummary
from app.services.away_message import AwayMessageService
from app.services.message_store import MessageStore
from app.services.notifications import EmailNotifier
from app.services.rollup import CONVERSATION_LIST_LIMIT, build_summaries

logger = logging.getLogger(__name__)


class ConversationService:
    def __init__(
        self,
        store: MessageStore,
        notifier: EmailNotifier | None = None,
        away: AwayMessageService | None = None,
    ):
        self.store = store
        self.notifier = notifier or EmailNotifier()
        self.away = away or AwayMessageService(store, self.notifier)

    def get(self, conversation_id: str) -> ConversationRecord:
        conversation = self.store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFound(f"Conversation {conversation_id} not found")
        return conversation

    def get_owned(self, business_id: str, conversation_id: str) -> ConversationRecord:
        conversation = self.get(conversation_id)
        if conversation.business_id != business_id:
            raise Unauthorized("Conversation does not belong to this business")
        return conversation

    def exists(self, business_id: str, customer_email: str) -> bool:
        return self.store.find_conversation(business_id, customer_email.lower()) is not None

    def find_or_create(
        self,
        business_id: str,
        customer_email: str,
        customer_name: str | None = None,
        customer_phone: str | None = None,
    ) -> tuple[ConversationRecord, bool]:
        """At most one conversation per (business, customer email)."""
        customer_email = customer_email.strip().lower()
        if not customer_email:
            raise ValidationError("customer_email is required")
        if self.store.get_business(business_id) is None:
            raise NotFound(f"Business {business_id} not found")

        existing = self.store.find_conversation(business_id, customer_email)
        if existing is not None:
            if customer_name or customer_phone:
                existing = self.store.update_conversation(
                    existing.id,
                    customer_name=customer_name or existing.customer_name,
                    customer_phone=customer_phone or existing.customer_phone,
                )
            return existing, False

        conversation, created = self.store.get_or_insert_conversation(
            business_id=business_id,
            customer_email=customer_email,
            customer_name=customer_name,
            customer_phone=customer_phone,
        )
        if created:
            logger.info(f"Conversation {conversation.id} created for business {business_id}")
            self.away.maybe_send_away(business_id, conversation.id)
        return conversation, created

    def update(
        self,
        business_id: str,
        conversation_id: str,
        pinned: bool | None = None,
        customer_name: str | None = None,
        customer_phone: str | None = None,
    ) -> ConversationRecord:
        self.get_owned(business_id, conversation_id)
        fields = {
            key: value
            for key, value in {
                "pinned": pinned,
                "customer_name": customer_name,
                "customer_phone": customer_phone,
            }.items()
            if value is not None
        }
        if not fields:
            raise ValidationError("Nothing to update")
        return self.store.update_conversation(conversation_id, **fields)

    def delete(self, business_id: str, conversation_id: str) -> ConversationRecord:
        self.get_owned(business_id, conversation_id)
        deleted = self.store.delete_conversation(conversation_id)
        logger.info(f"Conversation {conversation_id} deleted by business {business_id}")
        return deleted

    def list_summaries(
        self, business_id: str, limit: int = CONVERSATION_LIST_LIMIT
    ) -> list[ConversationSummary]:
        return build_summaries(self.store, business_id, limit)
