"""Customer-facing chat endpoints.

Customers do not hold accounts: a conversation is opened with an email
address against a business's public chat link, and the conversation id
returned from that call is what grants access to its history.
"""

from fastapi import APIRouter, Query, Request
from starlette import status

from app.config import settings
from app.dependencies import store_dependency
from app.errors import Unauthorized
from app.limits import CUSTOMER_SEND_LIMIT, CUSTOMER_START_LIMIT, limiter
from app.models.chat import SenderType
from app.schemas.chat import (
    ConversationRecord,
    ConversationStart,
    Cursor,
    CustomerEnter,
    CustomerMessageCreate,
    MessagePageResponse,
    MessageRecord,
)
from app.services.away_message import AwayMessageService
from app.services.businesses import BusinessService
from app.services.conversations import ConversationService
from app.services.messages import MessageService
from app.services.pagination import Direction

router = APIRouter(prefix="/chat", tags=["Chat"])


@limiter.limit(CUSTOMER_START_LIMIT)
@router.post(
    "/{identifier}/conversations",
    response_model=ConversationRecord,
    status_code=status.HTTP_200_OK,
)
def start_conversation(
    store: store_dependency, identifier: str, start_request: ConversationStart, request: Request
):
    business = BusinessService(store).get_by_identifier(identifier)
    conversation, _created = ConversationService(store).find_or_create(
        business.id,
        start_request.customer_email,
        customer_name=start_request.customer_name,
        customer_phone=start_request.customer_phone,
    )
    return conversation


@router.post("/conversations/{conversation_id}/enter", status_code=status.HTTP_200_OK)
def enter_conversation(store: store_dependency, conversation_id: str, enter_request: CustomerEnter):
    """Customer opened the chat window; sends the welcome message once."""
    conversation = ConversationService(store).get(conversation_id)
    if conversation.customer_email != enter_request.customer_email.lower():
        raise Unauthorized("Sender is not the customer of this conversation")
    message = AwayMessageService(store).maybe_send_away(conversation.business_id, conversation_id)
    return {"away_message_sent": message is not None}


@router.get(
    "/conversations/{conversation_id}/messages",
    response_model=MessagePageResponse,
    status_code=status.HTTP_200_OK,
)
def get_messages(
    store: store_dependency,
    conversation_id: str,
    cursor: str | None = None,
    direction: Direction = Direction.OLDER,
    page_size: int = Query(settings.PAGE_SIZE, ge=1, le=100),
):
    page = MessageService(store).get_page(
        conversation_id,
        Cursor.decode(cursor) if cursor else None,
        page_size,
        direction,
    )
    return MessagePageResponse.from_page(page)


@limiter.limit(CUSTOMER_SEND_LIMIT)
@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageRecord,
    status_code=status.HTTP_201_CREATED,
)
def send_message(
    store: store_dependency,
    conversation_id: str,
    message_request: CustomerMessageCreate,
    request: Request,
):
    return MessageService(store).send_message(
        conversation_id,
        SenderType.CUSTOMER,
        message_request.customer_email,
        content=message_request.content,
        image_url=message_request.image_url,
        reply_to_id=message_request.reply_to_id,
    )
