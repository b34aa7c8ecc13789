from typing import List

from fastapi import APIRouter, File, Query, UploadFile
from starlette import status

from app.config import settings
from app.dependencies import CurrentBusiness, store_dependency
from app.models.chat import SenderType
from app.schemas.chat import (
    ConversationRecord,
    ConversationSummary,
    ConversationUpdate,
    Cursor,
    MessageCreate,
    MessagePageResponse,
    MessageRecord,
)
from app.services.conversations import ConversationService
from app.services.image_service import ImageService
from app.services.messages import MessageService
from app.services.pagination import Direction

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.get("", response_model=List[ConversationSummary], status_code=status.HTTP_200_OK)
def list_conversations(store: store_dependency, business: CurrentBusiness):
    """Inbox roll-up: pinned first, then most recently active."""
    return ConversationService(store).list_summaries(
        business.get("id"), settings.CONVERSATION_LIST_LIMIT
    )


@router.get("/{conversation_id}", response_model=ConversationRecord, status_code=status.HTTP_200_OK)
def get_conversation(store: store_dependency, business: CurrentBusiness, conversation_id: str):
    return ConversationService(store).get_owned(business.get("id"), conversation_id)


@router.patch("/{conversation_id}", response_model=ConversationRecord, status_code=status.HTTP_200_OK)
def update_conversation(
    store: store_dependency,
    business: CurrentBusiness,
    conversation_id: str,
    update_request: ConversationUpdate,
):
    return ConversationService(store).update(
        business.get("id"),
        conversation_id,
        pinned=update_request.pinned,
        customer_name=update_request.customer_name,
        customer_phone=update_request.customer_phone,
    )


@router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_conversation(store: store_dependency, business: CurrentBusiness, conversation_id: str):
    ConversationService(store).delete(business.get("id"), conversation_id)


@router.post("/{conversation_id}/read", status_code=status.HTTP_200_OK)
def mark_read(store: store_dependency, business: CurrentBusiness, conversation_id: str):
    updated = MessageService(store).mark_messages_as_read(business.get("id"), conversation_id)
    return {"updated": updated}


@router.post("/{conversation_id}/delivered", status_code=status.HTTP_200_OK)
def mark_delivered(store: store_dependency, business: CurrentBusiness, conversation_id: str):
    updated = MessageService(store).mark_messages_as_delivered(business.get("id"), conversation_id)
    return {"updated": updated}


@router.get(
    "/{conversation_id}/messages",
    response_model=MessagePageResponse,
    status_code=status.HTTP_200_OK,
)
def get_messages(
    store: store_dependency,
    business: CurrentBusiness,
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
        business_id=business.get("id"),
    )
    return MessagePageResponse.from_page(page)


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageRecord,
    status_code=status.HTTP_201_CREATED,
)
def send_message(
    store: store_dependency,
    business: CurrentBusiness,
    conversation_id: str,
    message_request: MessageCreate,
):
    business_id = business.get("id")
    return MessageService(store).send_message(
        conversation_id,
        SenderType.BUSINESS,
        business_id,
        content=message_request.content,
        image_url=message_request.image_url,
        reply_to_id=message_request.reply_to_id,
        acting_business_id=business_id,
    )


@router.post(
    "/{conversation_id}/images",
    response_model=MessageRecord,
    status_code=status.HTTP_201_CREATED,
)
def send_image(
    store: store_dependency,
    business: CurrentBusiness,
    conversation_id: str,
    file: UploadFile = File(...),
):
    business_id = business.get("id")
    ConversationService(store).get_owned(business_id, conversation_id)
    image_url = ImageService().upload_image(file, conversation_id)
    return MessageService(store).send_message(
        conversation_id,
        SenderType.BUSINESS,
        business_id,
        image_url=image_url,
        acting_business_id=business_id,
    )
