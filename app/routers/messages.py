from typing import List

from fastapi import APIRouter
from starlette import status

from app.dependencies import CurrentBusiness, store_dependency
from app.schemas.chat import BroadcastCreate, MessageRecord, MessageUpdate
from app.services.messages import MessageService

router = APIRouter(tags=["messages"])


@router.patch("/messages/{message_id}", response_model=MessageRecord, status_code=status.HTTP_200_OK)
def edit_message(
    store: store_dependency,
    business: CurrentBusiness,
    message_id: str,
    update_request: MessageUpdate,
):
    return MessageService(store).edit_message(business.get("id"), message_id, update_request.content)


@router.delete("/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_message(store: store_dependency, business: CurrentBusiness, message_id: str):
    MessageService(store).delete_message(business.get("id"), message_id)


@router.post("/broadcasts", response_model=List[MessageRecord], status_code=status.HTTP_201_CREATED)
def broadcast(store: store_dependency, business: CurrentBusiness, broadcast_request: BroadcastCreate):
    """Send the same message to every conversation of the business."""
    return MessageService(store).broadcast_message(
        business.get("id"), broadcast_request.content, broadcast_request.image_url
    )
