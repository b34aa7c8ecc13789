from fastapi import APIRouter, WebSocket

from app.dependencies import hub_dependency, store_dependency
from app.errors import NotAuthenticated
from app.services.auth_service import decode_token
from app.sync.feed_client import FeedScope
from app.websocket.feed import CLOSE_NOT_AUTHENTICATED, CLOSE_NOT_FOUND, relay_feed

router = APIRouter(prefix="/ws", tags=["ws"])


@router.websocket("/conversations/{conversation_id}")
async def conversation_feed(
    websocket: WebSocket,
    store: store_dependency,
    hub: hub_dependency,
    conversation_id: str,
):
    """Live message changes for one conversation (customer chat window).

    Connect to: ws://host/ws/conversations/<conversation_id>
    """
    if store.get_conversation(conversation_id) is None:
        await websocket.close(code=CLOSE_NOT_FOUND)
        return
    await relay_feed(websocket, hub, FeedScope.conversation(conversation_id))


@router.websocket("/business")
async def business_feed(websocket: WebSocket, hub: hub_dependency):
    """Conversation and message changes across a business's inbox.

    Connect to: ws://host/ws/business?token=your_token
    """
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=CLOSE_NOT_AUTHENTICATED)
        return
    try:
        business = decode_token(token)
    except NotAuthenticated:
        await websocket.close(code=CLOSE_NOT_AUTHENTICATED)
        return
    await relay_feed(websocket, hub, FeedScope.business(business["id"]))
