"""Relay a live feed subscription over a websocket.

Each connection owns exactly one ``Subscription``. Events are forwarded
as ``{"eventType", "table", "new", "old"}`` JSON frames; the only frame a
client may send is ``{"type": "ping"}``. The subscription is released
when the client disconnects or the relay fails.
"""

import asyncio
import logging

from fastapi import WebSocket, WebSocketDisconnect

from app.realtime.hub import RealtimeHub
from app.sync.feed_client import FeedScope, LiveFeedClient, Subscription

logger = logging.getLogger(__name__)

# application close codes, mirroring the HTTP statuses
CLOSE_NOT_AUTHENTICATED = 4401
CLOSE_NOT_FOUND = 4404


async def _forward(websocket: WebSocket, subscription: Subscription):
    async for event in subscription:
        await websocket.send_json(event.to_wire())


async def relay_feed(websocket: WebSocket, hub: RealtimeHub, scope: FeedScope):
    await websocket.accept()
    subscription = LiveFeedClient(hub).subscribe(scope)
    forwarder = asyncio.create_task(_forward(websocket, subscription))
    logger.info("Websocket connected to %s", scope.key)
    try:
        while True:
            data = await websocket.receive_json()
            if isinstance(data, dict) and data.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        logger.info("Websocket disconnected from %s", scope.key)
    except ValueError as e:
        # receive_json on a non-JSON frame
        logger.warning(f"Closing websocket on {scope.key}: {e}")
        await websocket.close(code=1003)
    finally:
        subscription.unsubscribe()
        forwarder.cancel()
        await asyncio.gather(forwarder, return_exceptions=True)
