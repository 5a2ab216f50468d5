"""WebSocket router for document change notifications."""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import logging

from ..services.change_feed import ChangeFeed

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for dataset change notifications.

    Messages from client:
    - {"action": "subscribe", "documents": ["crypto_list", "news"]}
    - {"action": "unsubscribe", "documents": ["news"]}
    - {"action": "ping"}

    Messages to client:
    - {"type": "change", "collection": "api_cache", "operationType": "update",
       "documentId": "crypto_list", "fullDocument": {...}, "timestamp": "..."}
    - {"type": "pong"}
    """
    feed: ChangeFeed = websocket.app.state.change_feed
    await feed.connect_client(websocket)

    try:
        while True:
            message = await websocket.receive_text()
            await feed.handle_client_message(websocket, message)

    except WebSocketDisconnect:
        await feed.disconnect_client(websocket)
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
        await feed.disconnect_client(websocket)
