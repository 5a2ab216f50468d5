"""Change notifications for persisted documents.

Every document write is relayed to connected websocket clients as
``{"type": "change", "collection", "operationType", "documentId", "fullDocument"}``.
Delivery is best effort: a client that fails a send is dropped.
"""

import json
import logging
from datetime import datetime
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)


@dataclass
class ChangeEvent:
    """Document change notification."""
    collection: str
    operationType: str
    documentId: str
    fullDocument: Optional[Dict[str, Any]] = None
    type: str = "change"
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.utcnow().isoformat()


class ChangeFeed:
    """Fan-out of document changes to websocket clients.

    Clients receive every change unless they subscribed to specific
    document ids (``{"action": "subscribe", "documents": ["crypto_list"]}``).
    """

    def __init__(self):
        self._clients: Set[WebSocket] = set()
        self._subscriptions: Dict[WebSocket, Set[str]] = {}

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def connect_client(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._clients.add(websocket)
        self._subscriptions[websocket] = set()
        logger.info(f"Change feed client connected. Total clients: {len(self._clients)}")

    async def disconnect_client(self, websocket: WebSocket) -> None:
        self._clients.discard(websocket)
        self._subscriptions.pop(websocket, None)
        logger.info(f"Change feed client disconnected. Total clients: {len(self._clients)}")

    async def handle_client_message(self, websocket: WebSocket, message: str) -> None:
        """Handle subscribe/unsubscribe/ping messages from a client."""
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON from client: {message[:100]}")
            return

        action = data.get("action")
        subs = self._subscriptions.setdefault(websocket, set())

        if action == "subscribe":
            subs.update(data.get("documents", []))
        elif action == "unsubscribe":
            subs.difference_update(data.get("documents", []))
        elif action == "ping":
            await websocket.send_json({"type": "pong"})

    async def publish(self, event: ChangeEvent) -> None:
        """Send a change to every interested client."""
        if not self._clients:
            return

        message = asdict(event)
        disconnected = set()
        # Clients may connect or leave while a send is pending
        for client in list(self._clients):
            if client not in self._clients:
                continue
            subs = self._subscriptions.get(client, set())
            if subs and event.documentId not in subs:
                continue
            try:
                await client.send_json(message)
            except WebSocketDisconnect:
                disconnected.add(client)
            except Exception as e:
                logger.error(f"Change feed send error: {e}")
                disconnected.add(client)

        for client in disconnected:
            await self.disconnect_client(client)
