"""
Connection Gateway

Keeps track of open animation WebSockets and sends the session manager's
deliveries to them. Each socket is identified by a generated connection id
("conn_" + 8 hex characters).

Sending to a viewer that has gone away must not disturb the connection
that produced the frame, so send failures are logged and skipped.
"""

import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional

from fastapi import WebSocket

from api.schemas import AnimationUpdateResponse, TransformModel
from core.session_manager import AnimationUpdate, Delivery

logger = logging.getLogger(__name__)


def generate_connection_id() -> str:
    """Generate a connection ID like "conn_a1b2c3d4"."""
    return f"conn_{uuid.uuid4().hex[:8]}"


def update_message(update: AnimationUpdate) -> Dict[str, Any]:
    """Build the `animation-update` wire message for an engine update."""
    response = AnimationUpdateResponse(
        type="animation-update",
        sessionId=update.session_id,
        transform=TransformModel.model_validate(update.transform.to_dict()),
        expression=update.expression,
        timestamp=update.timestamp,
        frameId=update.frame_id,
    )
    return response.model_dump()


class ConnectionGateway:
    """Registry of open WebSockets keyed by connection id."""

    def __init__(self):
        self._connections: Dict[str, WebSocket] = {}

    def register(self, websocket: WebSocket) -> str:
        connection_id = generate_connection_id()
        while connection_id in self._connections:
            connection_id = generate_connection_id()
        self._connections[connection_id] = websocket
        logger.debug(f"Registered connection {connection_id}")
        return connection_id

    def unregister(self, connection_id: str) -> None:
        self._connections.pop(connection_id, None)
        logger.debug(f"Unregistered connection {connection_id}")

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    async def send(self, connection_id: str, message: Dict[str, Any]) -> bool:
        """
        Send a JSON message to one connection.

        Returns:
            True if sent, False if the connection is unknown or the send failed.
        """
        websocket: Optional[WebSocket] = self._connections.get(connection_id)
        if websocket is None:
            return False

        try:
            await websocket.send_json(message)
            return True
        except Exception as e:
            logger.warning(f"Failed to send to {connection_id}: {e}")
            return False

    async def deliver(self, deliveries: Iterable[Delivery]) -> List[str]:
        """
        Send animation updates in order.

        Returns:
            Connection ids that received their update.
        """
        delivered = []
        messages: Dict[int, Dict[str, Any]] = {}
        for delivery in deliveries:
            # Broadcast deliveries share one update; serialize it once
            key = id(delivery.update)
            if key not in messages:
                messages[key] = update_message(delivery.update)
            if await self.send(delivery.connection_id, messages[key]):
                delivered.append(delivery.connection_id)
        return delivered


# Singleton gateway instance
_gateway_instance: Optional[ConnectionGateway] = None


def get_gateway() -> ConnectionGateway:
    """Get or create the singleton connection gateway."""
    global _gateway_instance

    if _gateway_instance is None:
        _gateway_instance = ConnectionGateway()

    return _gateway_instance
