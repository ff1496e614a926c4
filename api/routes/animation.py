"""
Animation WebSocket Route

This module provides the streaming endpoint that turns the browser's live
landmark stream into overlay transforms.

Each message is handled to completion (lookup, engine, send) before the
next one is read, so frames from one connection are processed in the order
they arrive.
"""

import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from api.gateway import ConnectionGateway, get_gateway
from api.schemas import (
    StartAnimationMessage,
    FaceLandmarksMessage,
    StopAnimationMessage,
    AnimationStartedResponse,
    AnimationStoppedResponse,
    ErrorResponse,
)
from core.session_manager import SessionManager, get_session_manager

# Setup logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/ws", tags=["animation"])


async def send_error(websocket: WebSocket, error: str, code: str) -> None:
    response = ErrorResponse(type="error", error=error, code=code)
    await websocket.send_json(response.model_dump())


async def handle_message(
    connection_id: str,
    message: Dict[str, Any],
    websocket: WebSocket,
    manager: SessionManager,
    gateway: ConnectionGateway,
) -> bool:
    """
    Dispatch one decoded client message to the session manager.

    Returns:
        False if the message type is unknown.

    Raises:
        ValidationError: If the message fields do not match its type.
    """
    message_type = message.get("type")

    if message_type == "face-landmarks":
        frame = FaceLandmarksMessage.model_validate(message)
        deliveries = manager.on_frame(connection_id, frame.landmarks)
        await gateway.deliver(deliveries)

    elif message_type == "start-animation":
        start = StartAnimationMessage.model_validate(message)
        binding = manager.on_start(connection_id, start.sessionId, start.imageId)
        response = AnimationStartedResponse(
            type="animation-started",
            sessionId=binding.session_id,
            imageId=binding.image_id,
        )
        await websocket.send_json(response.model_dump())

    elif message_type == "stop-animation":
        StopAnimationMessage.model_validate(message)
        binding = manager.on_stop(connection_id)
        response = AnimationStoppedResponse(
            type="animation-stopped",
            sessionId=binding.session_id if binding else None,
            reason="stopped",
        )
        await websocket.send_json(response.model_dump())

    else:
        return False

    return True


@router.websocket("/animate")
async def websocket_animate(websocket: WebSocket):
    """
    WebSocket endpoint for live face animation.

    Protocol:
        Client -> Server:
        {"type": "start-animation", "sessionId": "...", "imageId": "..."}
        {"type": "face-landmarks", "landmarks": [{"x": .., "y": .., "z": ..}, ...]}
        {"type": "stop-animation"}

        Server -> Client:
        {"type": "animation-started", "sessionId": "...", "imageId": "..."}
        {"type": "animation-update", "sessionId": "...", "transform": {...},
         "expression": "happy", "timestamp": 1700000000000, "frameId": 42}
        {"type": "animation-stopped", "sessionId": "...", "reason": "stopped"}
        {"type": "error", "error": "...", "code": "..."}

    Frames sent before start-animation (or after stop) are dropped silently.
    Every other connection started with the same sessionId receives the
    same animation-update as the sender.
    """
    await websocket.accept()

    manager = get_session_manager()
    gateway = get_gateway()
    connection_id = gateway.register(websocket)
    logger.info(f"Animation connection opened: {connection_id}")

    try:
        while True:
            event = await websocket.receive()
            if event["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(event.get("code", 1000))

            raw = event.get("text")
            if raw is None:
                logger.warning(f"Binary frame from {connection_id} ignored")
                await send_error(websocket, "Messages must be JSON text frames", "INVALID_MESSAGE")
                continue

            try:
                message = json.loads(raw)
                if not isinstance(message, dict):
                    raise ValueError("message must be a JSON object")
            except ValueError as e:
                logger.warning(f"Invalid message from {connection_id}: {e}")
                await send_error(websocket, "Invalid JSON message", "INVALID_MESSAGE")
                continue

            try:
                handled = await handle_message(connection_id, message, websocket, manager, gateway)
            except ValidationError as e:
                logger.warning(f"Malformed {message.get('type')} message from {connection_id}: {e}")
                await send_error(websocket, f"Malformed {message.get('type')} message", "INVALID_MESSAGE")
                continue

            if not handled:
                logger.warning(f"Unknown message type from {connection_id}: {message.get('type')}")
                await send_error(websocket, f"Unknown message type: {message.get('type')}", "UNKNOWN_MESSAGE")

    except WebSocketDisconnect:
        logger.info(f"Client disconnected: {connection_id}")

    except Exception as e:
        logger.error(f"Unexpected error on {connection_id}: {e}")
        try:
            await send_error(websocket, f"Unexpected error: {str(e)}", "UNEXPECTED_ERROR")
            await websocket.close()
        except Exception:
            pass

    finally:
        manager.on_disconnect(connection_id)
        gateway.unregister(connection_id)
