"""
Session REST Routes

This module provides:
- POST /animate: one-shot animation of a single landmark frame
- GET /sessions/{session_id}: live view of a streaming session

The one-shot endpoint runs the same engine as the WebSocket stream but
touches no session state and broadcasts nothing.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException

from api.schemas import AnimateRequest, AnimateResponse, SessionInfoResponse
from core.face_transform import get_engine
from core.session_manager import animate_once, get_session_manager

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(tags=["sessions"])


def _isoformat(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


@router.post("/animate", response_model=AnimateResponse)
async def animate(request: AnimateRequest):
    """
    Compute the overlay transform for a single landmark frame.

    Malformed or missing landmarks yield the neutral animation rather
    than an error.
    """
    result = animate_once(get_engine(), request.landmarks, request.imageId)
    logger.debug(f"One-shot animation: expression={result['expression']} image={request.imageId}")
    return AnimateResponse(**result)


@router.get("/sessions/{session_id}", response_model=SessionInfoResponse)
async def get_session(session_id: str):
    """
    Get the live state of a streaming session.

    Raises:
        404: If no connection is currently bound to the session.
    """
    summary = get_session_manager().get_session(session_id)

    if summary is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")

    return SessionInfoResponse(
        sessionId=summary.session_id,
        connections=summary.connection_ids,
        imageIds=summary.image_ids,
        startTime=_isoformat(summary.started_at),
        lastActivity=_isoformat(summary.last_activity),
        totalFrames=summary.frames_processed,
        expressions=summary.expressions,
        lastExpression=summary.last_expression,
    )
