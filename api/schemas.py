"""
Pydantic Schemas for API Request/Response Models

This module defines the messages exchanged with the browser over the
animation WebSocket and the REST endpoints.

Field names follow the camelCase wire format the browser client uses.
Landmarks are typed loosely on purpose: malformed landmark data must reach
the engine, which answers it with a neutral descriptor instead of an error.
"""

from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field


# ============================================================
# WebSocket Inbound Messages
# ============================================================

class StartAnimationMessage(BaseModel):
    """Binds the sending connection to a session."""
    type: Literal["start-animation"] = "start-animation"
    sessionId: Optional[str] = Field(None, description="Session to join; generated if omitted")
    imageId: Optional[str] = Field(None, description="Uploaded still image reference")


class FaceLandmarksMessage(BaseModel):
    """One frame of landmarks from the browser detector."""
    type: Literal["face-landmarks"] = "face-landmarks"
    landmarks: Any = Field(None, description="Sequence of {x, y, z} keyed by landmark index")


class StopAnimationMessage(BaseModel):
    """Unbinds the sending connection."""
    type: Literal["stop-animation"] = "stop-animation"


# ============================================================
# WebSocket Outbound Messages
# ============================================================

class MouthCutoutModel(BaseModel):
    visible: bool
    width: float
    height: float
    curve: float
    clipPath: str


class TransformModel(BaseModel):
    """Render transform applied to the overlay."""
    translateX: float = Field(..., description="Horizontal offset in pixels")
    translateY: float = Field(..., description="Vertical offset in pixels")
    rotateX: float = Field(..., description="Pitch in degrees")
    rotateY: float = Field(..., description="Yaw in degrees")
    rotateZ: float = Field(..., description="Roll in degrees")
    brightness: float
    contrast: float
    filter: str = Field(..., description="CSS filter value")
    mouthCutout: MouthCutoutModel


class AnimationStartedResponse(BaseModel):
    type: str = Field(default="animation-started", description="Message type")
    sessionId: str
    imageId: Optional[str] = None


class AnimationUpdateResponse(BaseModel):
    """Sent to the originator and to co-session viewers for every frame."""
    type: str = Field(default="animation-update", description="Message type")
    sessionId: str
    transform: TransformModel
    expression: str
    timestamp: int = Field(..., description="Unix time in milliseconds")
    frameId: int = Field(..., description="Engine frame sequence number")


class AnimationStoppedResponse(BaseModel):
    type: str = Field(default="animation-stopped", description="Message type")
    sessionId: Optional[str] = None
    reason: str = Field("stopped", description="'stopped' or 'inactive'")


class ErrorResponse(BaseModel):
    """Error reported on the WebSocket; the connection stays open."""
    type: str = Field(default="error", description="Message type")
    error: str = Field(..., description="Error message")
    code: str = Field(default="ANIMATION_ERROR", description="Error code")


# ============================================================
# REST Schemas
# ============================================================

class AnimateRequest(BaseModel):
    """One-shot animation request."""
    landmarks: Any = Field(None, description="Sequence of {x, y, z} keyed by landmark index")
    imageId: Optional[str] = None


class AnimateResponse(BaseModel):
    """One-shot animation result."""
    transform: TransformModel
    expression: str
    detailedData: Dict[str, Any] = Field(..., description="Full pose/expression descriptor")
    timestamp: int
    imageId: Optional[str] = None


class SessionInfoResponse(BaseModel):
    sessionId: str
    connections: List[str] = Field(default_factory=list)
    imageIds: List[str] = Field(default_factory=list)
    startTime: str = Field(..., description="ISO timestamp of the earliest binding")
    lastActivity: str = Field(..., description="ISO timestamp of the latest event")
    totalFrames: int = 0
    expressions: Dict[str, int] = Field(default_factory=dict)
    lastExpression: Optional[str] = None


class StatusResponse(BaseModel):
    status: str
    activeSessions: int
    activeConnections: int
    totalFrames: int
    serverUptime: int = Field(..., description="Seconds since startup")
    timestamp: str
