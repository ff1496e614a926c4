"""
Core Module for the Live Face Overlay Service

This package contains the framework-free parts of the system: configuration,
landmark parsing, the face transform engine and the streaming session manager.

Main components:
    - config: Configuration loading and management
    - landmarks: Landmark frame parsing and index table
    - face_transform: Landmarks -> descriptor -> render transform
    - session_manager: Connection/session binding and frame routing

Usage:
    from core.config import get_config
    from core.face_transform import FaceTransformEngine, get_engine
    from core.session_manager import SessionManager, get_session_manager
"""

from core.config import (
    get_config,
    get_engine_config,
    get_session_config,
    get_api_config,
    get_logging_config,
    get_server_config,
)

from core.landmarks import (
    LandmarkFrame,
    LandmarkFormatError,
    LANDMARKS,
)

from core.face_transform import (
    FaceTransformEngine,
    PoseExpressionDescriptor,
    HeadPose,
    MouthState,
    EyeState,
    EyesState,
    RenderTransform,
    MouthCutout,
    classify_expression,
    classify_mouth_shape,
    get_engine,
)

from core.session_manager import (
    SessionManager,
    SessionBinding,
    SessionSummary,
    AnimationUpdate,
    Delivery,
    animate_once,
    get_session_manager,
)

__all__ = [
    # Configuration
    "get_config",
    "get_engine_config",
    "get_session_config",
    "get_api_config",
    "get_logging_config",
    "get_server_config",
    # Landmarks
    "LandmarkFrame",
    "LandmarkFormatError",
    "LANDMARKS",
    # Face Transform Engine
    "FaceTransformEngine",
    "PoseExpressionDescriptor",
    "HeadPose",
    "MouthState",
    "EyeState",
    "EyesState",
    "RenderTransform",
    "MouthCutout",
    "classify_expression",
    "classify_mouth_shape",
    "get_engine",
    # Session Manager
    "SessionManager",
    "SessionBinding",
    "SessionSummary",
    "AnimationUpdate",
    "Delivery",
    "animate_once",
    "get_session_manager",
]
