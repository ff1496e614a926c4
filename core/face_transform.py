"""
Face Transform Engine

This module converts one frame of facial landmarks into a bounded
pose/expression descriptor, and that descriptor into a render transform
the browser applies to the overlaid still photo.

Pipeline per frame:
    LandmarkFrame -> PoseExpressionDescriptor -> RenderTransform

The engine is total: missing landmarks degrade the affected measurement
to its neutral value, and a frame that cannot be read at all (or that
raises during computation) yields the neutral descriptor. The only state
is a per-instance frame counter, so consumers can spot dropped or
reordered frames.

Usage:
    from core.face_transform import FaceTransformEngine

    engine = FaceTransformEngine(config)
    descriptor = engine.compute_descriptor(payload["landmarks"])
    transform = engine.compute_render_transform(descriptor)
"""

import itertools
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from core.landmarks import LandmarkFrame, Point3D

logger = logging.getLogger(__name__)


# Expression classes
EXPRESSION_SURPRISED = "surprised"
EXPRESSION_HAPPY = "happy"
EXPRESSION_NEUTRAL = "neutral"
EXPRESSION_TALKING = "talking"

# Mouth shapes
MOUTH_OPEN = "open"
MOUTH_SMILE = "smile"
MOUTH_NEUTRAL = "neutral"

# (brightness, contrast) per expression, identity at neutral
EXPRESSION_FILTERS: Dict[str, Tuple[float, float]] = {
    EXPRESSION_SURPRISED: (1.05, 1.15),
    EXPRESSION_HAPPY: (1.1, 1.05),
    EXPRESSION_NEUTRAL: (1.0, 1.0),
    EXPRESSION_TALKING: (1.0, 1.02),
}


def _clamp(value: float, low: float, high: float, default: float = 0.0) -> float:
    """Clamp to [low, high]; NaN collapses to `default`, +/-inf to the bound."""
    if math.isnan(value):
        return default
    return max(low, min(high, value))


def _midpoint(a: Point3D, b: Point3D) -> Tuple[float, float]:
    return ((a[0] + b[0]) / 2.0, (a[1] + b[1]) / 2.0)


# ============================================================
# Descriptor and Transform Types
# ============================================================

@dataclass(frozen=True)
class HeadPose:
    """
    Head rotation and planar position.

    Attributes:
        rotation_x: Pitch in degrees, clamped to [-15, 15].
        rotation_y: Yaw in degrees, clamped to [-20, 20].
        rotation_z: Roll in degrees (always 0).
        position_x: Horizontal offset in pixels.
        position_y: Vertical offset in pixels.
    """

    rotation_x: float = 0.0
    rotation_y: float = 0.0
    rotation_z: float = 0.0
    position_x: float = 0.0
    position_y: float = 0.0


@dataclass(frozen=True)
class MouthState:
    """Mouth openness and smile in [0, 1] plus the derived shape."""

    openness: float = 0.0
    smile: float = 0.0
    shape: str = MOUTH_NEUTRAL


@dataclass(frozen=True)
class EyeState:
    """Single-eye openness in [0, 1] and gaze offset in [-1, 1]."""

    openness: float = 1.0
    x: float = 0.0
    y: float = 0.0


@dataclass(frozen=True)
class EyesState:
    left: EyeState = field(default_factory=EyeState)
    right: EyeState = field(default_factory=EyeState)
    blink: bool = False


@dataclass(frozen=True)
class PoseExpressionDescriptor:
    """
    Normalized pose/expression summary of a single landmark frame.

    Attributes:
        head: Head rotation and position.
        mouth: Mouth openness, smile and shape.
        eyes: Per-eye openness/offset and the blink flag.
        expression: One of surprised, happy, neutral, talking.
        timestamp: Unix time in milliseconds when the frame was processed.
        frame_id: Strictly increasing per-engine sequence number.
    """

    head: HeadPose
    mouth: MouthState
    eyes: EyesState
    expression: str
    timestamp: int
    frame_id: int

    def to_dict(self) -> Dict[str, Any]:
        """Wire form (camelCase keys) used as `detailedData`."""
        return {
            "head": {
                "rotationX": self.head.rotation_x,
                "rotationY": self.head.rotation_y,
                "rotationZ": self.head.rotation_z,
                "positionX": self.head.position_x,
                "positionY": self.head.position_y,
            },
            "mouth": {
                "openness": self.mouth.openness,
                "smile": self.mouth.smile,
                "shape": self.mouth.shape,
            },
            "eyes": {
                "left": {
                    "openness": self.eyes.left.openness,
                    "x": self.eyes.left.x,
                    "y": self.eyes.left.y,
                },
                "right": {
                    "openness": self.eyes.right.openness,
                    "x": self.eyes.right.x,
                    "y": self.eyes.right.y,
                },
                "blink": self.eyes.blink,
            },
            "expression": self.expression,
            "timestamp": self.timestamp,
            "frameId": self.frame_id,
        }


@dataclass(frozen=True)
class MouthCutout:
    """
    Elliptical clip region that exposes the live mouth over the photo.

    Attributes:
        visible: False when the mouth is closed and the clip is a full pass.
        width: Ellipse horizontal radius, percent of the overlay box.
        height: Ellipse vertical radius, percent of the overlay box.
        curve: Upward shift of the ellipse centre for smiles, percent.
        clip_path: CSS clip-path value ("none" for full pass).
    """

    visible: bool
    width: float
    height: float
    curve: float
    clip_path: str


@dataclass(frozen=True)
class RenderTransform:
    """Placement and filter parameters applied to the overlay."""

    translate_x: float
    translate_y: float
    rotate_x: float
    rotate_y: float
    rotate_z: float
    brightness: float
    contrast: float
    filter: str
    mouth_cutout: MouthCutout

    def to_dict(self) -> Dict[str, Any]:
        return {
            "translateX": self.translate_x,
            "translateY": self.translate_y,
            "rotateX": self.rotate_x,
            "rotateY": self.rotate_y,
            "rotateZ": self.rotate_z,
            "brightness": self.brightness,
            "contrast": self.contrast,
            "filter": self.filter,
            "mouthCutout": {
                "visible": self.mouth_cutout.visible,
                "width": self.mouth_cutout.width,
                "height": self.mouth_cutout.height,
                "curve": self.mouth_cutout.curve,
                "clipPath": self.mouth_cutout.clip_path,
            },
        }


# ============================================================
# Expression Rules
# ============================================================

def classify_mouth_shape(openness: float, smile: float) -> str:
    """Pick the mouth shape: open beats smile beats neutral."""
    if openness > 0.3:
        return MOUTH_OPEN
    if smile > 0.4:
        return MOUTH_SMILE
    return MOUTH_NEUTRAL


def classify_expression(openness: float, smile: float, blink: bool) -> str:
    """
    Classify the expression with fixed, ordered rules.

    Earlier rules win, and every input maps to exactly one class.
    """
    if openness > 0.6:
        return EXPRESSION_SURPRISED
    if smile > 0.5:
        return EXPRESSION_HAPPY
    if smile < 0.2 and blink:
        return EXPRESSION_NEUTRAL
    if openness < 0.1:
        return EXPRESSION_NEUTRAL
    return EXPRESSION_TALKING


# ============================================================
# Engine
# ============================================================

class FaceTransformEngine:
    """
    Maps landmark frames to descriptors and descriptors to render transforms.

    Scale factors are read from the config dict with built-in defaults.
    Clamp ranges are fixed to keep the overlay from producing implausible
    poses on detector noise.
    """

    PITCH_RANGE = (-15.0, 15.0)
    YAW_RANGE = (-20.0, 20.0)
    ROLL = 0.0

    # Mouth openness below which the cutout is a full pass
    MOUTH_CUTOUT_MIN_OPENNESS = 0.1
    CUTOUT_BASE_WIDTH = 30.0
    CUTOUT_SMILE_WIDTH = 20.0
    CUTOUT_OPEN_HEIGHT = 40.0
    CUTOUT_SMILE_CURVE = 10.0

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the engine.

        Args:
            config: Configuration dictionary containing (all optional):
                - yaw_scale: Degrees per unit of nose/eye-midpoint offset
                - pitch_scale: Degrees per unit of nose/chin gap change
                - neutral_nose_chin_gap: Nose/chin gap of a level head
                - position_scale_px: Pixels per unit of nose offset
                - eye_open_scale: Openness per unit of eyelid gap
                - eye_position_scale: Gaze offset per unit of iris shift
                - smile_scale: Smile per unit of mouth-corner lift
                - smile_neutral_gap: Corner/cheek gap of a resting mouth
                - blink_threshold: Raw eye openness under which an eye is shut
        """
        config = config or {}
        self.yaw_scale = config.get("yaw_scale", 200.0)
        self.pitch_scale = config.get("pitch_scale", 100.0)
        self.neutral_nose_chin_gap = config.get("neutral_nose_chin_gap", 0.15)
        self.position_scale_px = config.get("position_scale_px", 100.0)
        self.eye_open_scale = config.get("eye_open_scale", 30.0)
        self.eye_position_scale = config.get("eye_position_scale", 10.0)
        self.smile_scale = config.get("smile_scale", 20.0)
        self.smile_neutral_gap = config.get("smile_neutral_gap", 0.06)
        self.blink_threshold = config.get("blink_threshold", 0.15)

        self._frame_counter = itertools.count(1)
        self._last_frame_id = 0

    @property
    def frames_processed(self) -> int:
        """Number of descriptors produced since construction or reset()."""
        return self._last_frame_id

    def reset(self) -> None:
        """Restart the frame counter at 1."""
        self._frame_counter = itertools.count(1)
        self._last_frame_id = 0

    def _next_frame(self) -> Tuple[int, int]:
        frame_id = next(self._frame_counter)
        self._last_frame_id = frame_id
        return frame_id, int(time.time() * 1000)

    @staticmethod
    def neutral_descriptor(frame_id: int = 0, timestamp: int = 0) -> PoseExpressionDescriptor:
        """The fixed neutral descriptor: no rotation, no mouth/eye activity."""
        return PoseExpressionDescriptor(
            head=HeadPose(),
            mouth=MouthState(),
            eyes=EyesState(),
            expression=EXPRESSION_NEUTRAL,
            timestamp=timestamp,
            frame_id=frame_id,
        )

    def compute_descriptor(self, landmarks: Any) -> PoseExpressionDescriptor:
        """
        Compute the pose/expression descriptor for one frame.

        Never raises. The frame id advances exactly once per call,
        including when the neutral descriptor is returned.

        Args:
            landmarks: A LandmarkFrame, or a raw payload accepted by
                       LandmarkFrame.from_payload. None means no face.

        Returns:
            PoseExpressionDescriptor with all bounded fields in range.
        """
        frame_id, timestamp = self._next_frame()

        try:
            if landmarks is None:
                return self.neutral_descriptor(frame_id, timestamp)

            frame = landmarks if isinstance(landmarks, LandmarkFrame) else LandmarkFrame.from_payload(landmarks)
            if frame.count_valid() == 0:
                return self.neutral_descriptor(frame_id, timestamp)

            head = self._compute_head(frame)
            mouth = self._compute_mouth(frame)
            eyes = self._compute_eyes(frame)
            expression = classify_expression(mouth.openness, mouth.smile, eyes.blink)

            return PoseExpressionDescriptor(
                head=head,
                mouth=mouth,
                eyes=eyes,
                expression=expression,
                timestamp=timestamp,
                frame_id=frame_id,
            )

        except Exception as e:
            logger.warning(f"Frame {frame_id}: falling back to neutral descriptor ({e})")
            return self.neutral_descriptor(frame_id, timestamp)

    def _compute_head(self, frame: LandmarkFrame) -> HeadPose:
        """Yaw from nose vs. eye midpoint, pitch from nose/chin gap."""
        nose = frame.named("nose_tip")
        if nose is None:
            return HeadPose()

        yaw = 0.0
        right_eye = frame.named("right_eye_outer")
        left_eye = frame.named("left_eye_outer")
        if right_eye is not None and left_eye is not None:
            eye_mid_x, _ = _midpoint(right_eye, left_eye)
            yaw = _clamp((nose[0] - eye_mid_x) * self.yaw_scale, *self.YAW_RANGE)

        pitch = 0.0
        chin = frame.named("chin")
        if chin is not None:
            gap = chin[1] - nose[1]
            pitch = _clamp((gap - self.neutral_nose_chin_gap) * self.pitch_scale, *self.PITCH_RANGE)

        position_x = (nose[0] - 0.5) * self.position_scale_px
        position_y = (nose[1] - 0.5) * self.position_scale_px
        if not (math.isfinite(position_x) and math.isfinite(position_y)):
            position_x, position_y = 0.0, 0.0

        return HeadPose(
            rotation_x=pitch,
            rotation_y=yaw,
            rotation_z=self.ROLL,
            position_x=position_x,
            position_y=position_y,
        )

    def _compute_mouth(self, frame: LandmarkFrame) -> MouthState:
        openness = 0.0
        top = frame.named("mouth_top")
        bottom = frame.named("mouth_bottom")
        right = frame.named("mouth_right")
        left = frame.named("mouth_left")
        if top is not None and bottom is not None and right is not None and left is not None:
            width = math.hypot(left[0] - right[0], left[1] - right[1])
            if width > 1e-9:
                openness = _clamp((bottom[1] - top[1]) / width, 0.0, 1.0)

        # Corner lift relative to the cheek above it, per side
        lifts = []
        for corner_name, cheek_name in (("mouth_right", "right_cheek"), ("mouth_left", "left_cheek")):
            corner = frame.named(corner_name)
            cheek = frame.named(cheek_name)
            if corner is not None and cheek is not None:
                lifts.append(self.smile_neutral_gap - (corner[1] - cheek[1]))

        smile = 0.0
        if lifts:
            smile = _clamp(sum(lifts) / len(lifts) * self.smile_scale, 0.0, 1.0)

        return MouthState(
            openness=openness,
            smile=smile,
            shape=classify_mouth_shape(openness, smile),
        )

    def _compute_eye(self, frame: LandmarkFrame, side: str) -> Tuple[EyeState, Optional[float]]:
        """
        Compute one eye.

        Returns:
            (EyeState, raw openness before clamping or None if lids are missing)
        """
        raw_openness = None
        openness = 1.0
        top = frame.named(f"{side}_eye_top")
        bottom = frame.named(f"{side}_eye_bottom")
        if top is not None and bottom is not None:
            raw_openness = (bottom[1] - top[1]) * self.eye_open_scale
            openness = _clamp(raw_openness, 0.0, 1.0, default=1.0)

        x, y = 0.0, 0.0
        outer = frame.named(f"{side}_eye_outer")
        inner = frame.named(f"{side}_eye_inner")
        iris = frame.named(f"{side}_iris")
        if outer is not None and inner is not None and iris is not None:
            mid_x, mid_y = _midpoint(outer, inner)
            x = _clamp((iris[0] - mid_x) * self.eye_position_scale, -1.0, 1.0)
            y = _clamp((iris[1] - mid_y) * self.eye_position_scale, -1.0, 1.0)

        return EyeState(openness=openness, x=x, y=y), raw_openness

    def _compute_eyes(self, frame: LandmarkFrame) -> EyesState:
        left, left_raw = self._compute_eye(frame, "left")
        right, right_raw = self._compute_eye(frame, "right")

        # Blink uses the unclamped measurements
        blink = (
            left_raw is not None
            and right_raw is not None
            and left_raw < self.blink_threshold
            and right_raw < self.blink_threshold
        )

        return EyesState(left=left, right=right, blink=blink)

    def compute_render_transform(self, descriptor: PoseExpressionDescriptor) -> RenderTransform:
        """
        Derive the overlay transform from a descriptor.

        Pure: the same descriptor always yields the same transform.

        Args:
            descriptor: Output of compute_descriptor.

        Returns:
            RenderTransform with head placement, expression filter and
            mouth cutout.
        """
        brightness, contrast = EXPRESSION_FILTERS.get(
            descriptor.expression, EXPRESSION_FILTERS[EXPRESSION_NEUTRAL]
        )

        return RenderTransform(
            translate_x=descriptor.head.position_x,
            translate_y=descriptor.head.position_y,
            rotate_x=descriptor.head.rotation_x,
            rotate_y=descriptor.head.rotation_y,
            rotate_z=descriptor.head.rotation_z,
            brightness=brightness,
            contrast=contrast,
            filter=f"brightness({brightness}) contrast({contrast})",
            mouth_cutout=self._compute_mouth_cutout(descriptor.mouth),
        )

    def _compute_mouth_cutout(self, mouth: MouthState) -> MouthCutout:
        if mouth.openness < self.MOUTH_CUTOUT_MIN_OPENNESS:
            return MouthCutout(visible=False, width=100.0, height=100.0, curve=0.0, clip_path="none")

        width = round(self.CUTOUT_BASE_WIDTH + mouth.smile * self.CUTOUT_SMILE_WIDTH, 2)
        height = round(mouth.openness * self.CUTOUT_OPEN_HEIGHT, 2)
        curve = round(mouth.smile * self.CUTOUT_SMILE_CURVE, 2)

        return MouthCutout(
            visible=True,
            width=width,
            height=height,
            curve=curve,
            clip_path=f"ellipse({width}% {height}% at 50% {round(70.0 - curve, 2)}%)",
        )


# Singleton engine instance
_engine_instance: Optional[FaceTransformEngine] = None


def get_engine(config: Optional[Dict[str, Any]] = None) -> FaceTransformEngine:
    """
    Get or create the singleton face transform engine.

    Args:
        config: Configuration dictionary. Only used on first call.
                If None, uses the "engine" section from core.config.

    Returns:
        The shared FaceTransformEngine instance.
    """
    global _engine_instance

    if _engine_instance is None:
        if config is None:
            from core.config import get_engine_config
            config = get_engine_config()

        _engine_instance = FaceTransformEngine(config)

    return _engine_instance
